"""
Unit tests for repository discovery (gitraf_backup/backup/scanner.py).
"""

import os

import pytest

from gitraf_backup.backup.scanner import RepositoryScanner, repository_name
from gitraf_backup.models import RepositoryKind


class TestRepositoryScanner:
    """Test RepositoryScanner detection rules."""

    def test_finds_suffixed_and_bare_layout_repos(self, repos_root):
        repos = list(RepositoryScanner().scan(str(repos_root)))

        assert [r.name for r in repos] == ['alpha', 'beta']
        assert repos[0].kind == RepositoryKind.SUFFIXED
        assert repos[1].kind == RepositoryKind.BARE_LAYOUT

    def test_paths_are_absolute(self, repos_root):
        repos = list(RepositoryScanner().scan(str(repos_root)))

        for repo in repos:
            assert os.path.isabs(repo.path)
            assert os.path.isdir(repo.path)

    def test_repo_matching_both_rules_listed_once(self, repos_root):
        """alpha.git has both the suffix and the bare layout."""
        repos = list(RepositoryScanner().scan(str(repos_root)))
        paths = [r.path for r in repos]

        assert len(paths) == len(set(paths))
        assert sum(1 for r in repos if r.name == 'alpha') == 1

    def test_symlinked_repo_listed_once(self, repos_root):
        os.symlink(repos_root / 'beta', repos_root / 'gamma.git')

        repos = list(RepositoryScanner().scan(str(repos_root)))

        assert len([r for r in repos if r.path == str((repos_root / 'beta').resolve())]) == 1

    def test_suffixed_directory_without_layout_is_included(self, repos_root):
        (repos_root / 'empty.git').mkdir()

        names = [r.name for r in RepositoryScanner().scan(str(repos_root))]

        assert 'empty' in names

    def test_files_and_plain_directories_skipped(self, repos_root):
        (repos_root / 'file.git').write_text('a file, not a directory')
        (repos_root / 'only_objects').mkdir()
        (repos_root / 'only_objects' / 'objects').mkdir()

        names = [r.name for r in RepositoryScanner().scan(str(repos_root))]

        assert names == ['alpha', 'beta']

    def test_nested_repositories_not_scanned(self, repos_root, bare_repo):
        bare_repo(repos_root / 'scratch' / 'nested.git')

        names = [r.name for r in RepositoryScanner().scan(str(repos_root))]

        assert 'nested' not in names

    def test_scan_is_lazy_and_restartable(self, repos_root, bare_repo):
        scanner = RepositoryScanner()
        first = scanner.scan(str(repos_root))

        # Nothing happens until iteration
        assert next(first).name == 'alpha'

        bare_repo(repos_root / 'delta.git')
        second = list(scanner.scan(str(repos_root)))

        assert [r.name for r in second] == ['alpha', 'beta', 'delta']

    def test_suffixed_and_plain_with_same_stem_get_distinct_names(self, repos_root, bare_repo):
        bare_repo(repos_root / 'beta.git')

        repos = list(RepositoryScanner().scan(str(repos_root)))
        names = [r.name for r in repos]

        assert names == ['alpha', 'beta', 'beta.git']
        assert len({r.path for r in repos}) == 3

    def test_empty_root(self, tmp_path):
        assert list(RepositoryScanner().scan(str(tmp_path))) == []

    def test_missing_root_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            list(RepositoryScanner().scan(str(tmp_path / 'missing')))


class TestRepositoryName:

    @pytest.mark.parametrize("dirname,expected", [
        ("alpha.git", "alpha"),
        ("beta", "beta"),
        ("my.repo.git", "my.repo"),
        (".git", ".git"),
    ])
    def test_repository_name(self, tmp_path, dirname, expected):
        assert repository_name(tmp_path / dirname) == expected
