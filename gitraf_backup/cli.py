"""
Command line interface for gitraf-backup.

    gitraf-backup            run a backup (same as `gitraf-backup run`)
    gitraf-backup list       list repositories that would be backed up
    gitraf-backup dry-run    validate configuration without changing anything
    gitraf-backup help       show usage

Settings come from the environment (REPOS_DIR, S3_BUCKET, ...) and can be
overridden with the global options.
"""

import signal

import click

from gitraf_backup import configure_logging
from gitraf_backup.config import BackupConfig, PreflightError
from gitraf_backup.models import EXIT_FATAL, EXIT_OK, RunMode, TransferMode
from gitraf_backup.backup.executor import run_backup


def _fail(ctx, error):
    click.echo(f"Error: {error}", err=True)
    ctx.exit(EXIT_FATAL)


@click.group(invoke_without_command=True, context_settings={'help_option_names': ['-h', '--help']})
@click.option('--repos-dir', help='Directory containing the bare repositories.')
@click.option('--bucket', help='Destination S3 bucket.')
@click.option('--prefix', help='Key prefix inside the bucket.')
@click.option('--profile', help='AWS profile holding the credentials.')
@click.option('--retention-days', type=int, help='Delete backups older than this many days (0 disables).')
@click.option('--mode', type=click.Choice([m.value for m in TransferMode]), help='Transfer mode.')
@click.option('--lock-file', help='Lock file preventing concurrent runs.')
@click.option('--log-dir', help='Directory for the rotating log file.')
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging.')
@click.pass_context
def cli(ctx, repos_dir, bucket, prefix, profile, retention_days, mode, lock_file, log_dir, verbose):
    """Back up bare git repositories to S3."""
    try:
        config = BackupConfig.from_env().override(
            repos_dir=repos_dir,
            s3_bucket=bucket,
            s3_prefix=prefix,
            aws_profile=profile,
            retention_days=retention_days,
            transfer_mode=mode,
            lock_file=lock_file,
            log_dir=log_dir
        )
    except PreflightError as e:
        _fail(ctx, e)

    ctx.obj = {'config': config, 'verbose': verbose}

    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command('list')
@click.pass_context
def list_repositories(ctx):
    """List all repositories that would be backed up."""
    configure_logging(None, ctx.obj['verbose'])
    config = ctx.obj['config']

    try:
        result = run_backup(config, RunMode.LIST)
    except PreflightError as e:
        _fail(ctx, e)

    click.echo("Repositories to backup:")
    for repo in result.repositories:
        click.echo(f"  - {repo.name} ({repo.path})")
    ctx.exit(EXIT_OK)


@cli.command('dry-run')
@click.option('--check-bucket', is_flag=True, help='Also verify that the bucket is reachable.')
@click.pass_context
def dry_run(ctx, check_bucket):
    """Show what would be backed up without doing it."""
    configure_logging(None, ctx.obj['verbose'])
    config = ctx.obj['config']

    try:
        result = run_backup(config, RunMode.DRY_RUN, check_bucket=check_bucket)
    except PreflightError as e:
        _fail(ctx, e)

    click.echo(f"Would backup repositories from: {config.repos_dir}")
    click.echo(f"To S3 bucket: {result.destination}")
    click.echo(f"Transfer mode: {config.transfer_mode.value}, retention: {config.retention_days} days")
    for repo in result.repositories:
        click.echo(f"  - {repo.name}")
    ctx.exit(EXIT_OK)


@cli.command('run')
@click.pass_context
def run(ctx):
    """Back up all repositories and clean up old backups."""
    config = ctx.obj['config']
    try:
        configure_logging(config.log_dir, ctx.obj['verbose'])
    except OSError as e:
        _fail(ctx, f"Cannot set up logging in {config.log_dir}: {e}")

    try:
        result = run_backup(config, RunMode.EXECUTE)
    except PreflightError as e:
        _fail(ctx, e)

    click.echo(result.summary())
    ctx.exit(result.exit_code)


@cli.command('help')
@click.pass_context
def show_help(ctx):
    """Show this help message."""
    click.echo(ctx.parent.get_help())
    ctx.exit(EXIT_OK)


def _terminate(signum, frame):
    # Turn SIGTERM into SystemExit so the run lock is released on the way out
    raise SystemExit(128 + signum)


def main():
    signal.signal(signal.SIGTERM, _terminate)
    cli()


if __name__ == '__main__':
    main()
