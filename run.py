#!/usr/bin/env python3
"""Backup runner for cron and systemd units"""
from gitraf_backup.cli import main

if __name__ == '__main__':
    main()
