from gitraf_backup.cli import main

main()
