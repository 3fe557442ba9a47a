from scaudit.cli import main

main()
