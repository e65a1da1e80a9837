from wasession.cli import main

main()
