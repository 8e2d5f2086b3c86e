from lexrel.cli.app import main

main()
