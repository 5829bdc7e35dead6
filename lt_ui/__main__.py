from lt_ui.cli import main

main()
