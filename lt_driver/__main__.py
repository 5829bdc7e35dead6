from lt_driver.cli import main

raise SystemExit(main())
