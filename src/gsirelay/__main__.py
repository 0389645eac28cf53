from gsirelay.cli import main

raise SystemExit(main())
