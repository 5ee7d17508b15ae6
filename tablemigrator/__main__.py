from tablemigrator.cli import main

raise SystemExit(main())
