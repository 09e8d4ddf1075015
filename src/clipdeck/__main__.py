from clipdeck.ui.cli import main

raise SystemExit(main())
