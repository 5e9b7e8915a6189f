from mockrig.mock_server import main

raise SystemExit(main())
