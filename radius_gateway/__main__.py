from radius_gateway.cli import main

raise SystemExit(main())
