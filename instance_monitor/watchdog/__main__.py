from instance_monitor.watchdog.main import main

raise SystemExit(main())
