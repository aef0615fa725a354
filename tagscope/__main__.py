"""Allow ``python -m tagscope``."""

from tagscope.main import main

raise SystemExit(main())
