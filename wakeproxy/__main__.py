"""Allow running the gateway with ``python -m wakeproxy``."""

import sys

from .cli import main


sys.exit(main())
