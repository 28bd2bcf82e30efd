#!/usr/bin/env python3
"""Wake-on-Connect Minecraft Gateway - Main Entry Point

Runs the gateway from a source checkout. Installed copies use the
``wake-proxy`` console script instead.
"""

import sys

from wakeproxy.cli import main


if __name__ == '__main__':
    sys.exit(main())
