"""Entry point for `python -m kubedump`.

Usage:
    KUBEDUMP_FILTER="namespace default" python -m kubedump
"""

from __future__ import annotations

import asyncio

from kubedump.app import main

asyncio.run(main())
