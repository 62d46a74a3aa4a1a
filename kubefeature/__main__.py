"""Entry point for `python -m kubefeature`.

Usage:
    python -m kubefeature
"""

from __future__ import annotations

import asyncio

from kubefeature.app import main

asyncio.run(main())
