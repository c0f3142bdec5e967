"""Entry point for `python -m kubesentry`.

Usage:
    python -m kubesentry
    python -m kubesentry --log-level debug
"""

from __future__ import annotations

import sys

from kubesentry.cli import main

sys.exit(main())
