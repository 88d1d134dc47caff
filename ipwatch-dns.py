#!/usr/bin/env python3

"""Compatibility wrapper.

The project is packaged under `src/ipwatch_dns`. This wrapper allows running
`./ipwatch-dns.py watch ...` from a fresh checkout, e.g. as a `consul watch`
handler.

Note: This file intentionally tweaks sys.path before importing the package.
"""

import sys
from pathlib import Path


sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from ipwatch_dns.cli import main  # noqa: E402


if __name__ == "__main__":
    main()
