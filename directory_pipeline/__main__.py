# Allows the package to be run as a script using `python -m directory_pipeline`

from __future__ import annotations

import sys

from directory_pipeline.cli import main

if __name__ == "__main__":
    sys.exit(main())
