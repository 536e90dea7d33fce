"""Entry point for ``python -m salary_engine``."""

import sys

from salary_engine.cli import main

if __name__ == "__main__":
    sys.exit(main())
