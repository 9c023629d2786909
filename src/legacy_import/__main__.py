"""Entry point for ``python -m legacy_import``."""

import sys

from legacy_import.cli import main

sys.exit(main())
