"""Allow ``python -m rpvakit``."""

import sys

from rpvakit.cli import main

sys.exit(main())
