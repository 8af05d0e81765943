"""Allow ``python -m ternity_auth``."""

import sys

from .cli import main


sys.exit(main())
