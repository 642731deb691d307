"""Allow ``python -m rtm_db``."""
import sys

from rtm_db.cli import main

if __name__ == '__main__':
    sys.exit(main())
