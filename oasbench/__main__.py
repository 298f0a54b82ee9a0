import sys

from oasbench.cli import main

if __name__ == "__main__":
    sys.exit(main())
