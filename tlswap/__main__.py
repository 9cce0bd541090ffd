import sys

from tlswap.cli import main

sys.exit(main())
