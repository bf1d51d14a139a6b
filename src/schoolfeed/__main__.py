import sys

from schoolfeed.cli import main

sys.exit(main())
