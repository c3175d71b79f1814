import sys

from perfdive import cli


sys.exit(cli.main())
