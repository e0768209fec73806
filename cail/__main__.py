import sys

from cail.modules.cli import main

sys.exit(main())
