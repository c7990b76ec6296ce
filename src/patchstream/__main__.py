import sys

from patchstream.cli import main

sys.exit(main())
