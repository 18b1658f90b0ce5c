import sys

from fluxstudio.api.cli import main

sys.exit(main())
