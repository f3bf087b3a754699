import sys

from datasphere.cli import main

sys.exit(main())
