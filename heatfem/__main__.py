import sys

from heatfem.cli import main

sys.exit(main())
