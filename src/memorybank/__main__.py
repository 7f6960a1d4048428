import sys

from memorybank.cli import main

sys.exit(main())
