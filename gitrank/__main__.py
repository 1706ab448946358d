import sys

from gitrank.main import main

sys.exit(main())
