import sys

from triage_app.operator import main

sys.exit(main())
