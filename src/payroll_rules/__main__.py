"""Entry point for `python -m payroll_rules`."""

import sys

from payroll_rules.cli import main

if __name__ == "__main__":
    sys.exit(main())
