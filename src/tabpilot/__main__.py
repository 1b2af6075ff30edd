"""Entry point for the tabpilot command line.

Usage:
    python -m tabpilot sessions list
    python -m tabpilot permissions set example.com --mode autonomous --allow click
"""

import sys

from tabpilot.cli import run_cli


def main() -> None:
    sys.exit(run_cli(sys.argv[1:]))


if __name__ == "__main__":
    main()
