"""Main entry point for the Apoyo CLI.

Usage:
    python -m apoyo.main --help
    apoyo --help
"""

from apoyo.cli import main

if __name__ == "__main__":
    main()
