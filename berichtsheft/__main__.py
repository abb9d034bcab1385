"""
Package entry point.

Allows running the application via:

    python -m berichtsheft

This simply forwards execution to berichtsheft.cli.main().
"""

from berichtsheft.cli import main

if __name__ == "__main__":
    main()
