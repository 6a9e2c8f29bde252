"""
Package entry point.

Allows running the application via:

    python -m fermitoday

This simply forwards execution to fermitoday.cli.main().
"""

from fermitoday.cli import main

if __name__ == "__main__":
    main()
