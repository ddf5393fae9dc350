"""Main entry point when executing connsync as a package.

This allows running the package using python -m connsync.
"""

from connsync.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
