"""CLI entry point for evidvault.cli module.

Enables execution via: python -m evidvault.cli
"""

from evidvault.cli.retry_migrations import main

if __name__ == "__main__":
    main()
