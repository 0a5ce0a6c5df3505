"""CLI entry point for genqueue.cli module.

Enables execution via: python -m genqueue.cli
"""

from genqueue.cli.recover_queue import main

if __name__ == "__main__":
    raise SystemExit(main())
