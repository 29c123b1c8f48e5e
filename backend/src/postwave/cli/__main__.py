"""CLI entry point for postwave.cli module.

Enables execution via: python -m postwave.cli
"""

from postwave.cli.sweep_stuck_jobs import main

if __name__ == "__main__":
    main()
