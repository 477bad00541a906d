"""CLI entry point for photoforge.cli module.

Enables execution via: python -m photoforge.cli
"""

from photoforge.cli.reconcile_predictions import main

if __name__ == "__main__":
    main()
