"""
Entry point for running the relayer as a module.

Usage:
    python -m foodvest_relayer
"""

from foodvest_relayer.cli import main

if __name__ == "__main__":
    main()
