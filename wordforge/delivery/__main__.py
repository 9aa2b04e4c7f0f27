"""
Entry point for running WordForge as a module.

Usage:
    python -m wordforge.delivery review
    python -m wordforge.delivery stats
    python -m wordforge.delivery --help
"""
from .wordforge_cli import main

if __name__ == "__main__":
    main()
