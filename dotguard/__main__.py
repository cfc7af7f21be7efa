"""
Main entry point for running dotguard as a module.

Usage:
    python -m dotguard <command> [options]
"""

from .cli import main
import sys

if __name__ == "__main__":
    sys.exit(main())
