"""
Entry point for running the correlation module as a script.

Usage:
    python -m scripts.correlation run 2025-07-01 2025-07-31
    python -m scripts.correlation report 2025-07-01 2025-07-31
"""

from .cli import main

if __name__ == '__main__':
    main()
