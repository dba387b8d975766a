"""
Entry point for running the irt_case_studies package.

Usage:
    python -m irt_case_studies [command] [options]
"""
from .cli import main

if __name__ == "__main__":
    main()
