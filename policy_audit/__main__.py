"""
Allow running the audit as a Python module.

Usage:
    python -m policy_audit --snapshot inventory.json --required-tag Owner
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
