"""Library CLI - Helper Package

This package contains small helpers shared by the ledger and the CLI:
- ISBN validation (validators.py)
- Output modes and formatting (ui_helpers.py)
- Timestamp conversion (timestamps.py)
"""
