"""
Expense Sync - Source Package

Keeps a household expense tracker's local state in step with a Google
Sheet that acts as the shared system of record.

DESIGN PRINCIPLES:
1. The spreadsheet stays human-editable
2. Fail early, fail visibly
3. A lost update is refused, never silently overwritten
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Sync Team"
