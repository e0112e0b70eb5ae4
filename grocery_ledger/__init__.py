"""
Grocery Ledger - Source Package

Shared shopping lists, priced purchase history and email invitations
for small trusted groups.

DESIGN PRINCIPLES:
1. Every mutation is checked against the caller's identity first
2. Money is never recorded without the list being trimmed (and vice versa)
3. Local state is optimistic, but always rolls back to a confirmed snapshot
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Grocery Ledger Team"
