"""
Back Office Core

Retail-banking back office: account balances, the pending-transaction
approval lifecycle, loan adjudication, notifications and administrative
overrides. All money is handled as Decimal and every balance change is
committed together with its ledger row.
"""

__version__ = "1.0.0"
