"""
Storage layer for the account, its ledger, request logs and the admin.

Uses SQLite (embedded, WAL journal, foreign keys enforced).
"""

from usage_monitor.storage.database import LedgerDatabase, get_ledger_db, set_ledger_db

__all__ = ["LedgerDatabase", "get_ledger_db", "set_ledger_db"]
