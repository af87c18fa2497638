"""
API routers for the usage monitor.

Routers:
- usage: logs, account, payments, analytics and admin setup
"""

from usage_monitor.routers.usage import router as usage_router

__all__ = ["usage_router"]
