"""Web reader for Komic.

Serves the site pages (browse, series, chapters, accounts, groups, admin)
and their JSON APIs.
"""

from .admin_router import router as admin_router
from .groups_router import router as groups_router
from .router import router

__all__ = ["router", "groups_router", "admin_router"]
