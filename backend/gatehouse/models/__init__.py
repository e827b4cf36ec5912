"""
Gatehouse — ORM Models
=======================

Importing this package registers every table on `Base.metadata`
(Alembic autogenerate and the test suite's `create_all` rely on that).
"""

from gatehouse.models.asset_access import AssetUserAccess
from gatehouse.models.error_report import ErrorReport
from gatehouse.models.page_view import PageView

__all__ = ["AssetUserAccess", "ErrorReport", "PageView"]
