"""
Gatehouse — Telemetry Store
============================

What:  Persistence operations for page views, asset accesses and error reports.
Why:   Keeps SQL out of the recorder and the rescue handler, and gives the
       (user, asset) counter its lookup-or-create guarantee in one place.
How:   A thin class over an AsyncSession. The caller owns the transaction:
       the store adds and flushes, the caller commits once.

Concurrency:
    Two requests can race to create the same (user, asset) access. The
    insert runs inside a SAVEPOINT; on IntegrityError the savepoint is rolled
    back and the row the other request committed is read instead.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.models import AssetUserAccess, ErrorReport, PageView

logger = logging.getLogger(__name__)

class TelemetryStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Page views ────────────────────────────────────────────────────────

    async def find_page_view(self, page_view_id: str) -> Optional[PageView]:
        try:
            key = uuid.UUID(str(page_view_id))
        except ValueError:
            return None
        return await self.db.get(PageView, key)

    async def save_page_view(self, page_view: PageView) -> PageView:
        """Insert or update; the same object is reused for the follow-up update."""
        page_view = await self.db.merge(page_view)
        await self.db.flush()
        return page_view

    # ── Asset accesses ────────────────────────────────────────────────────

    async def find_or_initialize_access(self, user_id: int, asset_code: str) -> AssetUserAccess:
        access = await self._find_access(user_id, asset_code)
        if access is not None:
            return access

        access = AssetUserAccess(user_id=user_id, asset_code=asset_code, view_score=0.0, participate_score=0.0)
        try:
            async with self.db.begin_nested():
                self.db.add(access)
        except IntegrityError:
            logger.info("Concurrent create of access %s/%s; reusing the winner", user_id, asset_code)
            access = await self._find_access(user_id, asset_code)
            if access is None:
                raise
        return access

    async def _find_access(self, user_id: int, asset_code: str) -> Optional[AssetUserAccess]:
        result = await self.db.execute(
            select(AssetUserAccess).where(
                AssetUserAccess.user_id == user_id,
                AssetUserAccess.asset_code == asset_code,
            )
        )
        return result.scalar_one_or_none()

    # ── Error reports ─────────────────────────────────────────────────────

    async def create_error_report(self, **fields) -> ErrorReport:
        report = ErrorReport(**fields)
        self.db.add(report)
        await self.db.flush()
        return report
