"""Concurrent grant mutations on one child.

The per-child lock serializes writers inside one process; the row lock on
the child serializes writers across sessions (PostgreSQL only, SQLite
ignores ``FOR UPDATE``).
"""

import asyncio
import uuid

import pytest
from sqlalchemy import func, select

from guardian.core.exceptions import Forbidden, InvariantViolation
from guardian.database import session_scope
from guardian.models.child import ChildAuthorizedUser
from guardian.models.enums import ChildPermission, UserRole
from guardian.services import auth_service, authorization_service, child_service
from tests.conftest import PASSWORD, TEST_DATABASE_URL, _TestSession


async def _active_primaries(db, child_id) -> int:
    result = await db.execute(
        select(func.count()).select_from(ChildAuthorizedUser).where(
            ChildAuthorizedUser.child_id == child_id,
            ChildAuthorizedUser.is_primary.is_(True),
            ChildAuthorizedUser.is_active.is_(True),
        )
    )
    return result.scalar_one()


class TestChildLock:
    async def test_lock_is_shared_per_child(self):
        child_id = uuid.uuid4()
        assert authorization_service.child_lock(child_id) is authorization_service.child_lock(child_id)
        assert authorization_service.child_lock(child_id) is not authorization_service.child_lock(uuid.uuid4())

    async def test_duplicate_grants_race(self, db_session, make_user):
        parent = await make_user(UserRole.PARENT)
        teacher = await make_user(UserRole.TEACHER)
        auth = await child_service.create_child(db_session, parent, "Mia")

        results = await asyncio.gather(
            *(
                authorization_service.grant_authorization(
                    db_session, auth.child.id, parent.id, teacher.id, [ChildPermission.VIEW_REPORT],
                )
                for _ in range(2)
            ),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ChildAuthorizedUser) for r in results) == 1
        assert sum(isinstance(r, InvariantViolation) for r in results) == 1

    async def test_competing_transfers_leave_one_primary(self, db_session, make_user):
        parent = await make_user(UserRole.PARENT)
        co_a = await make_user(UserRole.PARENT)
        co_b = await make_user(UserRole.PARENT)
        auth = await child_service.create_child(db_session, parent, "Mia")
        for user in (co_a, co_b):
            await authorization_service.grant_authorization(
                db_session, auth.child.id, parent.id, user.id, [ChildPermission.VIEW_REPORT],
            )

        results = await asyncio.gather(
            authorization_service.transfer_primary_parent(db_session, auth.child.id, parent.id, co_a.id),
            authorization_service.transfer_primary_parent(db_session, auth.child.id, parent.id, co_b.id),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, ChildAuthorizedUser)]
        assert len(winners) == 1
        assert sum(isinstance(r, Forbidden) for r in results) == 1
        assert await _active_primaries(db_session, auth.child.id) == 1
        reloaded = await authorization_service.load_child_authorization(db_session, auth.child.id)
        assert reloaded.primary_parent_id() == winners[0].user_id


@pytest.mark.skipif(
    TEST_DATABASE_URL.startswith("sqlite"), reason="SQLite has no row-level locks",
)
class TestAcrossSessions:
    async def test_duplicate_grant_from_two_sessions(self):
        async with session_scope(_TestSession) as db:
            parent = await auth_service.register(
                db, f"p-{uuid.uuid4().hex[:8]}@test.de", PASSWORD, "Anna", "PARENT",
            )
            teacher = await auth_service.register(
                db, f"t-{uuid.uuid4().hex[:8]}@test.de", PASSWORD, "Tom", "TEACHER",
            )
            auth = await child_service.create_child(db, parent, "Mia")
        child_id = auth.child.id

        async def grant():
            async with session_scope(_TestSession) as db:
                return await authorization_service.grant_authorization(
                    db, child_id, parent.id, teacher.id, [ChildPermission.VIEW_REPORT],
                )

        results = await asyncio.gather(grant(), grant(), return_exceptions=True)

        assert sum(isinstance(r, InvariantViolation) for r in results) == 1
        async with _TestSession() as db:
            result = await db.execute(
                select(func.count()).select_from(ChildAuthorizedUser).where(
                    ChildAuthorizedUser.child_id == child_id,
                    ChildAuthorizedUser.user_id == teacher.id,
                    ChildAuthorizedUser.is_active.is_(True),
                )
            )
            assert result.scalar_one() == 1
            assert await _active_primaries(db, child_id) == 1
