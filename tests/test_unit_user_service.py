"""Service tests for registration, profiles and role administration."""

import pytest

from guardian.core.exceptions import Forbidden, InvalidInput, InvariantViolation, Unauthorized
from guardian.models.enums import UserRole
from guardian.services import auth_service, authorization_service, child_service, user_service
from tests.conftest import PASSWORD


class TestRegister:
    async def test_email_is_case_folded(self, db_session):
        user = await auth_service.register(db_session, "  Anna@Test.DE ", PASSWORD, "Anna", "parent")
        assert user.email == "anna@test.de"
        assert user.roles == {UserRole.PARENT}
        assert not await auth_service.is_email_available(db_session, "ANNA@test.de")

    async def test_duplicate_email(self, db_session):
        await auth_service.register(db_session, "dupe@test.de", PASSWORD, "Erster")
        with pytest.raises(InvariantViolation):
            await auth_service.register(db_session, "DUPE@test.de", PASSWORD, "Zweiter")

    async def test_unknown_role_is_pending(self, db_session):
        user = await auth_service.register(db_session, "x@test.de", PASSWORD, "Xaver", "wizard")
        assert user.roles == {UserRole.PENDING}

    async def test_name_length(self, db_session):
        with pytest.raises(InvalidInput):
            await auth_service.register(db_session, "y@test.de", PASSWORD, "Y")


class TestLogin:
    async def test_same_error_for_email_and_password(self, db_session):
        await auth_service.register(db_session, "login@test.de", PASSWORD, "Login")
        with pytest.raises(Unauthorized) as wrong_pw:
            await auth_service.login(db_session, "login@test.de", "falsch-falsch")
        with pytest.raises(Unauthorized) as wrong_email:
            await auth_service.login(db_session, "nobody@test.de", PASSWORD)
        assert wrong_pw.value.message == wrong_email.value.message


class TestProfile:
    async def test_update_profile(self, db_session, make_user):
        user = await make_user(UserRole.PARENT)
        await user_service.update_profile(db_session, user, name="Neuer Name", email="Neu@Test.de")
        assert user.name == "Neuer Name"
        assert user.email == "neu@test.de"

    async def test_blank_fields_are_ignored(self, db_session, make_user):
        user = await make_user(UserRole.PARENT, name="Alt")
        await user_service.update_profile(db_session, user, name="  ", email="")
        assert user.name == "Alt"

    async def test_email_taken(self, db_session, make_user):
        first = await make_user(UserRole.PARENT)
        second = await make_user(UserRole.PARENT)
        with pytest.raises(InvariantViolation):
            await user_service.update_profile(db_session, second, email=first.email)

    async def test_change_password(self, db_session, make_user):
        user = await make_user(UserRole.PARENT)
        with pytest.raises(Unauthorized):
            await user_service.change_password(db_session, user, "falsch-falsch", "neues-passwort")
        await user_service.change_password(db_session, user, PASSWORD, "neues-passwort")
        pair = await auth_service.login(db_session, user.email, "neues-passwort")
        assert pair.user.id == user.id


class TestRoles:
    async def test_change_role_writes_history(self, db_session, make_user):
        admin = await make_user(UserRole.ADMIN)
        user = await make_user(UserRole.PENDING)

        await user_service.change_role(db_session, admin, user.id, UserRole.THERAPIST)

        assert user.roles == {UserRole.THERAPIST}
        history = await user_service.list_role_history(db_session, admin, user.id)
        assert len(history) == 1
        assert history[0].previous_roles == "PENDING"
        assert history[0].new_role == "THERAPIST"
        assert history[0].changed_by_user_id == admin.id

    async def test_non_admin_cannot_change_roles(self, db_session, make_user):
        parent = await make_user(UserRole.PARENT)
        other = await make_user(UserRole.PENDING)
        with pytest.raises(Forbidden):
            await user_service.change_role(db_session, parent, other.id, UserRole.ADMIN)
        with pytest.raises(Forbidden):
            await user_service.list_users(db_session, parent)

    async def test_primary_guardian_keeps_parent_role(self, db_session, make_user):
        admin = await make_user(UserRole.ADMIN)
        parent = await make_user(UserRole.PARENT)
        auth = await child_service.create_child(db_session, parent, "Mia")

        with pytest.raises(InvariantViolation):
            await user_service.change_role(db_session, admin, parent.id, UserRole.THERAPIST)

        assert parent.roles == {UserRole.PARENT}
        assert await user_service.list_role_history(db_session, admin, parent.id) == []
        reloaded = await authorization_service.load_child_authorization(db_session, auth.child.id)
        assert reloaded.is_primary_parent(parent.id)

    async def test_primary_guardian_may_stay_parent(self, db_session, make_user):
        admin = await make_user(UserRole.ADMIN)
        parent = await make_user(UserRole.PARENT, UserRole.TEACHER)
        await child_service.create_child(db_session, parent, "Mia")

        await user_service.change_role(db_session, admin, parent.id, UserRole.PARENT)
        assert parent.roles == {UserRole.PARENT}

    async def test_last_role_cannot_be_removed(self, make_user):
        user = await make_user(UserRole.PARENT)
        user.add_role(UserRole.TEACHER)
        user.remove_role(UserRole.TEACHER)
        with pytest.raises(InvariantViolation):
            user.remove_role(UserRole.PARENT)
        assert user.roles == {UserRole.PARENT}
