"""Integration tests for grant management under /api/v1/children/{id}."""

from tests.conftest import API, register_and_login


class TestAuthorizations:
    async def test_grant_flow(self, client, registered_parent, child_of_parent):
        child_id = child_of_parent["id"]
        therapist = await register_and_login(client, "THERAPIST")
        url = f"{API}/children/{child_id}/authorizations"

        resp = await client.post(url, headers=registered_parent["headers"], json={
            "user_id": therapist["user_id"], "permissions": ["VIEW_REPORT", "WRITE_NOTE"],
        })
        assert resp.status_code == 201, resp.text
        assert resp.json()["permissions"] == ["VIEW_REPORT", "WRITE_NOTE"]
        assert resp.json()["is_primary"] is False

        # the therapist now sees the child and its caregivers
        resp = await client.get(url, headers=therapist["headers"])
        assert resp.status_code == 200
        assert {g["user_id"] for g in resp.json()} == {registered_parent["user_id"], therapist["user_id"]}

        resp = await client.put(f"{url}/{therapist['user_id']}", headers=registered_parent["headers"], json={
            "permissions": ["VIEW_REPORT"],
        })
        assert resp.json()["permissions"] == ["VIEW_REPORT"]

        resp = await client.delete(f"{url}/{therapist['user_id']}", headers=registered_parent["headers"])
        assert resp.status_code == 204
        resp = await client.get(f"{API}/children/{child_id}", headers=therapist["headers"])
        assert resp.status_code == 403

    async def test_non_primary_cannot_grant(self, client, registered_parent, child_of_parent):
        child_id = child_of_parent["id"]
        therapist = await register_and_login(client, "THERAPIST")
        teacher = await register_and_login(client, "TEACHER")
        url = f"{API}/children/{child_id}/authorizations"
        await client.post(url, headers=registered_parent["headers"], json={
            "user_id": therapist["user_id"], "permissions": ["VIEW_REPORT"],
        })

        resp = await client.post(url, headers=therapist["headers"], json={
            "user_id": teacher["user_id"], "permissions": ["VIEW_REPORT"],
        })
        assert resp.status_code == 403

    async def test_primary_cannot_be_revoked(self, client, registered_parent, child_of_parent):
        url = f"{API}/children/{child_of_parent['id']}/authorizations/{registered_parent['user_id']}"
        resp = await client.delete(url, headers=registered_parent["headers"])
        assert resp.status_code == 409
        assert resp.json()["code"] == "invariant_violation"

    async def test_duplicate_grant(self, client, registered_parent, child_of_parent):
        teacher = await register_and_login(client, "TEACHER")
        url = f"{API}/children/{child_of_parent['id']}/authorizations"
        body = {"user_id": teacher["user_id"], "permissions": ["VIEW_REPORT"]}
        assert (await client.post(url, headers=registered_parent["headers"], json=body)).status_code == 201
        assert (await client.post(url, headers=registered_parent["headers"], json=body)).status_code == 409


class TestTransferPrimary:
    async def test_transfer(self, client, registered_parent, child_of_parent):
        child_id = child_of_parent["id"]
        co_parent = await register_and_login(client, "PARENT")
        await client.post(f"{API}/children/{child_id}/authorizations", headers=registered_parent["headers"], json={
            "user_id": co_parent["user_id"], "permissions": ["VIEW_REPORT"],
        })
        url = f"{API}/children/{child_id}/transfer-primary"

        resp = await client.post(url, headers=registered_parent["headers"], json={
            "new_user_id": co_parent["user_id"], "pin": "0000",
        })
        assert resp.status_code == 401

        resp = await client.post(url, headers=registered_parent["headers"], json={
            "new_user_id": co_parent["user_id"], "pin": "1234",
        })
        assert resp.status_code == 200, resp.text
        assert resp.json()["is_primary"] is True
        assert len(resp.json()["permissions"]) == 5

        old = await client.get(f"{API}/children/{child_id}", headers=registered_parent["headers"])
        assert old.json()["is_primary"] is False
        new = await client.get(f"{API}/children/{child_id}", headers=co_parent["headers"])
        assert new.json()["is_primary"] is True

    async def test_transfer_to_therapist_rejected(self, client, registered_parent, child_of_parent):
        child_id = child_of_parent["id"]
        therapist = await register_and_login(client, "THERAPIST")
        await client.post(f"{API}/children/{child_id}/authorizations", headers=registered_parent["headers"], json={
            "user_id": therapist["user_id"], "permissions": ["VIEW_REPORT"],
        })
        resp = await client.post(f"{API}/children/{child_id}/transfer-primary", headers=registered_parent["headers"], json={
            "new_user_id": therapist["user_id"], "pin": "1234",
        })
        assert resp.status_code == 409
        assert resp.json()["code"] == "role_mismatch"

    async def test_transfer_to_stranger_not_found(self, client, registered_parent, child_of_parent):
        stranger = await register_and_login(client, "PARENT")
        resp = await client.post(
            f"{API}/children/{child_of_parent['id']}/transfer-primary",
            headers=registered_parent["headers"],
            json={"new_user_id": stranger["user_id"], "pin": "1234"},
        )
        assert resp.status_code == 404
