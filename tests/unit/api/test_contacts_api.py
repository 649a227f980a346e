"""End-to-end tests for the contact endpoints.

The application runs with SQLite and the in-memory edge backend, so cache
hits, invalidation and ledger effects are observable through HTTP.
"""

from __future__ import annotations

from collections.abc import Callable

import httpx

Headers = Callable[..., dict[str, str]]


class TestContactReads:
    """Test masked reads and their caching."""

    async def test_anonymous_is_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/contacts")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "Unauthorized"
        assert response.headers["cache-control"] == "no-store"

    async def test_invalid_token_is_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/contacts", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_list_is_masked(self, client: httpx.AsyncClient, auth: Headers) -> None:
        response = await client.get("/api/contacts", headers=auth())

        assert response.status_code == 200
        body = response.json()
        assert body["pagination"] == {"page": 1, "limit": 20, "total": 2, "totalPages": 1}
        names = {c["id"]: c["name"] for c in body["data"]}
        assert names == {1: "JD", 2: "JS"}
        assert all(c["email"] is None for c in body["data"])
        assert all(c["isUnlocked"] is False for c in body["data"])

    async def test_second_read_is_a_hit(self, client: httpx.AsyncClient, auth: Headers) -> None:
        first = await client.get("/api/contacts/1", headers=auth())
        second = await client.get("/api/contacts/1", headers=auth())

        assert first.headers["x-cache-status"] == "MISS"
        assert second.headers["x-cache-status"] == "HIT"
        assert second.json() == first.json()
        assert second.headers["etag"] == first.headers["etag"]
        assert first.headers["cache-control"] == "private, max-age=60, stale-while-revalidate=120"
        assert "age" in second.headers

    async def test_users_do_not_share_entries(
        self, client: httpx.AsyncClient, auth: Headers
    ) -> None:
        await client.get("/api/contacts/1", headers=auth("u1"))
        other = await client.get("/api/contacts/1", headers=auth("u2"))
        assert other.headers["x-cache-status"] == "MISS"

    async def test_if_none_match(self, client: httpx.AsyncClient, auth: Headers) -> None:
        first = await client.get("/api/contacts/1", headers=auth())
        response = await client.get(
            "/api/contacts/1", headers={**auth(), "If-None-Match": first.headers["etag"]}
        )
        assert response.status_code == 304

    async def test_missing_contact(self, client: httpx.AsyncClient, auth: Headers) -> None:
        response = await client.get("/api/contacts/999", headers=auth())

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NotFound"
        assert "x-cache-status" not in response.headers

    async def test_filters(self, client: httpx.AsyncClient, auth: Headers) -> None:
        response = await client.get("/api/contacts", params={"city": "Cusco"}, headers=auth())
        assert [c["id"] for c in response.json()["data"]] == [2]

    async def test_limit_is_bounded(self, client: httpx.AsyncClient, auth: Headers) -> None:
        response = await client.get("/api/contacts", params={"limit": 500}, headers=auth())
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "BadRequest"


class TestUnlock:
    """Test spending credits to reveal contacts."""

    async def test_unlock_reveals_contact(self, client: httpx.AsyncClient, auth: Headers) -> None:
        masked = await client.get("/api/contacts/1", headers=auth())
        assert masked.json()["data"]["email"] is None

        response = await client.post("/api/contacts/unlock", json={"contactId": 1}, headers=auth())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["alreadyUnlocked"] is False
        assert body["creditsRemaining"] == 4
        assert body["contact"]["email"] == "jane@acme.test"
        assert response.headers["cache-control"] == "no-store"

        revealed = await client.get("/api/contacts/1", headers=auth())
        assert revealed.headers["x-cache-status"] == "MISS"
        assert revealed.json()["data"]["email"] == "jane@acme.test"
        assert revealed.json()["data"]["isUnlocked"] is True

    async def test_unlock_refreshes_default_paged_list(
        self, client: httpx.AsyncClient, auth: Headers
    ) -> None:
        paging = {"page": 1, "limit": 20}
        before = await client.get("/api/contacts", params=paging, headers=auth())
        assert all(c["email"] is None for c in before.json()["data"])

        await client.post("/api/contacts/unlock", json={"contactId": 1}, headers=auth())

        after = await client.get("/api/contacts", params=paging, headers=auth())
        assert after.headers["x-cache-status"] == "MISS"
        jane = next(c for c in after.json()["data"] if c["id"] == 1)
        assert jane["email"] == "jane.test"

    async def test_unlock_twice_charges_once(
        self, client: httpx.AsyncClient, auth: Headers
    ) -> None:
        await client.post("/api/contacts/unlock", json={"contactId": 1}, headers=auth())
        response = await client.post("/api/contacts/unlock", json={"contactId": 1}, headers=auth())

        body = response.json()
        assert body["alreadyUnlocked"] is True
        assert body["creditsRemaining"] == 4

    async def test_status_follows_unlock(self, client: httpx.AsyncClient, auth: Headers) -> None:
        before = await client.get("/api/contacts/status", params={"contactId": 1}, headers=auth())
        assert before.json()["isUnlocked"] is False
        assert before.json()["userCredits"] == 5

        await client.post("/api/contacts/unlock", json={"contactId": 1}, headers=auth())

        after = await client.get("/api/contacts/status", params={"contactId": 1}, headers=auth())
        assert after.headers["x-cache-status"] == "MISS"
        assert after.json()["isUnlocked"] is True
        assert after.json()["userCredits"] == 4
        assert after.json()["unlockedAt"] is not None

    async def test_unlocked_list(self, client: httpx.AsyncClient, auth: Headers) -> None:
        await client.get("/api/contacts/unlocked", headers=auth())
        await client.post("/api/contacts/unlock", json={"contactId": 2}, headers=auth())

        response = await client.get("/api/contacts/unlocked", headers=auth())
        body = response.json()
        assert response.headers["x-cache-status"] == "MISS"
        assert [c["id"] for c in body["data"]] == [2]
        assert body["data"][0]["creditsSpent"] == 1
        assert body["pagination"]["total"] == 1

    async def test_unlocked_list_skips_deleted_contacts(
        self, client: httpx.AsyncClient, auth: Headers
    ) -> None:
        """Unlocks of deleted contacts count toward neither rows nor total."""
        await client.post("/api/contacts/unlock", json={"contactId": 1}, headers=auth())
        await client.post("/api/contacts/unlock", json={"contactId": 2}, headers=auth())
        deleted = await client.delete("/api/admin/contacts/1", headers=auth("s1", "super_admin"))
        assert deleted.status_code == 200

        response = await client.get("/api/contacts/unlocked", headers=auth())
        body = response.json()
        assert [c["id"] for c in body["data"]] == [2]
        assert body["pagination"]["total"] == 1
        assert body["pagination"]["totalPages"] == 1

    async def test_insufficient_credits(self, client: httpx.AsyncClient, auth: Headers) -> None:
        response = await client.post(
            "/api/contacts/unlock", json={"contactId": 1}, headers=auth("broke")
        )

        assert response.status_code == 402
        error = response.json()["error"]
        assert error["code"] == "InsufficientCredits"
        assert error["userCredits"] == 0
        assert error["requiredCredits"] == 1

    async def test_unlock_missing_contact(self, client: httpx.AsyncClient, auth: Headers) -> None:
        response = await client.post(
            "/api/contacts/unlock", json={"contactId": 999}, headers=auth()
        )
        assert response.status_code == 404

    async def test_unlock_without_account(self, client: httpx.AsyncClient, auth: Headers) -> None:
        response = await client.post(
            "/api/contacts/unlock", json={"contactId": 1}, headers=auth("nobody")
        )
        assert response.status_code == 404
        assert "Credit account" in response.json()["error"]["message"]

    async def test_unlock_validation(self, client: httpx.AsyncClient, auth: Headers) -> None:
        response = await client.post("/api/contacts/unlock", json={}, headers=auth())
        assert response.status_code == 400
        assert response.json()["error"]["errors"]
