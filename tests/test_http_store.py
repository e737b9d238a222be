"""
Tests for HTTPStore against an in-process aiohttp document service.

Tests cover:
- Record put/get_all/delete and profile routes
- If-Match version conflicts
- Server errors surfacing as StoreUnavailable through the session
- Malformed documents counted as failures, not outages
- A full session round-trip over HTTP
"""
import pytest
from aiohttp import web
from aiohttp import test_utils

from sentinel_vault.vault import HTTPStore, VaultSession
from sentinel_vault.vault.exceptions import ConflictError, StoreUnavailable
from sentinel_vault.vault.models import EncryptedEnvelope, OwnerProfile

from .conftest import OWNER, PASSWORD


def make_app(state):
    records = state["records"]
    profiles = state["profiles"]

    def maybe_fail():
        if state["failing"]:
            raise web.HTTPInternalServerError()

    async def put_record(request):
        maybe_fail()
        identifier = request.match_info["id"]
        current = records.get(identifier)
        version = current["version"] if current else 0
        if_match = request.headers.get("If-Match")
        if if_match is not None and int(if_match) != version:
            raise web.HTTPConflict()
        records[identifier] = await request.json()
        return web.json_response(records[identifier])

    async def list_records(request):
        maybe_fail()
        owner = request.query["owner"]
        return web.json_response(
            [doc for doc in records.values() if doc["owner"] == owner]
        )

    async def delete_record(request):
        maybe_fail()
        doc = records.get(request.match_info["id"])
        if doc is None or doc["owner"] != request.query["owner"]:
            raise web.HTTPNotFound()
        del records[request.match_info["id"]]
        return web.Response(status=204)

    async def get_profile(request):
        doc = profiles.get(request.match_info["owner"])
        if doc is None:
            raise web.HTTPNotFound()
        return web.json_response(doc)

    async def put_profile(request):
        profiles[request.match_info["owner"]] = await request.json()
        return web.json_response(profiles[request.match_info["owner"]])

    app = web.Application()
    app.router.add_put("/records/{id}", put_record)
    app.router.add_get("/records", list_records)
    app.router.add_delete("/records/{id}", delete_record)
    app.router.add_get("/profiles/{owner}", get_profile)
    app.router.add_put("/profiles/{owner}", put_profile)
    return app


@pytest.fixture
def state():
    return {"records": {}, "profiles": {}, "failing": False}


@pytest.fixture
async def http_store(state):
    server = test_utils.TestServer(make_app(state))
    await server.start_server()
    store = HTTPStore(str(server.make_url("/")), timeout=5.0)
    try:
        yield store
    finally:
        await store.close()
        await server.close()


def envelope(identifier="a", owner=OWNER, version=1):
    return EncryptedEnvelope(
        identifier=identifier,
        ciphertext="Y2lwaGVydGV4dA==",
        nonce="AAAAAAAAAAAAAAAA",
        owner=owner,
        updated_at=7,
        version=version,
    )


class TestHTTPStore:
    """Tests for the HTTP routes."""

    async def test_put_and_get_all(self, http_store, state):
        await http_store.put(envelope("a"), expected_version=0)
        await http_store.put(envelope("b", owner="owner-b"))
        assert state["records"]["a"]["updatedAt"] == 7
        assert await http_store.get_all(OWNER) == [envelope("a").to_document()]

    async def test_conflict(self, http_store):
        await http_store.put(envelope("a"))
        with pytest.raises(ConflictError):
            await http_store.put(envelope("a", version=2), expected_version=0)

    async def test_delete(self, http_store, state):
        await http_store.put(envelope("a"))
        await http_store.delete("a", OWNER)
        assert state["records"] == {}
        await http_store.delete("a", OWNER)

    async def test_profiles(self, http_store):
        assert await http_store.get_profile(OWNER) is None
        profile = OwnerProfile(owner=OWNER, salt="AAAAAAAAAAAAAAAAAAAAAA==")
        await http_store.put_profile(profile)
        assert await http_store.get_profile(OWNER) == profile


class TestSessionOverHTTP:
    """A VaultSession backed by HTTPStore."""

    async def test_round_trip(self, http_store, state):
        session = VaultSession(http_store)
        session.authenticate(OWNER)
        await session.unlock(PASSWORD)
        rec = await session.upsert({"title": "Example", "password": "p@ss"})
        assert OWNER in state["profiles"]
        assert "p@ss" not in str(state["records"])
        session.logout()

        again = VaultSession(http_store)
        again.authenticate(OWNER)
        result = await again.unlock(PASSWORD)
        assert [r.identifier for r in result.records] == [rec.identifier]
        assert result.records[0].secret == "p@ss"

    async def test_malformed_document_is_skipped(self, http_store, state):
        session = VaultSession(http_store)
        session.authenticate(OWNER)
        await session.unlock(PASSWORD)
        await session.upsert({"title": "good"})

        state["records"]["bad"] = {
            "identifier": "bad", "owner": OWNER, "ciphertext": "xx",
        }
        result = await session.hydrate()
        assert [r.title for r in result.records] == ["good"]
        assert result.failures == 1
        assert session.failures == 1

    async def test_server_error_is_store_unavailable(self, http_store, state):
        session = VaultSession(http_store)
        session.authenticate(OWNER)
        await session.unlock(PASSWORD)
        await session.upsert({"title": "kept"})

        state["failing"] = True
        with pytest.raises(StoreUnavailable):
            await session.upsert({"title": "lost"})
        with pytest.raises(StoreUnavailable):
            await session.hydrate()
        assert [r.title for r in session.records] == ["kept"]
