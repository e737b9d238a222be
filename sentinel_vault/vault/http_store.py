"""
HTTP Record Store — Envelope persistence over a JSON document API.

Routes (relative to ``base_url``):
    PUT    /records/{id}            body: envelope document,
                                    header ``If-Match: <expected_version>``
    GET    /records?owner={owner}   → list of envelope documents
    DELETE /records/{id}?owner={owner}
    GET    /profiles/{owner}        → profile document, 404 if absent
    PUT    /profiles/{owner}        body: profile document

Status 409 and 412 on ``PUT /records`` mean a version conflict. Any other
non-2xx status raises ``aiohttp.ClientResponseError``, which the engine
reports as ``StoreUnavailable``.
"""
import logging
from urllib.parse import quote
from typing import Any, Optional

import orjson
from aiohttp import ClientSession, ClientTimeout, web

from .exceptions import ConflictError
from .models import EncryptedEnvelope, OwnerProfile
from .store import ProfileStore, RecordStore

logger = logging.getLogger("sentinel.vault")

_JSON_HEADERS = {"Content-Type": "application/json"}

_CONFLICT_STATUSES = (
    web.HTTPConflict.status_code,
    web.HTTPPreconditionFailed.status_code,
)


class HTTPStore(RecordStore, ProfileStore):
    """Record and profile store reached through an aiohttp client session.

    Args:
        base_url: Service root, e.g. ``https://vault.example.com/api``.
        session: Shared client session; one is created (and owned) if omitted.
        timeout: Total timeout per request, in seconds.
        headers: Extra headers sent with every request (e.g. auth tokens
            issued by the identity provider).
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[ClientSession] = None,
        timeout: float = 30.0,
        headers: Optional[dict[str, str]] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = ClientTimeout(total=timeout)
        self._headers = dict(headers or {})

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _client(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(
                timeout=self._timeout, headers=self._headers,
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the client session if this store created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "HTTPStore":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def put(
        self,
        envelope: EncryptedEnvelope,
        expected_version: Optional[int] = None,
    ) -> None:
        headers = dict(_JSON_HEADERS)
        if expected_version is not None:
            headers["If-Match"] = str(expected_version)
        async with self._client().put(
            self._url(f"/records/{quote(envelope.identifier, safe='')}"),
            data=orjson.dumps(envelope.to_document()),
            headers=headers,
            timeout=self._timeout,
        ) as resp:
            if resp.status in _CONFLICT_STATUSES:
                raise ConflictError(
                    f"Envelope {envelope.identifier} changed remotely",
                    identifier=envelope.identifier,
                    expected=expected_version,
                )
            resp.raise_for_status()
        logger.debug(
            "PUT envelope id=%s owner=%s", envelope.identifier, envelope.owner,
        )

    async def get_all(self, owner: str) -> list[dict[str, Any]]:
        """Raw envelope documents; validation happens while hydrating."""
        async with self._client().get(
            self._url("/records"),
            params={"owner": owner},
            timeout=self._timeout,
        ) as resp:
            resp.raise_for_status()
            documents = await resp.json(loads=orjson.loads)
        if not isinstance(documents, list):
            raise TypeError(
                f"Expected a list of envelopes, got {type(documents).__name__}"
            )
        return documents

    async def delete(self, identifier: str, owner: str) -> None:
        async with self._client().delete(
            self._url(f"/records/{quote(identifier, safe='')}"),
            params={"owner": owner},
            timeout=self._timeout,
        ) as resp:
            if resp.status == web.HTTPNotFound.status_code:
                return
            resp.raise_for_status()

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_profile(self, owner: str) -> Optional[OwnerProfile]:
        async with self._client().get(
            self._url(f"/profiles/{quote(owner, safe='')}"),
            timeout=self._timeout,
        ) as resp:
            if resp.status == web.HTTPNotFound.status_code:
                return None
            resp.raise_for_status()
            return OwnerProfile.model_validate(
                await resp.json(loads=orjson.loads)
            )

    async def put_profile(self, profile: OwnerProfile) -> None:
        async with self._client().put(
            self._url(f"/profiles/{quote(profile.owner, safe='')}"),
            data=orjson.dumps(profile.model_dump()),
            headers=_JSON_HEADERS,
            timeout=self._timeout,
        ) as resp:
            resp.raise_for_status()
