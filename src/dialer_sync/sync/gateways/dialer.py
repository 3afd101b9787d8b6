"""Async gateway for the CallTools REST API (target dialer).

Buckets and tags are both modelled by the dialer as named collections of
contact ids: a contact is added to or removed from a collection by id. Tags
have no "attach by name" endpoint, so a tag name is first resolved to an id
(looked up, created when missing) and the id is cached for the lifetime of
the gateway. Buckets can be configured by id or resolved by name the same
way. Resolution is serialized per kind, so concurrent reconciliations in
one bulk chunk never create the same tag or bucket twice.

Reads (GET) are retried on transport errors with tenacity; writes are sent
once and any failure is surfaced to the caller.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.dialer_sync.sync.gateways.errors import GatewayError
from src.dialer_sync.sync.phone import normalize_phone, same_phone
from src.dialer_sync.sync.schemas import ContactSnapshot, DialerContact

logger = structlog.get_logger(__name__)

_read_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)


def _results(data: Any) -> list[dict[str, Any]]:
    """Unwrap a list endpoint response (bare list or paginated envelope)."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("results", "contacts", "buckets", "tags", "data"):
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []


def _text(value: Any) -> str | None:
    return None if value is None else str(value)


def _to_contact(data: dict[str, Any]) -> DialerContact:
    return DialerContact(
        id=str(data["id"]),
        first_name=_text(data.get("first_name")),
        last_name=_text(data.get("last_name")),
        phone_number=_text(data.get("phone_number")),
        email=_text(data.get("email")),
    )


class DialerGateway:
    """Async client for CallTools contacts, buckets and tags.

    Args:
        api_key: CallTools API token.
        base_url: REST base URL.
        default_country_code: Country code for phone normalization.
    """

    TIMEOUT_MUTATE = 30.0
    TIMEOUT_READ = 10.0
    SERVICE = "calltools"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://app.calltools.com/api",
        default_country_code: str = "1",
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._country_code = default_country_code
        self._headers = {
            "Authorization": f"Token {api_key}",
            "Content-Type": "application/json",
        }
        self._tag_ids: dict[str, str] = {}
        self._bucket_ids: dict[str, str] = {}
        # Guards resolve-or-create, one lock per kind
        self._tag_lock = asyncio.Lock()
        self._bucket_lock = asyncio.Lock()

    def _client(self, timeout: float) -> httpx.AsyncClient:
        """Create a new httpx client with specified timeout."""
        return httpx.AsyncClient(headers=self._headers, timeout=timeout)

    async def _send(
        self,
        method: str,
        path: str,
        *,
        ok_statuses: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> Any:
        """Send one request; non-2xx (outside ``ok_statuses``) raises GatewayError."""
        timeout = self.TIMEOUT_READ if method == "GET" else self.TIMEOUT_MUTATE
        async with self._client(timeout) as client:
            response = await client.request(method, f"{self._base_url}{path}", **kwargs)

        if response.status_code in ok_statuses:
            return None
        if response.is_error:
            raise GatewayError(self.SERVICE, response.status_code, response.text)
        if not response.content:
            return None
        return response.json()

    @_read_retry
    async def _get(self, path: str, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self._send("GET", path, params=params, **kwargs)

    # ── Contacts ────────────────────────────────────────────────────────────

    def _contact_payload(self, contact: ContactSnapshot) -> dict[str, Any]:
        return {
            "first_name": contact.first_name or "Unknown",
            "last_name": contact.last_name or "",
            "phone_number": normalize_phone(contact.phone, self._country_code) or contact.phone,
            "email": contact.email or "",
            "external_id": contact.id,
        }

    async def create_contact(self, contact: ContactSnapshot) -> DialerContact:
        """Create a dialer contact from a CRM snapshot."""
        data = await self._send("POST", "/contacts/", json=self._contact_payload(contact))
        created = _to_contact(data)
        logger.info("dialer.contact_created", contact_id=created.id, source_id=contact.id)
        return created

    async def update_contact(self, contact_id: str, contact: ContactSnapshot) -> DialerContact:
        """Overwrite a dialer contact's fields from a CRM snapshot."""
        data = await self._send(
            "PUT", f"/contacts/{contact_id}/", json=self._contact_payload(contact)
        )
        logger.info("dialer.contact_updated", contact_id=contact_id, source_id=contact.id)
        if isinstance(data, dict) and "id" in data:
            return _to_contact(data)
        return DialerContact(id=contact_id)

    async def find_contact_by_phone(self, phone: str | None) -> DialerContact | None:
        """Find a dialer contact by normalized phone number.

        The search result is re-checked digit by digit: only a contact whose
        stored number normalizes to the same E.164 value is returned.
        """
        normalized = normalize_phone(phone, self._country_code)
        if normalized is None:
            return None

        data = await self._get("/contacts/", params={"phone_number": normalized}, ok_statuses=(404,))
        for raw in _results(data):
            if same_phone(_text(raw.get("phone_number")), normalized, self._country_code):
                return _to_contact(raw)
        return None

    # ── Buckets ─────────────────────────────────────────────────────────────

    async def list_buckets(self) -> list[dict[str, Any]]:
        """Return all buckets as dicts with at least ``id`` and ``name``."""
        return _results(await self._get("/buckets/"))

    async def create_bucket(self, name: str) -> str:
        """Create a bucket, return its id."""
        data = await self._send("POST", "/buckets/", json={"name": name})
        bucket_id = str(data["id"])
        logger.info("dialer.bucket_created", bucket_id=bucket_id, name=name)
        return bucket_id

    async def find_or_create_bucket(self, name: str) -> str:
        """Resolve a bucket name to its id, creating the bucket if needed."""
        key = name.strip().lower()
        if key in self._bucket_ids:
            return self._bucket_ids[key]

        async with self._bucket_lock:
            if key in self._bucket_ids:
                return self._bucket_ids[key]

            for bucket in await self.list_buckets():
                if str(bucket.get("name", "")).strip().lower() == key:
                    self._bucket_ids[key] = str(bucket["id"])
                    return self._bucket_ids[key]

            self._bucket_ids[key] = await self.create_bucket(name)
            return self._bucket_ids[key]

    async def add_to_bucket(self, bucket_id: str, contact_id: str) -> None:
        """Add a contact to a bucket. Already-a-member (409) counts as success."""
        await self._send(
            "POST",
            f"/buckets/{bucket_id}/contacts/",
            json={"contacts": [contact_id]},
            ok_statuses=(409,),
        )
        logger.info("dialer.bucket_member_added", bucket_id=bucket_id, contact_id=contact_id)

    async def remove_from_bucket(self, bucket_id: str, contact_id: str) -> None:
        """Remove a contact from a bucket. Not-a-member (404) counts as success."""
        await self._send(
            "DELETE",
            f"/buckets/{bucket_id}/contacts/{contact_id}/",
            ok_statuses=(404,),
        )
        logger.info("dialer.bucket_member_removed", bucket_id=bucket_id, contact_id=contact_id)

    # ── Tags ────────────────────────────────────────────────────────────────

    async def find_tag(self, name: str) -> str | None:
        """Look a tag up by exact (case-insensitive) name, return its id."""
        key = name.strip().lower()
        if key in self._tag_ids:
            return self._tag_ids[key]

        data = await self._get("/tags/", params={"name": name})
        for tag in _results(data):
            if str(tag.get("name", "")).strip().lower() == key:
                self._tag_ids[key] = str(tag["id"])
                return self._tag_ids[key]
        return None

    async def create_tag(self, name: str) -> str:
        """Create a tag, return its id."""
        data = await self._send("POST", "/tags/", json={"name": name})
        tag_id = str(data["id"])
        self._tag_ids[name.strip().lower()] = tag_id
        logger.info("dialer.tag_created", tag_id=tag_id, name=name)
        return tag_id

    async def find_or_create_tag(self, name: str) -> str:
        """Resolve a tag name to its id, creating the tag if needed."""
        tag_id = self._tag_ids.get(name.strip().lower())
        if tag_id is not None:
            return tag_id

        async with self._tag_lock:
            tag_id = await self.find_tag(name)
            if tag_id is None:
                tag_id = await self.create_tag(name)
            return tag_id

    async def add_tag(self, tag_id: str, contact_id: str) -> None:
        """Attach a tag to a contact. Already attached (409) counts as success."""
        await self._send(
            "POST",
            f"/tags/{tag_id}/contacts/",
            json={"contacts": [contact_id]},
            ok_statuses=(409,),
        )
        logger.info("dialer.tag_added", tag_id=tag_id, contact_id=contact_id)

    async def remove_tag(self, tag_id: str, contact_id: str) -> None:
        """Detach a tag from a contact. Not attached (404) counts as success."""
        await self._send(
            "DELETE",
            f"/tags/{tag_id}/contacts/{contact_id}/",
            ok_statuses=(404,),
        )
        logger.info("dialer.tag_removed", tag_id=tag_id, contact_id=contact_id)
