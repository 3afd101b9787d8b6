"""Async gateway for the GoHighLevel REST API (source CRM).

Only the two capabilities the sync needs: fetch a contact by id and page
through contacts (optionally filtered by tag). Reads are retried with
tenacity on transport errors (3 attempts, exponential backoff 1-10s).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.dialer_sync.sync.gateways.errors import ContactNotFoundError, GatewayError
from src.dialer_sync.sync.schemas import ContactSnapshot

logger = structlog.get_logger(__name__)

_read_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)


def _first(data: dict[str, Any], *keys: str) -> str | None:
    """Return the first non-empty scalar among ``keys``, as a string.

    Workflow bodies are user-defined, so numbers (a phone typed as 5551234567)
    are accepted and nested objects are skipped.
    """
    for key in keys:
        value = data.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def parse_tags(raw: Any) -> list[str] | None:
    """Accept tags as a list or a comma-separated string; None when absent."""
    if raw is None:
        return None
    if isinstance(raw, str):
        return [t.strip() for t in raw.split(",") if t.strip()]
    if isinstance(raw, (list, tuple)):
        return [str(t).strip() for t in raw if str(t).strip()]
    return None


def contact_from_ghl(data: dict[str, Any], contact_id: str | None = None) -> ContactSnapshot:
    """Build a ContactSnapshot from a GoHighLevel contact dict.

    Handles both the REST shape (camelCase) and the snake_case fields that
    operators put in workflow bodies. A full ``name`` is split into first
    and last name when explicit names are missing.
    """
    first_name = _first(data, "firstName", "first_name")
    last_name = _first(data, "lastName", "last_name")
    full_name = _first(data, "name", "full_name", "contactName")
    if full_name and not first_name and not last_name:
        first_name, _, last_name = str(full_name).strip().partition(" ")
        last_name = last_name.strip() or None

    return ContactSnapshot(
        id=str(contact_id or _first(data, "id", "contact_id", "contactId") or ""),
        first_name=first_name,
        last_name=last_name,
        email=_first(data, "email"),
        phone=_first(data, "phone", "phone_number", "phoneNumber"),
        tags=parse_tags(data.get("tags")),
    )


class CRMGateway:
    """Async client for GoHighLevel contacts.

    Args:
        api_key: GoHighLevel API key (Bearer token).
        base_url: REST base URL.
    """

    TIMEOUT_READ = 10.0
    SERVICE = "gohighlevel"

    def __init__(self, api_key: str, base_url: str = "https://rest.gohighlevel.com/v1") -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(headers=self._headers, timeout=self.TIMEOUT_READ)

    @_read_retry
    async def _get(self, path: str, params: list[tuple[str, Any]] | None = None) -> httpx.Response:
        async with self._client() as client:
            return await client.request("GET", f"{self._base_url}{path}", params=params)

    async def get_contact(self, contact_id: str) -> ContactSnapshot:
        """Fetch a contact by id.

        Raises:
            ContactNotFoundError: The CRM answered 404.
            GatewayError: Any other non-2xx status.
        """
        response = await self._get(f"/contacts/{contact_id}")
        if response.status_code == 404:
            raise ContactNotFoundError(self.SERVICE, 404, response.text)
        if response.is_error:
            raise GatewayError(self.SERVICE, response.status_code, response.text)

        data = response.json()
        contact = data.get("contact", data) if isinstance(data, dict) else {}
        snapshot = contact_from_ghl(contact, contact_id=contact_id)
        if snapshot.tags is None:
            snapshot.tags = []
        return snapshot

    async def list_contacts(
        self,
        tags: list[str] | None = None,
        limit: int = 100,
        skip: int = 0,
    ) -> list[ContactSnapshot]:
        """Fetch one page of contacts."""
        params: list[tuple[str, Any]] = [("limit", limit)]
        if skip:
            params.append(("skip", skip))
        for tag in tags or []:
            params.append(("tags", tag))

        response = await self._get("/contacts/", params=params)
        if response.is_error:
            raise GatewayError(self.SERVICE, response.status_code, response.text)

        contacts = response.json().get("contacts") or []
        page = []
        for raw in contacts:
            snapshot = contact_from_ghl(raw)
            if snapshot.tags is None:
                snapshot.tags = []
            page.append(snapshot)
        return page

    async def iter_contacts(
        self,
        tags: list[str] | None = None,
        page_size: int = 100,
    ) -> AsyncIterator[ContactSnapshot]:
        """Yield every contact, page by page, stopping on a short page."""
        skip = 0
        while True:
            page = await self.list_contacts(tags=tags, limit=page_size, skip=skip)
            for contact in page:
                yield contact
            logger.debug("crm.page_fetched", skip=skip, count=len(page))
            if len(page) < page_size:
                return
            skip += page_size
