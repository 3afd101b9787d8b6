"""Inbound event adaptation: contact-id probing, snapshot parsing, signatures.

GoHighLevel delivers contact events two ways. Signed webhooks carry a
top-level ``type``, a ``timestamp`` in milliseconds and the contact either
nested under ``contact`` or flattened at the top level. Workflow callbacks
carry whatever JSON the operator configured in the automation, so the
contact id has to be probed across several field names.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any

from src.dialer_sync.sync.gateways.crm import contact_from_ghl
from src.dialer_sync.sync.schemas import ContactSnapshot

RELEVANT_EVENT_TYPES = frozenset({"ContactCreate", "ContactUpdate", "ContactTagUpdate"})

# Probed in order; dotted paths descend into nested objects
SOURCE_ID_ALIASES = ("contact_id", "contactId", "id", "contact.id", "contact.contact_id")


class WebhookVerificationError(Exception):
    """The event failed the signature or freshness check."""


def _lookup(payload: dict[str, Any], path: str) -> Any:
    value: Any = payload
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def extract_source_id(payload: dict[str, Any]) -> str | None:
    """Return the CRM contact id from an event body, or None."""
    for alias in SOURCE_ID_ALIASES:
        value = _lookup(payload, alias)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def parse_snapshot(payload: dict[str, Any], source_id: str) -> ContactSnapshot | None:
    """Build an inline snapshot from an event body.

    Returns None when the body carries no tags: without tags the contact
    cannot be classified and has to be fetched from the CRM anyway.
    """
    nested = payload.get("contact")
    data = nested if isinstance(nested, dict) and nested else payload
    snapshot = contact_from_ghl(data, contact_id=source_id)
    if not snapshot.has_tags and data is not payload:
        # Some senders put the tags beside a nested contact
        top = contact_from_ghl(payload, contact_id=source_id)
        if top.has_tags:
            snapshot.tags = top.tags
    return snapshot if snapshot.has_tags else None


class WebhookVerifier:
    """HMAC-SHA256 signature and timestamp checks for signed webhooks.

    Args:
        secret: Shared webhook secret.
        max_age_seconds: Oldest acceptable event age.
    """

    def __init__(self, secret: str, max_age_seconds: int = 300) -> None:
        self._secret = secret.encode()
        self._max_age_ms = max_age_seconds * 1000

    def sign(self, raw_body: bytes) -> str:
        """Hex HMAC-SHA256 digest of a raw body."""
        return hmac.new(self._secret, raw_body, hashlib.sha256).hexdigest()

    def verify_signature(self, raw_body: bytes, signature: str | None) -> None:
        """Raise WebhookVerificationError unless ``signature`` matches the body."""
        if not signature:
            raise WebhookVerificationError("Missing webhook signature")
        provided = signature.strip()
        if provided.lower().startswith("sha256="):
            provided = provided[7:]
        if not hmac.compare_digest(self.sign(raw_body), provided.lower()):
            raise WebhookVerificationError("Invalid webhook signature")

    def verify_timestamp(self, timestamp_ms: Any, now_ms: int | None = None) -> None:
        """Raise WebhookVerificationError for future or stale events.

        A missing timestamp is accepted; the signature still covers the body.
        """
        if timestamp_ms is None:
            return
        try:
            ts = int(timestamp_ms)
        except (TypeError, ValueError) as exc:
            raise WebhookVerificationError("Invalid webhook timestamp") from exc

        now = now_ms if now_ms is not None else int(time.time() * 1000)
        age = now - ts
        if age < 0:
            raise WebhookVerificationError("Webhook timestamp is in the future")
        if age > self._max_age_ms:
            raise WebhookVerificationError("Webhook timestamp too old")
