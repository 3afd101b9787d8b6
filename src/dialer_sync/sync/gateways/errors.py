"""Errors raised by the remote CRM and dialer gateways."""

from __future__ import annotations

import httpx


class GatewayError(Exception):
    """A remote API answered with a non-2xx status.

    Attributes:
        service: "gohighlevel" or "calltools".
        status_code: HTTP status returned by the remote API.
        body: Response body text (truncated).
    """

    def __init__(self, service: str, status_code: int, body: str = "") -> None:
        self.service = service
        self.status_code = status_code
        self.body = body[:500]
        super().__init__(f"{service} API error: {status_code} - {self.body}")


class ContactNotFoundError(GatewayError):
    """The CRM has no contact with the requested id."""


# Everything a gateway call may raise on the mandatory path
UPSTREAM_ERRORS: tuple[type[Exception], ...] = (GatewayError, httpx.HTTPError)
