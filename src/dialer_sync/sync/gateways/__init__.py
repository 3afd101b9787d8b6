"""Remote API gateways: GoHighLevel (source CRM) and CallTools (target dialer)."""

from __future__ import annotations

from src.dialer_sync.sync.gateways.crm import CRMGateway
from src.dialer_sync.sync.gateways.dialer import DialerGateway
from src.dialer_sync.sync.gateways.errors import ContactNotFoundError, GatewayError

__all__ = ["CRMGateway", "ContactNotFoundError", "DialerGateway", "GatewayError"]
