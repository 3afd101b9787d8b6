"""Tests for the GoHighLevel and CallTools HTTP gateways.

httpx.AsyncClient.request is patched, so no network traffic happens; the
assertions look at the method, URL and payload each gateway sends.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.dialer_sync.sync.gateways.crm import CRMGateway, contact_from_ghl, parse_tags
from src.dialer_sync.sync.gateways.dialer import DialerGateway
from src.dialer_sync.sync.gateways.errors import ContactNotFoundError, GatewayError
from src.dialer_sync.sync.schemas import ContactSnapshot


def _response(status: int, json=None, method: str = "GET") -> httpx.Response:
    return httpx.Response(
        status,
        json=json,
        request=httpx.Request(method, "https://test.com"),
    )


@pytest.fixture
def crm_gateway() -> CRMGateway:
    return CRMGateway(api_key="ghl-key", base_url="https://ghl.test/v1/")


@pytest.fixture
def dialer_gateway() -> DialerGateway:
    return DialerGateway(api_key="ct-key", base_url="https://ct.test/api")


# ── CRM Gateway ─────────────────────────────────────────────────────────────


class TestCRMGateway:
    def test_bearer_auth(self, crm_gateway):
        assert crm_gateway._headers["Authorization"] == "Bearer ghl-key"

    async def test_get_contact_parses_nested_contact(self, crm_gateway):
        mock_response = _response(
            200,
            json={
                "contact": {
                    "id": "c1",
                    "firstName": "Ann",
                    "lastName": "Lee",
                    "email": "ann@example.com",
                    "phone": "+15551234567",
                    "tags": ["cold lead"],
                }
            },
        )

        with patch(
            "httpx.AsyncClient.request", new_callable=AsyncMock, return_value=mock_response
        ) as mock_request:
            contact = await crm_gateway.get_contact("c1")

        assert mock_request.call_args.args[:2] == ("GET", "https://ghl.test/v1/contacts/c1")
        assert contact == ContactSnapshot(
            id="c1",
            first_name="Ann",
            last_name="Lee",
            email="ann@example.com",
            phone="+15551234567",
            tags=["cold lead"],
        )

    async def test_get_contact_without_tags_has_empty_list(self, crm_gateway):
        mock_response = _response(200, json={"contact": {"id": "c1"}})
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock, return_value=mock_response):
            contact = await crm_gateway.get_contact("c1")
        assert contact.tags == []

    async def test_get_contact_404_raises_not_found(self, crm_gateway):
        mock_response = _response(404, json={"msg": "Contact not found"})
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock, return_value=mock_response):
            with pytest.raises(ContactNotFoundError) as exc_info:
                await crm_gateway.get_contact("missing")
        assert exc_info.value.status_code == 404

    async def test_get_contact_server_error(self, crm_gateway):
        mock_response = _response(500, json={"msg": "boom"})
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock, return_value=mock_response):
            with pytest.raises(GatewayError, match="gohighlevel API error: 500"):
                await crm_gateway.get_contact("c1")

    async def test_transport_error_is_retried(self, crm_gateway):
        ok = _response(200, json={"contact": {"id": "c1", "tags": []}})
        with patch(
            "httpx.AsyncClient.request",
            new_callable=AsyncMock,
            side_effect=[httpx.ConnectError("refused"), ok],
        ) as mock_request:
            contact = await crm_gateway.get_contact("c1")
        assert contact.id == "c1"
        assert mock_request.await_count == 2

    async def test_list_contacts_sends_tag_filter_and_skip(self, crm_gateway):
        mock_response = _response(
            200, json={"contacts": [{"id": "a", "tags": "cold lead, prospect"}]}
        )
        with patch(
            "httpx.AsyncClient.request", new_callable=AsyncMock, return_value=mock_response
        ) as mock_request:
            page = await crm_gateway.list_contacts(tags=["cold lead"], limit=50, skip=100)

        params = mock_request.call_args.kwargs["params"]
        assert ("limit", 50) in params
        assert ("skip", 100) in params
        assert ("tags", "cold lead") in params
        assert page[0].tags == ["cold lead", "prospect"]

    async def test_iter_contacts_stops_on_short_page(self, crm_gateway):
        full = _response(200, json={"contacts": [{"id": "a"}, {"id": "b"}]})
        short = _response(200, json={"contacts": [{"id": "c"}]})
        with patch(
            "httpx.AsyncClient.request", new_callable=AsyncMock, side_effect=[full, short]
        ) as mock_request:
            ids = [c.id async for c in crm_gateway.iter_contacts(page_size=2)]

        assert ids == ["a", "b", "c"]
        assert mock_request.await_count == 2


class TestContactParsing:
    def test_full_name_is_split(self):
        contact = contact_from_ghl({"id": "c1", "name": "Ann Marie Lee"})
        assert contact.first_name == "Ann"
        assert contact.last_name == "Marie Lee"

    def test_snake_case_fields(self):
        contact = contact_from_ghl(
            {"contact_id": "c2", "first_name": "Bo", "phone_number": "555-123-4567"}
        )
        assert contact.id == "c2"
        assert contact.first_name == "Bo"
        assert contact.phone == "555-123-4567"
        assert contact.tags is None

    def test_parse_tags(self):
        assert parse_tags("a, b,,c ") == ["a", "b", "c"]
        assert parse_tags(["x", " "]) == ["x"]
        assert parse_tags(None) is None


# ── Dialer Gateway ──────────────────────────────────────────────────────────


class TestDialerGateway:
    def test_token_auth(self, dialer_gateway):
        assert dialer_gateway._headers["Authorization"] == "Token ct-key"

    async def test_create_contact_payload(self, dialer_gateway):
        contact = ContactSnapshot(id="c1", first_name="Ann", phone="(555) 123-4567", tags=[])
        mock_response = _response(201, json={"id": 42, "first_name": "Ann"}, method="POST")

        with patch(
            "httpx.AsyncClient.request", new_callable=AsyncMock, return_value=mock_response
        ) as mock_request:
            created = await dialer_gateway.create_contact(contact)

        assert created.id == "42"
        method, url = mock_request.call_args.args
        assert (method, url) == ("POST", "https://ct.test/api/contacts/")
        assert mock_request.call_args.kwargs["json"] == {
            "first_name": "Ann",
            "last_name": "",
            "phone_number": "+15551234567",
            "email": "",
            "external_id": "c1",
        }

    async def test_update_contact_error_raises(self, dialer_gateway):
        contact = ContactSnapshot(id="c1", phone="5551234567", tags=[])
        mock_response = _response(400, json={"phone_number": ["invalid"]}, method="PUT")
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock, return_value=mock_response):
            with pytest.raises(GatewayError) as exc_info:
                await dialer_gateway.update_contact("42", contact)
        assert exc_info.value.status_code == 400
        assert exc_info.value.service == "calltools"

    async def test_find_contact_by_phone_compares_digits(self, dialer_gateway):
        mock_response = _response(
            200,
            json={
                "results": [
                    {"id": 1, "phone_number": "+1 555 123 4568"},
                    {"id": 2, "phone_number": "(555) 123-4567"},
                ]
            },
        )
        with patch(
            "httpx.AsyncClient.request", new_callable=AsyncMock, return_value=mock_response
        ) as mock_request:
            found = await dialer_gateway.find_contact_by_phone("555.123.4567")

        assert found is not None and found.id == "2"
        assert mock_request.call_args.kwargs["params"] == {"phone_number": "+15551234567"}

    async def test_find_contact_by_phone_no_match(self, dialer_gateway):
        mock_response = _response(200, json=[])
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock, return_value=mock_response):
            assert await dialer_gateway.find_contact_by_phone("5551234567") is None

    async def test_find_contact_by_phone_skips_request_for_bad_number(self, dialer_gateway):
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock) as mock_request:
            assert await dialer_gateway.find_contact_by_phone("123") is None
        mock_request.assert_not_awaited()

    async def test_add_to_bucket_tolerates_existing_member(self, dialer_gateway):
        mock_response = _response(409, json={"detail": "already in bucket"}, method="POST")
        with patch(
            "httpx.AsyncClient.request", new_callable=AsyncMock, return_value=mock_response
        ) as mock_request:
            await dialer_gateway.add_to_bucket("b1", "42")

        assert mock_request.call_args.args[1] == "https://ct.test/api/buckets/b1/contacts/"
        assert mock_request.call_args.kwargs["json"] == {"contacts": ["42"]}

    async def test_remove_from_bucket_tolerates_missing_member(self, dialer_gateway):
        mock_response = _response(404, method="DELETE")
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock, return_value=mock_response):
            await dialer_gateway.remove_from_bucket("b1", "42")

    async def test_remove_tag_server_error_raises(self, dialer_gateway):
        mock_response = _response(502, method="DELETE")
        with patch("httpx.AsyncClient.request", new_callable=AsyncMock, return_value=mock_response):
            with pytest.raises(GatewayError):
                await dialer_gateway.remove_tag("t1", "42")

    async def test_find_or_create_tag_creates_once_and_caches(self, dialer_gateway):
        lookup = _response(200, json={"results": [{"id": 5, "name": "cold leads"}]})
        created = _response(201, json={"id": 9, "name": "cold lead"}, method="POST")

        with patch(
            "httpx.AsyncClient.request", new_callable=AsyncMock, side_effect=[lookup, created]
        ) as mock_request:
            first = await dialer_gateway.find_or_create_tag("Cold Lead")
            second = await dialer_gateway.find_or_create_tag("cold lead")

        assert first == second == "9"
        assert [c.args[0] for c in mock_request.call_args_list] == ["GET", "POST"]

    async def test_find_or_create_bucket_reuses_existing(self, dialer_gateway):
        listing = _response(200, json=[{"id": 3, "name": "Cold Leads"}, {"id": 4, "name": "Other"}])
        with patch(
            "httpx.AsyncClient.request", new_callable=AsyncMock, return_value=listing
        ) as mock_request:
            assert await dialer_gateway.find_or_create_bucket("cold leads") == "3"
            assert await dialer_gateway.find_or_create_bucket("Cold Leads") == "3"
        assert mock_request.await_count == 1

    async def test_find_or_create_bucket_creates_missing(self, dialer_gateway):
        listing = _response(200, json={"results": []})
        created = _response(201, json={"id": 11, "name": "Active Clients"}, method="POST")
        with patch(
            "httpx.AsyncClient.request", new_callable=AsyncMock, side_effect=[listing, created]
        ) as mock_request:
            bucket_id = await dialer_gateway.find_or_create_bucket("Active Clients")

        assert bucket_id == "11"
        assert mock_request.call_args.kwargs["json"] == {"name": "Active Clients"}


class TestLooseContactParsing:
    def test_numeric_values_become_strings(self):
        contact = contact_from_ghl(
            {"contact_id": "c9", "phone": 5551234567, "first_name": 42, "tags": ["cold lead"]}
        )
        assert contact.phone == "5551234567"
        assert contact.first_name == "42"

    def test_nested_objects_are_skipped(self):
        contact = contact_from_ghl(
            {"id": "c1", "phone": {"number": "555"}, "phone_number": "5551234567"}
        )
        assert contact.phone == "5551234567"
