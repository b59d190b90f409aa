"""
Unit tests for the Clearinghouse API client.
"""

from unittest.mock import MagicMock

import pytest
import requests

from ch_adapter.clearinghouse.client import (
    ClearinghouseAPIError,
    ClearinghouseClient,
    flatten_params,
    hmac_digest,
    prune_params,
    resource_path,
    singular_resource_name,
    stringify_params,
)
from ch_adapter.clearinghouse.models import RemoteRecord


def make_response(data=None, status_code=200, content=b"{}"):
    """Build a fake requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    response.json.return_value = data
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status_code} Client Error", response=response
        )
    return response


@pytest.fixture
def client():
    client = ClearinghouseClient(
        base_url="https://clearinghouse.test/api/",
        api_key="test_key",
        private_key="test_private_key",
    )
    client._session.request = MagicMock()
    yield client
    client.close()


class TestParameterEncoding:
    """Tests for path and parameter helpers."""

    def test_resource_path(self):
        """Test joining path segments."""
        assert resource_path("/trip_tickets/sync/") == "trip_tickets/sync"
        assert resource_path(["trip_tickets", 12, ["trip_ticket_comments", 3]]) == "trip_tickets/12/trip_ticket_comments/3"
        assert resource_path(["trip_tickets", None]) == "trip_tickets"

    def test_singular_resource_name(self):
        """Test finding the resource type a path addresses."""
        assert singular_resource_name("trip_tickets") == "trip_ticket"
        assert singular_resource_name("trip_tickets/12") == "trip_ticket"
        assert singular_resource_name("trip_tickets/sync") == "trip_ticket"
        assert singular_resource_name("trip_tickets/12/trip_ticket_comments/3") == "trip_ticket_comment"
        assert singular_resource_name("providers/4/service_areas") == "service_area"
        assert singular_resource_name("trip_claims/4/trip_result") == "trip_result"

    def test_flatten_params(self):
        """Test nested parameters become bracketed names."""
        params = {
            "trip_ticket": {
                "customer_first_name": "Ada",
                "customer_address_attributes": {"city": "Portland"},
                "customer_mobility_factors": ["walker", "cane"],
                "customer_seats_required": 1,
                "scheduling_priority": True,
            },
        }

        assert flatten_params(params) == [
            ("trip_ticket[customer_first_name]", "Ada"),
            ("trip_ticket[customer_address_attributes][city]", "Portland"),
            ("trip_ticket[customer_mobility_factors][]", "walker"),
            ("trip_ticket[customer_mobility_factors][]", "cane"),
            ("trip_ticket[customer_seats_required]", "1"),
            ("trip_ticket[scheduling_priority]", "true"),
        ]

    def test_prune_and_stringify(self):
        """Test the parameter forms used for signing."""
        params = prune_params({"a": None, "b": {"c": 1, "d": None}, "e": [False, None]})

        assert params == {"b": {"c": 1}, "e": [False]}
        assert stringify_params(params) == {"b": {"c": "1"}, "e": ["false"]}

    def test_hmac_digest(self):
        """Test the signature is a hex SHA1 HMAC."""
        digest = hmac_digest("secret", "1700000000:1", "2024-01-01T00:00:00+00:00", {"a": "1"})

        assert len(digest) == 40
        assert digest == hmac_digest("secret", "1700000000:1", "2024-01-01T00:00:00+00:00", {"a": "1"})
        assert digest != hmac_digest("secret", "1700000000:2", "2024-01-01T00:00:00+00:00", {"a": "1"})
        assert digest != hmac_digest("other", "1700000000:1", "2024-01-01T00:00:00+00:00", {"a": "1"})


class TestSigning:
    """Tests for authentication parameters."""

    def test_signed_params_verify(self, client):
        """Test that the digest covers the request parameters."""
        signed = client.signed_params({"updated_since": "2024-03-01 08:00:00.000000", "skip": None})
        values = dict(signed)

        assert values["api_key"] == "test_key"
        assert "skip" not in values
        assert values["updated_since"] == "2024-03-01 08:00:00.000000"
        assert values["hmac_digest"] == hmac_digest(
            "test_private_key",
            values["nonce"],
            values["timestamp"],
            {"updated_since": "2024-03-01 08:00:00.000000"},
        )

    def test_nonce_is_unique_per_request(self, client):
        """Test that each request gets a new nonce."""
        first = dict(client.signed_params())["nonce"]
        second = dict(client.signed_params())["nonce"]

        assert first != second
        assert first.endswith(":1")
        assert second.endswith(":2")

    def test_repr_hides_keys(self, client):
        """Test that keys never appear in repr."""
        assert "test_key" not in repr(client)
        assert "test_private_key" not in repr(client)


class TestRequests:
    """Tests for request dispatch and result wrapping."""

    def test_get_sends_query_params(self, client):
        """Test that GET signs and sends query parameters."""
        client._session.request.return_value = make_response([])

        client.get("trip_tickets/sync", {"updated_since": "2024-03-01 08:00:00.000000"})

        kwargs = client._session.request.call_args.kwargs
        assert kwargs["method"] == "GET"
        assert kwargs["url"] == "https://clearinghouse.test/api/v1/trip_tickets/sync"
        assert ("updated_since", "2024-03-01 08:00:00.000000") in kwargs["params"]
        assert "data" not in kwargs

    def test_list_result_is_wrapped(self, client):
        """Test that list items carry their own resource path."""
        client._session.request.return_value = make_response([{"id": 1}, {"id": 2}])

        result = client.get("trip_tickets")

        assert [record.path for record in result] == ["trip_tickets/1", "trip_tickets/2"]
        assert all(isinstance(record, RemoteRecord) for record in result)

    def test_object_result_is_wrapped(self, client):
        """Test that a single object keeps the request path."""
        client._session.request.return_value = make_response({"id": 12, "origin_trip_id": "A-1"})

        result = client.get(["trip_tickets", 12])

        assert result.id == 12
        assert result.path == "trip_tickets/12"
        assert result.get("origin_trip_id") == "A-1"

    def test_nested_fetch_uses_record_path(self, client):
        """Test fetching a sub-resource of a result."""
        client._session.request.return_value = make_response({"id": 12})
        ticket = client.get(["trip_tickets", 12])

        client._session.request.return_value = make_response([{"id": 3, "body": "Hi"}])
        comments = ticket.fetch("trip_ticket_comments")

        assert client._session.request.call_args.kwargs["url"].endswith("/trip_tickets/12/trip_ticket_comments")
        assert comments[0].path == "trip_tickets/12/trip_ticket_comments/3"

    def test_empty_body_returns_none(self, client):
        """Test that an empty response body gives None."""
        client._session.request.return_value = make_response(content=b"")
        assert client.put(["trip_tickets", 1], {"status": "x"}) is None

    def test_post_wraps_body_in_resource_name(self, client):
        """Test that POST sends form data under the singular name."""
        client._session.request.return_value = make_response({"id": 1001})

        result = client.post("trip_tickets", {"origin_trip_id": "P-1", "customer_address_attributes": {"city": "Salem"}})

        kwargs = client._session.request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert ("trip_ticket[origin_trip_id]", "P-1") in kwargs["data"]
        assert ("trip_ticket[customer_address_attributes][city]", "Salem") in kwargs["data"]
        assert result.id == 1001

    def test_put_addresses_member(self, client):
        """Test that PUT targets the member URL."""
        client._session.request.return_value = make_response({"id": 5})

        client.put(["trip_tickets", 5], {"customer_first_name": "Ada"})

        kwargs = client._session.request.call_args.kwargs
        assert kwargs["url"] == "https://clearinghouse.test/api/v1/trip_tickets/5"
        assert ("trip_ticket[customer_first_name]", "Ada") in kwargs["data"]

    def test_only_get_is_retried(self, client):
        """Test the transport retry policy."""
        retries = client._session.get_adapter("https://clearinghouse.test").max_retries

        assert "GET" in retries.allowed_methods
        assert "POST" not in retries.allowed_methods
        assert "PUT" not in retries.allowed_methods


class TestErrors:
    """Tests for API error handling."""

    def test_http_error_carries_status_and_body(self, client):
        """Test that HTTP errors become ClearinghouseAPIError."""
        client._session.request.return_value = make_response({"error": "Validation failed"}, status_code=422)

        with pytest.raises(ClearinghouseAPIError) as excinfo:
            client.post("trip_tickets", {"origin_trip_id": "P-1"})

        assert excinfo.value.status_code == 422
        assert excinfo.value.response == {"error": "Validation failed"}
        assert "Validation failed" in str(excinfo.value)

    def test_http_error_without_json_body(self, client):
        """Test errors whose body is not JSON."""
        response = make_response(status_code=500)
        response.json.side_effect = ValueError("No JSON")
        client._session.request.return_value = response

        with pytest.raises(ClearinghouseAPIError) as excinfo:
            client.get("trip_tickets/sync")

        assert excinfo.value.status_code == 500
        assert excinfo.value.response is None

    def test_connection_error(self, client):
        """Test that transport failures become ClearinghouseAPIError."""
        client._session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(ClearinghouseAPIError) as excinfo:
            client.get("trip_tickets/sync")

        assert excinfo.value.status_code is None

    def test_invalid_json(self, client):
        """Test that an unparseable success body is an API error."""
        response = make_response(content=b"<html>")
        response.json.side_effect = ValueError("Expecting value")
        client._session.request.return_value = response

        with pytest.raises(ClearinghouseAPIError, match="invalid JSON"):
            client.get("trip_tickets/sync")
