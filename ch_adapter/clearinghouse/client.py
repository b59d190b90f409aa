"""
Clearinghouse API client.

Handles request signing, parameter encoding and error handling for the
Clearinghouse REST API. API keys are passed via configuration and never logged.
"""

import hashlib
import hmac
import json
import logging
import re
import time
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional, Sequence, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .models import RemoteRecord

logger = logging.getLogger(__name__)

ResourcePath = Union[str, Sequence[Any]]

_RESOURCE_NAME = re.compile(r"/?([A-Za-z_-]+)(/[A-Za-z_-]+)?[^A-Za-z_-]*$")


class ClearinghouseAPIError(Exception):
    """Raised when a Clearinghouse API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[Any] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


def resource_path(path: ResourcePath) -> str:
    """
    Normalize a resource path.

    Accepts "trip_tickets/1/trip_ticket_comments" or segment sequences
    such as ["trip_tickets", 1, ["trip_ticket_comments", 2]].
    """
    if isinstance(path, str):
        return path.strip("/")
    segments = []
    for segment in path:
        if segment is None:
            continue
        if isinstance(segment, (list, tuple)):
            segments.append(resource_path(segment))
        else:
            segments.append(str(segment).strip("/"))
    return "/".join(segment for segment in segments if segment)


def singular_resource_name(path: str) -> Optional[str]:
    """
    Name of the resource type a path addresses.

    "trip_tickets/1/trip_ticket_comments/2" gives "trip_ticket_comment". A
    trailing alphabetic segment after a collection is taken to be a custom
    action: "trip_tickets/sync" gives "trip_ticket".
    """
    match = _RESOURCE_NAME.search(path)
    if not match:
        return None
    name = match.group(1)
    if name.endswith("ies"):
        return name[:-3] + "y"
    if name.endswith("s") and not name.endswith("ss"):
        return name[:-1]
    return name


def prune_params(value: Any) -> Any:
    """Drop None values from nested parameters; they cannot be form encoded."""
    if isinstance(value, Mapping):
        return {str(key): prune_params(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple)):
        return [prune_params(item) for item in value if item is not None]
    return value


def stringify_params(value: Any) -> Any:
    """Turn every scalar into the string the API will receive."""
    if isinstance(value, Mapping):
        return {str(key): stringify_params(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [stringify_params(item) for item in value]
    return _scalar_text(value)


def flatten_params(value: Any, key: Optional[str] = None, out: Optional[list] = None) -> list[tuple[str, str]]:
    """
    Flatten nested parameters to form/query pairs.

    {"trip_ticket": {"customer_address_attributes": {"city": "Portland"}}}
    becomes [("trip_ticket[customer_address_attributes][city]", "Portland")];
    list items repeat the key with a "[]" suffix.
    """
    if out is None:
        out = []
    if isinstance(value, Mapping):
        for child_key, child in value.items():
            flatten_params(child, f"{key}[{child_key}]" if key else str(child_key), out)
    elif isinstance(value, (list, tuple)):
        for child in value:
            flatten_params(child, f"{key}[]", out)
    elif value is not None:
        out.append((key, _scalar_text(value)))
    return out


def _scalar_text(value: Any) -> str:
    if value is None:
        return ""
    if value is True:
        return "true"
    if value is False:
        return "false"
    return str(value)


def hmac_digest(private_key: str, nonce: str, timestamp: str, params: Any) -> str:
    """
    Request signature.

    Hex HMAC-SHA1, keyed with the private key, over
    "<nonce>:<timestamp>:<compact JSON of the stringified params>".
    """
    payload = ":".join([nonce, timestamp, json.dumps(params, separators=(",", ":"))])
    return hmac.new(private_key.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).hexdigest()


class ClearinghouseClient:
    """
    Client for the Clearinghouse API.

    Handles:
    - HMAC request signing with a per-client nonce sequence
    - Nested parameter encoding (a[b], a[])
    - Retry logic for transient GET failures
    - Wrapping results as RemoteRecord objects

    Usage:
        client = ClearinghouseClient(
            base_url="https://clearinghouse.example.org/api",
            api_key="...",
            private_key="...",
        )

        for record in client.get("trip_tickets/sync", {"updated_since": None}):
            print(record.id)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        private_key: str,
        api_version: str = "v1",
        timeout: float = 30.0,
        max_retries: int = 3,
    ):
        """
        Initialize Clearinghouse client.

        Args:
            base_url: API base URL (e.g., https://clearinghouse.example.org/api)
            api_key: Provider API key (never logged)
            private_key: Provider private key used for signing (never logged)
            api_version: API version path segment
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient GET failures
        """
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self._api_key = api_key
        self._private_key = private_key
        self.timeout = timeout
        self._nonce_sequence = 0

        self._session = requests.Session()

        # POST/PUT are never retried by transport; a retry could create duplicates
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

        self._session.headers.update({"Accept": "application/json"})

        logger.info(f"Clearinghouse client initialized for {self.base_url}")

    def __repr__(self) -> str:
        """Never expose keys in repr."""
        return f"ClearinghouseClient(base_url='{self.base_url}', api_version='{self.api_version}')"

    # ============================================================
    # REST-style requests
    # ============================================================

    def get(self, path: ResourcePath, query: Optional[dict] = None):
        """
        GET a resource.

        Args:
            path: Resource path, e.g. "trip_tickets/sync" or ["trip_tickets", 12]
            query: Query parameters

        Returns:
            RemoteRecord, list of RemoteRecord, or None for an empty body

        Raises:
            ClearinghouseAPIError: If the request fails
        """
        return self._request("GET", path, query)

    def post(self, path: ResourcePath, body: Mapping):
        """
        POST a new resource; the body is sent under the singular resource name.

        Raises:
            ClearinghouseAPIError: If the request fails
        """
        return self._request("POST", path, body)

    def put(self, path: ResourcePath, body: Mapping):
        """
        PUT changes to a resource; the body is sent under the singular resource name.

        Raises:
            ClearinghouseAPIError: If the request fails
        """
        return self._request("PUT", path, body)

    # ============================================================
    # Internals
    # ============================================================

    def _next_nonce(self) -> str:
        self._nonce_sequence += 1
        return f"{int(time.time())}:{self._nonce_sequence}"

    def signed_params(self, params: Optional[Mapping] = None) -> list[tuple[str, str]]:
        """
        Authentication parameters followed by the flattened request parameters.

        Args:
            params: Request parameters (nested)

        Returns:
            List of (name, value) pairs ready for a query string or form body
        """
        params = prune_params(params or {})
        nonce = self._next_nonce()
        timestamp = datetime.now().astimezone().isoformat(timespec="seconds")

        signed = [
            ("api_key", self._api_key),
            ("nonce", nonce),
            ("timestamp", timestamp),
            ("hmac_digest", hmac_digest(self._private_key, nonce, timestamp, stringify_params(params))),
        ]
        signed.extend(flatten_params(params))
        return signed

    def _request(self, method: str, path: ResourcePath, params: Optional[Mapping] = None):
        """
        Make a signed request to the Clearinghouse API.

        Args:
            method: HTTP method (GET, POST, PUT)
            path: Resource path
            params: Query parameters (GET) or resource attributes (POST/PUT)

        Returns:
            Wrapped result

        Raises:
            ClearinghouseAPIError: If request fails
        """
        resource = resource_path(path)
        url = f"{self.base_url}/{self.api_version}/{resource}"

        if method == "GET":
            request_args = {"params": self.signed_params(params)}
        else:
            resource_name = singular_resource_name(resource) or resource
            request_args = {"data": self.signed_params({resource_name: params or {}})}

        logger.debug(f"{method} {url}")

        try:
            response = self._session.request(
                method=method,
                url=url,
                timeout=self.timeout,
                **request_args,
            )
            response.raise_for_status()

            if not response.content:
                return None
            data = response.json()

        except requests.exceptions.HTTPError as e:
            error_msg = f"Clearinghouse API error on {method} {resource}: {e}"
            error_body = None
            try:
                error_body = e.response.json()
                if isinstance(error_body, Mapping) and "error" in error_body:
                    error_msg = f"Clearinghouse API error on {method} {resource}: {error_body['error']}"
            except (ValueError, AttributeError):
                pass

            logger.error(error_msg)
            raise ClearinghouseAPIError(
                error_msg,
                status_code=e.response.status_code if e.response is not None else None,
                response=error_body,
            ) from e

        except requests.exceptions.RequestException as e:
            error_msg = f"Clearinghouse request failed on {method} {resource}: {e}"
            logger.error(error_msg)
            raise ClearinghouseAPIError(error_msg) from e

        except ValueError as e:
            error_msg = f"Clearinghouse returned invalid JSON on {method} {resource}: {e}"
            logger.error(error_msg)
            raise ClearinghouseAPIError(error_msg, status_code=response.status_code) from e

        return self._wrap_result(resource, data)

    def _wrap_result(self, resource: str, data: Any):
        if isinstance(data, list):
            return [
                RemoteRecord.from_api_response(
                    item,
                    path=f"{resource}/{item['id']}" if isinstance(item, Mapping) and item.get("id") is not None else resource,
                    client=self,
                )
                for item in data
            ]
        if isinstance(data, Mapping):
            return RemoteRecord.from_api_response(data, path=resource, client=self)
        return data

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()
        logger.debug("Clearinghouse client session closed")

    def __enter__(self) -> "ClearinghouseClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
