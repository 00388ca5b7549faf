"""
Shared carrier transport.

CarrierHTTPClient is held by each adapter and handles:
- OAuth bearer injection from a single-flight TokenCache
- translation of every httpx failure into one CarrierError subclass
- the default address shape for providers without their own format

Per-adapter state is the token cache only.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from parcelrate.core.exceptions import (
    CarrierError,
    CredentialError,
    ProviderResponseError,
    ProviderUnreachableError,
    RequestConstructionError,
)
from parcelrate.modules.shipping.carriers.base import Address

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_TOKEN_BUFFER_SECONDS = 300

TokenFetcher = Callable[[], Awaitable[Tuple[str, int]]]
ErrorMessageExtractor = Callable[[Any], Optional[str]]


class TokenCache:
    """
    In-memory OAuth token with expiry.

    The token is reused until now >= issued_at + expires_in - buffer.
    Concurrent callers that find no valid token wait on one fetch.
    """

    def __init__(
        self,
        fetch: TokenFetcher,
        buffer_seconds: int = DEFAULT_TOKEN_BUFFER_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self._buffer = buffer_seconds
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()

    @property
    def is_valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get(self) -> str:
        if self.is_valid:
            return self._token

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self.is_valid:
                return self._token

            token, expires_in = await self._fetch()
            self._token = token
            self._expires_at = self._clock() + int(expires_in) - self._buffer
            logger.info(f"Carrier OAuth token obtained, expires in {expires_in}s")
            return token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


def format_address(address: Address) -> Dict[str, Any]:
    """Generic address payload; adapters override when their API differs."""
    return {
        "name": address.name,
        "street1": address.address_line1,
        "street2": address.address_line2 or "",
        "city": address.city,
        "state": address.state,
        "country": address.country_code,
        "postalCode": address.postal_code,
        "phone": address.phone or "",
        "email": address.email or "",
        "residential": address.residential,
    }


class CarrierHTTPClient:
    """
    HTTP client for one carrier.

    Usage:
        http = CarrierHTTPClient("ups", "UPS", base_url, fetch_token=self._fetch_token)
        data = await http.request("POST", "/api/rating/v1/Rate", json=payload)
    """

    def __init__(
        self,
        carrier_id: str,
        carrier_name: str,
        base_url: str,
        fetch_token: Optional[TokenFetcher] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        token_buffer_seconds: int = DEFAULT_TOKEN_BUFFER_SECONDS,
        extra_headers: Optional[Callable[[], Dict[str, str]]] = None,
        error_message: Optional[ErrorMessageExtractor] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.carrier_id = carrier_id
        self.carrier_name = carrier_name
        self.base_url = base_url
        self.timeout = timeout
        self.tokens = TokenCache(fetch_token, token_buffer_seconds) if fetch_token else None
        self._extra_headers = extra_headers
        self._error_message = error_message
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                transport=self._transport,
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[Tuple[str, str]] = None,
        authenticated: bool = True,
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        authenticated=False skips bearer injection; the token call uses it.

        Raises:
            CredentialError: token could not be obtained
            ProviderResponseError: non-2xx status or undecodable body
            ProviderUnreachableError: timeout or network failure
            RequestConstructionError: request could not be built
        """
        request_headers: Dict[str, str] = {}
        if authenticated:
            if self.tokens is None:
                raise CredentialError(
                    f"{self.carrier_name} has no credentials configured",
                    carrier_id=self.carrier_id,
                )
            token = await self.tokens.get()
            request_headers["Authorization"] = f"Bearer {token}"
            if self._extra_headers:
                request_headers.update(self._extra_headers())
        if headers:
            request_headers.update(headers)

        client = self._get_http_client()
        try:
            response = await client.request(
                method,
                path,
                json=json,
                data=data,
                params=params,
                headers=request_headers,
                auth=auth,
            )
        except httpx.TimeoutException as e:
            raise self._unreachable(f"{self.carrier_name} API timed out: {e}") from e
        except (httpx.UnsupportedProtocol, httpx.LocalProtocolError) as e:
            raise self._construction(f"{self.carrier_name} API request error: {e}") from e
        except httpx.TransportError as e:
            raise self._unreachable(f"{self.carrier_name} API no response: {e}") from e
        except (httpx.InvalidURL, TypeError, ValueError) as e:
            raise self._construction(f"{self.carrier_name} API request error: {e}") from e

        logger.debug(f"{self.carrier_name} API {method} {path} -> {response.status_code}")

        if response.status_code >= 400:
            raise self._response_error(response)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"{self.carrier_name} API returned invalid JSON for {path}")
            raise ProviderResponseError(
                f"{self.carrier_name} API returned an invalid response body",
                carrier_id=self.carrier_id,
                status_code=response.status_code,
                body=response.text[:500],
            ) from e

    def _response_error(self, response: httpx.Response) -> ProviderResponseError:
        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text[:500]}

        detail = None
        if self._error_message:
            detail = self._error_message(body)
        message = f"{self.carrier_name} API error: {response.status_code}"
        if detail:
            message = f"{message} - {detail}"

        logger.error(message)
        return ProviderResponseError(
            message,
            carrier_id=self.carrier_id,
            status_code=response.status_code,
            body=body,
        )

    def _unreachable(self, message: str) -> ProviderUnreachableError:
        logger.error(message)
        return ProviderUnreachableError(message, carrier_id=self.carrier_id)

    def _construction(self, message: str) -> RequestConstructionError:
        logger.error(message)
        return RequestConstructionError(message, carrier_id=self.carrier_id)

    async def fetch_oauth_token(
        self,
        path: str,
        data: Dict[str, str],
        auth: Optional[Tuple[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[str, int]:
        """
        Client-credentials token call shared by the OAuth carriers.

        Returns:
            Tuple of (access_token, expires_in_seconds)
        """
        request_headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if headers:
            request_headers.update(headers)
        try:
            body = await self.request(
                "POST",
                path,
                data=data,
                auth=auth,
                headers=request_headers,
                authenticated=False,
            )
        except CarrierError as e:
            logger.error(f"{self.carrier_name} authentication error: {e.message}")
            raise CredentialError(
                f"Failed to authenticate with {self.carrier_name} API",
                carrier_id=self.carrier_id,
                details={"cause": e.to_dict()},
            ) from e

        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise CredentialError(
                f"{self.carrier_name} token response had no access_token",
                carrier_id=self.carrier_id,
            )
        try:
            expires_in = int(float(body.get("expires_in", 3600)))
        except (TypeError, ValueError) as e:
            raise CredentialError(
                f"{self.carrier_name} token response had an invalid expires_in",
                carrier_id=self.carrier_id,
                details={"expires_in": body.get("expires_in")},
            ) from e
        return token, expires_in
