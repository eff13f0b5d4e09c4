"""Network proxy used by the webRead and webSearch tools."""

import ipaddress
import json
import socket
from dataclasses import dataclass
from typing import Any, Optional, Union
from urllib.parse import urlparse

import httpx

from boltloop.constants import DEFAULT_SEARCH_ENDPOINT, DEFAULT_WEB_TIMEOUT, WEB_USER_AGENT
from boltloop.errors import WebError

_BLOCKED_HOSTS = {"localhost", "localhost.localdomain", "metadata.google.internal"}


@dataclass
class FetchResult:
    """Body and content type of a fetched URL."""

    content: str
    content_type: str = ""


class WebProxy:
    """Fetches pages and search results on behalf of the model.

    Only public http(s) URLs are fetched; loopback, private and link-local
    addresses are refused. Every request is checked, including each hop of a
    redirect chain, and host names are resolved so that a public name
    pointing at an internal address is refused too.
    """

    def __init__(
        self,
        timeout: int = DEFAULT_WEB_TIMEOUT,
        search_endpoint: str = DEFAULT_SEARCH_ENDPOINT,
        client: Optional[httpx.Client] = None,
        resolve_hosts: bool = True,
    ):
        """Initialize the proxy.

        Args:
            timeout: Request timeout in seconds
            search_endpoint: Instant-answer search API URL
            client: Optional preconfigured httpx client
            resolve_hosts: Resolve host names and refuse internal addresses
        """
        self.search_endpoint = search_endpoint
        self.resolve_hosts = resolve_hosts
        self.client = client or httpx.Client(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            headers={"User-Agent": WEB_USER_AGENT},
        )
        hooks = self.client.event_hooks
        self.client.event_hooks = {
            **hooks,
            "request": [*hooks.get("request", []), self._check_request],
        }

    def fetch(self, url: str) -> FetchResult:
        """Fetch a URL.

        Raises:
            WebError: If the URL is refused or the request fails
        """
        self._check_url(url)
        try:
            response = self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise WebError(f"HTTP {e.response.status_code} from {url}") from e
        except httpx.HTTPError as e:
            raise WebError(str(e) or type(e).__name__) from e

        return FetchResult(
            content=response.text,
            content_type=response.headers.get("content-type", ""),
        )

    def search(self, query: str) -> dict[str, Any]:
        """Query the instant-answer API.

        Returns:
            Decoded JSON payload (``AbstractText``, ``RelatedTopics``...)

        Raises:
            WebError: If the request fails or the payload is not JSON
        """
        params = {"q": query, "format": "json", "no_html": "1", "skip_disambig": "1"}
        try:
            response = self.client.get(self.search_endpoint, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise WebError(f"HTTP {e.response.status_code} from search endpoint") from e
        except httpx.HTTPError as e:
            raise WebError(str(e) or type(e).__name__) from e

        try:
            data = json.loads(response.text)
        except ValueError as e:
            raise WebError("Search endpoint returned invalid JSON") from e
        if not isinstance(data, dict):
            raise WebError("Search endpoint returned an unexpected payload")
        return data

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "WebProxy":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @staticmethod
    def _check_url(url: str) -> None:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise WebError(f"Unsupported URL scheme: {parsed.scheme or 'none'}")

        host = (parsed.hostname or "").lower()
        if not host:
            raise WebError("URL has no host")
        if host in _BLOCKED_HOSTS or host.endswith(".localhost"):
            raise WebError(f"Refusing to fetch local address: {host}")

        try:
            address = ipaddress.ip_address(host)
        except ValueError:
            return
        if _is_internal(address):
            raise WebError(f"Refusing to fetch non-public address: {host}")

    def _check_request(self, request: httpx.Request) -> None:
        self._check_url(str(request.url))
        if self.resolve_hosts:
            self._check_resolved(request.url.host)

    @staticmethod
    def _check_resolved(host: str) -> None:
        try:
            ipaddress.ip_address(host)
            return
        except ValueError:
            pass

        try:
            infos = socket.getaddrinfo(host, None)
        except socket.gaierror:
            # Unresolvable hosts fail in the transport
            return
        for info in infos:
            address = ipaddress.ip_address(info[4][0].split("%")[0])
            if _is_internal(address):
                raise WebError(f"Refusing to fetch {host}: resolves to non-public address {address}")


def _is_internal(address: Union[ipaddress.IPv4Address, ipaddress.IPv6Address]) -> bool:
    return address.is_private or address.is_loopback or address.is_link_local or address.is_reserved
