"""HTTP client driver using httpx.AsyncClient.

Used by verdict sources that poll external analysis services. Responses are
returned as plain dicts so callers never depend on httpx types.
"""

from __future__ import annotations

from typing import Any

import httpx

from shipline.kernel.exceptions import HttpClientError
from shipline.kernel.logging import get_logger

logger = get_logger(__name__)


class HttpClientDriver:
    """Async HTTP client for one analysis service.

    Parameters
    ----------
    base_url : str
        Service root every request path is relative to.
    timeout : float
        Per-request timeout in seconds.
    token : str | None
        API token. Sent as the HTTP Basic username with an empty password,
        which is how SonarQube-style services take tokens.

    Every non-2xx response raises :class:`HttpClientError`.

    Examples
    --------
    Basic usage::

        http = HttpClientDriver("https://sonar.example.com", token=token)
        result = await http.aget("/api/qualitygates/project_status", params={"analysisId": "AX1"})
        print(result["body"])
    """

    def __init__(self, base_url: str, timeout: float = 30.0, token: str | None = None) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._auth = httpx.BasicAuth(token, "") if token else None
        self._client: httpx.AsyncClient | None = None
        # Tests inject a custom transport here
        self._transport: httpx.AsyncBaseTransport | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Create the httpx client on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                auth=self._auth,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    def _result(self, response: httpx.Response) -> dict[str, Any]:
        """Turn a response into ``{"status_code", "body"}``.

        JSON bodies are decoded, anything else is kept as text.
        """
        body: Any = response.text
        if "application/json" in response.headers.get("content-type", ""):
            try:
                body = response.json()
            except ValueError:
                logger.debug("{} declared JSON but could not be decoded", response.url)
        if not response.is_success:
            raise HttpClientError(
                status_code=response.status_code,
                body=body,
                message=f"HTTP {response.status_code}: {body}",
            )
        return {"status_code": response.status_code, "body": body}

    async def aget(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """GET ``url`` and return ``{"status_code": int, "body": Any}``."""
        return self._result(await self._get_client().get(url, params=params))

    async def apost(self, url: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        """POST form ``data`` to ``url``."""
        return self._result(await self._get_client().post(url, data=data))

    async def aclose(self) -> None:
        """Close the connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
