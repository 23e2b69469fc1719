"""
REST HTTP client for the HotelMate backend.
"""

from typing import Any, Optional

import httpx

from hotelmate_realtime.errors import ApiError

DEFAULT_BASE_URL = "https://hotel-porter-d25ad83b12cf.herokuapp.com/api"


class HttpClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": "hotelmate-realtime/0.1.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    def _auth_headers(self, authenticated: bool) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if authenticated and self._token:
            headers["Authorization"] = f"Token {self._token}"
        return headers

    @staticmethod
    def _unwrap(resp: httpx.Response) -> Any:
        if resp.status_code >= 400:
            raise ApiError(
                f"HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
                details={"path": resp.request.url.path},
            )
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    async def get(self, path: str, params: Optional[dict[str, Any]] = None, authenticated: bool = True) -> Any:
        clean = {k: v for k, v in (params or {}).items() if v is not None}
        resp = await self._client.get(path, params=clean, headers=self._auth_headers(authenticated))
        return self._unwrap(resp)

    async def post(
        self,
        path: str,
        body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        resp = await self._client.post(path, json=body, params=params, headers=self._auth_headers(authenticated))
        return self._unwrap(resp)

    async def patch(self, path: str, body: Optional[dict[str, Any]] = None, authenticated: bool = True) -> Any:
        resp = await self._client.patch(path, json=body, headers=self._auth_headers(authenticated))
        return self._unwrap(resp)

    async def close(self) -> None:
        await self._client.aclose()
