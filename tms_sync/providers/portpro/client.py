from __future__ import annotations

import logging
import random
import time
from typing import Any, Iterator

import httpx

from tms_sync.domain.errors import UpstreamError
from tms_sync.models.portpro import PortProLoad
from tms_sync.observability import incr_metric, log_event


PORTPRO_API_BASE = "https://api1.app.portpro.io/v1"
_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_MAX_RETRY_ATTEMPTS = 3
_RETRY_BASE_DELAY_SECONDS = 0.25
_RETRY_MAX_DELAY_SECONDS = 2.0

_EP_AUTH_REFRESH = "/auth/refresh"
_EP_LOADS = "/loads"


def _retry_delay(attempt: int) -> float:
    delay = min(_RETRY_BASE_DELAY_SECONDS * (2 ** (attempt - 1)), _RETRY_MAX_DELAY_SECONDS)
    return delay + random.uniform(0, delay * 0.2)


def _request_with_retry(
    *,
    client: httpx.Client,
    method: str,
    url: str,
    headers: dict[str, str],
    params: dict[str, Any] | None = None,
    json_payload: dict[str, Any] | None = None,
) -> httpx.Response:
    last_exc: httpx.HTTPError | None = None
    response: httpx.Response | None = None
    for attempt in range(1, _MAX_RETRY_ATTEMPTS + 1):
        try:
            response = client.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json_payload,
            )
        except httpx.HTTPError as exc:
            last_exc = exc
            if attempt >= _MAX_RETRY_ATTEMPTS:
                raise
            time.sleep(_retry_delay(attempt))
            continue

        if response.status_code in _RETRYABLE_STATUS_CODES and attempt < _MAX_RETRY_ATTEMPTS:
            time.sleep(_retry_delay(attempt))
            continue
        return response

    if last_exc:
        raise last_exc
    assert response is not None
    return response


class PortProClient:
    """Bearer-token client for the PortPro REST API.

    An HTTP 401 triggers exactly one token refresh followed by one retry of
    the original request. The refreshed access token is kept on the
    instance for later calls.
    """

    def __init__(
        self,
        *,
        access_token: str,
        refresh_token: str,
        base_url: str | None = None,
        timeout_seconds: float = 15.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._base_url = (base_url or PORTPRO_API_BASE).rstrip("/")
        self._http = http_client or httpx.Client(timeout=timeout_seconds)

    def close(self) -> None:
        self._http.close()

    def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_payload: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if authenticated:
            headers["Authorization"] = f"Bearer {self._access_token}"
        try:
            return _request_with_retry(
                client=self._http,
                method=method,
                url=f"{self._base_url}{path}",
                headers=headers,
                params=params,
                json_payload=json_payload,
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"PortPro connectivity error: {exc}") from exc

    def refresh_access_token(self) -> None:
        response = self._send(
            "POST",
            _EP_AUTH_REFRESH,
            json_payload={"refreshToken": self._refresh_token},
            authenticated=False,
        )
        if response.status_code >= 400:
            incr_metric("portpro.token_refresh", outcome="failed")
            raise UpstreamError(f"PortPro token refresh failed: HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError("PortPro token refresh failed: non-JSON response") from exc
        token = body.get("accessToken") if isinstance(body, dict) else None
        if not token:
            raise UpstreamError("PortPro token refresh failed: no access token in response")
        self._access_token = token
        incr_metric("portpro.token_refresh", outcome="succeeded")
        log_event("portpro_token_refreshed")

    def _request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> Any:
        response = self._send(method, path, params=params)
        if response.status_code == 401:
            self.refresh_access_token()
            response = self._send(method, path, params=params)
            if response.status_code == 401:
                raise UpstreamError("PortPro rejected credentials after token refresh")

        if response.status_code == 403:
            raise UpstreamError("PortPro rejected credentials: HTTP 403")
        if response.status_code == 404:
            raise UpstreamError(f"PortPro endpoint not found: {path}")
        if response.status_code >= 400:
            raise UpstreamError(f"PortPro API returned HTTP {response.status_code}: {response.text[:200]}")

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError("PortPro returned non-JSON response") from exc

    def get_loads(self, *, skip: int = 0, limit: int = 100) -> list[dict[str, Any]]:
        """Return one page of raw load records; callers validate each one."""
        body = self._request_json("GET", _EP_LOADS, params={"skip": skip, "limit": limit})
        data = body.get("data") if isinstance(body, dict) else body
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    def get_load_by_reference(self, reference_number: str) -> PortProLoad | None:
        try:
            body = self._request_json("GET", f"{_EP_LOADS}/{reference_number}")
        except UpstreamError as exc:
            if exc.category == "terminal" and "endpoint not found" in str(exc).lower():
                return None
            raise
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            return None
        return PortProLoad.model_validate(data)

    def iter_load_pages(
        self,
        *,
        page_size: int = 100,
        page_delay_seconds: float = 0.5,
        sleep=time.sleep,
    ) -> Iterator[list[dict[str, Any]]]:
        """Yield pages of loads until a short page ends the listing."""
        skip = 0
        while True:
            page = self.get_loads(skip=skip, limit=page_size)
            log_event("portpro_loads_page_fetched", skip=skip, count=len(page), level=logging.DEBUG)
            if page:
                yield page
            if len(page) < page_size:
                return
            skip += page_size
            sleep(page_delay_seconds)
