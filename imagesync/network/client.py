"""HTTP client for the image gateway and presigned object-store uploads."""

from __future__ import annotations

import json
from typing import Any, TypeVar

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from imagesync.errors import (
    ERROR_CODE_MAP,
    DecodingError,
    HTTPError,
    InvalidURLError,
    NetworkError,
    UnknownNetworkError,
)
from imagesync.network.endpoints import APIEndpoint
from imagesync.network.models import APIErrorEnvelope

ResponseT = TypeVar("ResponseT", bound=BaseModel)


class APIGatewayClient:
    """Typed JSON requests plus raw binary upload/download.

    Gateway calls go through ``base_url``; ``upload_binary`` PUTs straight to
    a presigned URL, which carries its own authorization.
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 30.0,
        upload_timeout_seconds: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = str(base_url or "").rstrip("/")
        self.timeout_seconds = max(0.1, float(timeout_seconds))
        self.upload_timeout_seconds = max(self.timeout_seconds, float(upload_timeout_seconds))
        self._client = httpx.AsyncClient(transport=transport, follow_redirects=True)

    async def close(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        endpoint: APIEndpoint,
        response_model: type[ResponseT],
        *,
        bearer_token: str | None = None,
    ) -> ResponseT:
        url = self._full_url(endpoint)
        headers = _auth_headers(bearer_token)
        content: bytes | None = None
        if endpoint.body is not None:
            content = json.dumps(endpoint.body).encode("utf-8")
            headers["Content-Type"] = "application/json"

        logger.debug(f"Gateway request {endpoint.method} {url}")
        response = await self._send(
            endpoint.method,
            url,
            params=endpoint.query or None,
            headers=headers,
            content=content,
            timeout=self.timeout_seconds,
        )
        logger.debug(f"Gateway response {response.status_code} {len(response.content)} bytes")
        if not response.is_success:
            raise _error_from_response(response)

        try:
            return response_model.model_validate(response.json())
        except (ValidationError, ValueError) as e:
            raise DecodingError(str(e)) from e

    async def upload_binary(
        self,
        url: str,
        data: bytes,
        *,
        content_type: str,
        required_headers: dict[str, str] | None = None,
    ) -> None:
        """PUT raw bytes to a presigned URL with only the server-mandated headers."""
        headers = {str(k): str(v) for k, v in (required_headers or {}).items()}
        if not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = content_type
        logger.debug(f"Presigned upload {len(data)} bytes content_type={content_type}")
        response = await self._send(
            "PUT",
            url,
            headers=headers,
            content=data,
            timeout=self.upload_timeout_seconds,
        )
        if not response.is_success:
            raise HTTPError(response.status_code, "presigned upload failed")

    async def download_binary(
        self,
        endpoint: APIEndpoint,
        *,
        bearer_token: str | None = None,
    ) -> bytes:
        url = self._full_url(endpoint)
        response = await self._send(
            endpoint.method,
            url,
            params=endpoint.query or None,
            headers=_auth_headers(bearer_token),
            timeout=self.timeout_seconds,
        )
        if not response.is_success:
            raise HTTPError(response.status_code, "image download failed")
        return response.content

    def _full_url(self, endpoint: APIEndpoint) -> str:
        if not self.base_url.startswith(("http://", "https://")):
            raise InvalidURLError(self.base_url + endpoint.path)
        path = endpoint.path if endpoint.path.startswith("/") else f"/{endpoint.path}"
        return f"{self.base_url}{path}"

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise InvalidURLError(url) from e
        except httpx.HTTPError as e:
            raise UnknownNetworkError(e) from e


def _error_from_response(response: httpx.Response) -> NetworkError:
    try:
        envelope = APIErrorEnvelope.model_validate(response.json())
    except (ValidationError, ValueError):
        return HTTPError(response.status_code)
    error_cls = ERROR_CODE_MAP.get(envelope.error)
    if error_cls is not None:
        return error_cls()
    return HTTPError(response.status_code, envelope.message)


def _auth_headers(token: str | None) -> dict[str, str]:
    text = str(token or "").strip()
    if not text:
        return {}
    return {"Authorization": f"Bearer {text}"}
