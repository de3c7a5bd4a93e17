"""Gateway endpoint catalogue."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote


@dataclass(frozen=True, slots=True)
class APIEndpoint:
    """One gateway call: method, path, query items and optional JSON body."""

    method: str
    path: str
    query: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] | None = None


def register_endpoint() -> APIEndpoint:
    return APIEndpoint(method="POST", path="/v1/anonymous/register")


def refresh_endpoint() -> APIEndpoint:
    return APIEndpoint(method="POST", path="/v1/auth/refresh")


def upload_url_endpoint(*, content_type: str, size_bytes: int | None, nonce: str) -> APIEndpoint:
    body: dict[str, Any] = {"contentType": content_type, "nonce": nonce}
    if size_bytes is not None:
        body["sizeBytes"] = int(size_bytes)
    return APIEndpoint(method="POST", path="/v1/images/upload-url", body=body)


def get_image_endpoint(image_id: str, *, width: int | None = None) -> APIEndpoint:
    query = {"w": str(int(width))} if width is not None else {}
    return APIEndpoint(method="GET", path=f"/v1/images/{quote(image_id, safe='')}", query=query)


def delete_image_endpoint(image_id: str) -> APIEndpoint:
    return APIEndpoint(method="DELETE", path=f"/v1/images/{quote(image_id, safe='')}")
