"""Mock image gateway for smoke tests (no object store, no real backend)."""

from __future__ import annotations

import argparse
import json
import secrets
import signal
import threading
import time
from datetime import UTC, datetime, timedelta
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import unquote, urlparse


def _iso(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class GatewayState:
    """In-memory devices, upload tickets and stored images."""

    def __init__(self, *, token_ttl_seconds: int = 3600) -> None:
        self.token_ttl_seconds = max(1, int(token_ttl_seconds))
        self.lock = threading.Lock()
        self.tokens: dict[str, tuple[str, datetime]] = {}
        self.nonces: set[str] = set()
        self.tickets: dict[str, dict[str, Any]] = {}
        self.images: dict[str, dict[str, Any]] = {}

    def issue_credential(self, device_id: str | None = None) -> dict[str, str]:
        did = device_id or f"dev-{secrets.token_hex(6)}"
        secret = secrets.token_hex(16)
        expires_at = datetime.now(UTC) + timedelta(seconds=self.token_ttl_seconds)
        with self.lock:
            # Rotation: every earlier token of this device stops working.
            self.tokens = {k: v for k, v in self.tokens.items() if v[0] != did}
            self.tokens[f"{did}.{secret}"] = (did, expires_at)
        return {"deviceId": did, "deviceSecret": secret, "expiresAt": _iso(expires_at)}

    def authorize(self, header: str | None) -> tuple[str | None, str | None]:
        """Return (device_id, error_code)."""
        text = str(header or "")
        if not text.startswith("Bearer "):
            return None, "unauthorized"
        with self.lock:
            entry = self.tokens.get(text[len("Bearer ") :].strip())
        if entry is None:
            return None, "unauthorized"
        device_id, expires_at = entry
        if expires_at <= datetime.now(UTC):
            return None, "token_expired"
        return device_id, None


class _GatewayRequestHandler(BaseHTTPRequestHandler):
    state: GatewayState
    public_base: str = ""

    server_version = "imagesync-mock-gateway/0.1"

    def do_POST(self) -> None:  # noqa: N802
        path = urlparse(self.path).path
        if path == "/v1/anonymous/register":
            self._send_json(HTTPStatus.OK, self.state.issue_credential())
            return
        device_id, error = self.state.authorize(self.headers.get("Authorization"))
        if error:
            self._send_error(HTTPStatus.UNAUTHORIZED, error)
            return
        if path == "/v1/auth/refresh":
            self._send_json(HTTPStatus.OK, self.state.issue_credential(device_id))
            return
        if path == "/v1/images/upload-url":
            self._post_upload_url(str(device_id))
            return
        self._send_error(HTTPStatus.NOT_FOUND, "not_found", "unknown endpoint")

    def do_PUT(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if not parsed.path.startswith("/upload/"):
            self._send_error(HTTPStatus.NOT_FOUND, "not_found", "unknown endpoint")
            return
        ticket_id = parsed.path[len("/upload/") :]
        with self.state.lock:
            ticket = self.state.tickets.pop(ticket_id, None)
        if ticket is None:
            self._send_error(HTTPStatus.FORBIDDEN, "unauthorized", "upload url invalid or used")
            return
        length = int(self.headers.get("Content-Length", "0") or 0)
        data = self.rfile.read(length) if length > 0 else b""
        with self.state.lock:
            self.state.images[ticket["image_id"]] = {
                "device_id": ticket["device_id"],
                "content_type": self.headers.get("Content-Type", ticket["content_type"]),
                "data": data,
            }
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        image_id = self._image_id(parsed.path)
        if image_id is None:
            self._send_error(HTTPStatus.NOT_FOUND, "not_found", "unknown endpoint")
            return
        _, error = self.state.authorize(self.headers.get("Authorization"))
        if error:
            self._send_error(HTTPStatus.UNAUTHORIZED, error)
            return
        with self.state.lock:
            image = self.state.images.get(image_id)
        if image is None:
            self._send_error(HTTPStatus.NOT_FOUND, "not_found")
            return
        # ?w= is accepted but the mock never resizes.
        body = image["data"]
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", image["content_type"])
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_DELETE(self) -> None:  # noqa: N802
        image_id = self._image_id(urlparse(self.path).path)
        if image_id is None:
            self._send_error(HTTPStatus.NOT_FOUND, "not_found", "unknown endpoint")
            return
        _, error = self.state.authorize(self.headers.get("Authorization"))
        if error:
            self._send_error(HTTPStatus.UNAUTHORIZED, error)
            return
        with self.state.lock:
            removed = self.state.images.pop(image_id, None)
        if removed is None:
            self._send_error(HTTPStatus.NOT_FOUND, "not_found")
            return
        self._send_json(HTTPStatus.OK, {"ok": True})

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        return

    def _post_upload_url(self, device_id: str) -> None:
        payload = self._read_json_body()
        if payload is None:
            return
        nonce = str(payload.get("nonce") or "").strip()
        content_type = str(payload.get("contentType") or "").strip()
        if not nonce or not content_type:
            self._send_error(HTTPStatus.BAD_REQUEST, "bad_request", "contentType and nonce are required")
            return
        with self.state.lock:
            if nonce in self.state.nonces:
                reused = True
            else:
                reused = False
                self.state.nonces.add(nonce)
        if reused:
            self._send_error(HTTPStatus.CONFLICT, "nonce_reused")
            return
        image_id = f"img-{secrets.token_hex(8)}"
        ticket_id = secrets.token_urlsafe(16)
        with self.state.lock:
            self.state.tickets[ticket_id] = {
                "image_id": image_id,
                "device_id": device_id,
                "content_type": content_type,
            }
        expires_at = datetime.now(UTC) + timedelta(minutes=15)
        self._send_json(
            HTTPStatus.OK,
            {
                "imageId": image_id,
                "uploadUrl": f"{self.public_base}/upload/{ticket_id}",
                "expiresAt": _iso(expires_at),
                "requiredHeaders": {"Content-Type": content_type},
            },
        )

    @staticmethod
    def _image_id(path: str) -> str | None:
        prefix = "/v1/images/"
        if not path.startswith(prefix) or path == "/v1/images/upload-url":
            return None
        value = unquote(path[len(prefix) :]).strip()
        return value or None

    def _read_json_body(self) -> dict[str, Any] | None:
        length = int(self.headers.get("Content-Length", "0") or 0)
        body = self.rfile.read(length) if length > 0 else b"{}"
        try:
            payload = json.loads(body.decode("utf-8"))
        except json.JSONDecodeError:
            self._send_error(HTTPStatus.BAD_REQUEST, "bad_request", "invalid json")
            return None
        return payload if isinstance(payload, dict) else {}

    def _send_error(self, code: HTTPStatus, error: str, message: str | None = None) -> None:
        payload: dict[str, Any] = {"ok": False, "error": error}
        if message:
            payload["message"] = message
        self._send_json(code, payload)

    def _send_json(self, code: HTTPStatus, payload: dict[str, Any]) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


def main() -> None:
    parser = argparse.ArgumentParser(description="Mock image gateway for imagesync smoke runs")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=18800)
    parser.add_argument("--token-ttl", type=int, default=3600, help="Issued token lifetime in seconds")
    args = parser.parse_args()

    handler_cls = type("BoundGatewayRequestHandler", (_GatewayRequestHandler,), {})
    handler_cls.state = GatewayState(token_ttl_seconds=args.token_ttl)
    handler_cls.public_base = f"http://{args.host}:{args.port}"
    server = ThreadingHTTPServer((str(args.host), int(args.port)), handler_cls)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    print(f"mock gateway ready on http://{args.host}:{args.port}", flush=True)

    stop_event = threading.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda *_: stop_event.set())
    try:
        while not stop_event.is_set():
            time.sleep(0.2)
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=2)


if __name__ == "__main__":
    main()
