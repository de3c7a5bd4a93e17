from datetime import UTC, datetime

import pytest

from imagesync.network.endpoints import (
    delete_image_endpoint,
    get_image_endpoint,
    refresh_endpoint,
    register_endpoint,
    upload_url_endpoint,
)
from imagesync.network.models import APIErrorEnvelope, CredentialResponse, parse_timestamp


def test_parse_timestamp_accepts_fractional_and_plain_iso() -> None:
    assert parse_timestamp("2026-01-02T03:04:05.678Z") == datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=UTC)
    assert parse_timestamp("2026-01-02T03:04:05Z") == datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert parse_timestamp("2026-01-02T03:04:05+00:00") == datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert parse_timestamp("2026-01-02T03:04:05") == datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)


def test_parse_timestamp_accepts_epoch_values() -> None:
    assert parse_timestamp(1767225600) == datetime(2026, 1, 1, tzinfo=UTC)
    assert parse_timestamp(1767225600000) == datetime(2026, 1, 1, tzinfo=UTC)


def test_parse_timestamp_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        parse_timestamp("tomorrow")
    with pytest.raises(ValueError):
        parse_timestamp(True)


def test_credential_response_uses_camel_case_wire_names() -> None:
    response = CredentialResponse.model_validate(
        {"deviceId": "d1", "deviceSecret": "s1", "expiresAt": "2026-01-01T00:00:00Z"}
    )
    assert response.device_id == "d1"
    assert response.expires_at.tzinfo is not None


def test_error_envelope_message_is_optional() -> None:
    envelope = APIErrorEnvelope.model_validate({"ok": False, "error": "not_found"})
    assert envelope.error == "not_found"
    assert envelope.message is None


def test_endpoint_catalogue() -> None:
    assert (register_endpoint().method, register_endpoint().path) == ("POST", "/v1/anonymous/register")
    assert refresh_endpoint().path == "/v1/auth/refresh"

    upload = upload_url_endpoint(content_type="image/heic", size_bytes=None, nonce="abc")
    assert upload.body == {"contentType": "image/heic", "nonce": "abc"}

    fetch = get_image_endpoint("r1", width=2048)
    assert (fetch.method, fetch.path, fetch.query) == ("GET", "/v1/images/r1", {"w": "2048"})
    assert get_image_endpoint("r1").query == {}

    delete = delete_image_endpoint("a b")
    assert (delete.method, delete.path) == ("DELETE", "/v1/images/a%20b")
