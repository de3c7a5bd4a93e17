"""Exception hierarchy shared by the gateway client, auth manager and coordinators."""

from __future__ import annotations


class ImageSyncError(Exception):
    """Base class for every error raised by imagesync."""


class NetworkError(ImageSyncError):
    """Gateway or transport failure.

    ``transient`` marks failures worth retrying as-is. Contract failures
    (undecodable bodies, malformed URLs) are not transient, although the
    upload and deletion retry policies currently treat both kinds alike.
    """

    transient: bool = True


class InvalidURLError(NetworkError):
    transient = False

    def __init__(self, url: str = "") -> None:
        super().__init__(f"invalid URL: {url}" if url else "invalid URL")
        self.url = url


class DecodingError(NetworkError):
    transient = False

    def __init__(self, detail: str = "") -> None:
        super().__init__(f"failed to decode response: {detail}" if detail else "failed to decode response")
        self.detail = detail


class HTTPError(NetworkError):
    def __init__(self, status_code: int, message: str | None = None) -> None:
        super().__init__(f"HTTP {status_code}: {message or 'unknown error'}")
        self.status_code = int(status_code)
        self.message = message


class UnauthorizedError(NetworkError):
    def __init__(self) -> None:
        super().__init__("unauthorized")


class TokenExpiredError(NetworkError):
    def __init__(self) -> None:
        super().__init__("token expired")


class NonceReusedError(NetworkError):
    def __init__(self) -> None:
        super().__init__("nonce reused")


class NotFoundError(NetworkError):
    def __init__(self) -> None:
        super().__init__("resource not found")


class UnknownNetworkError(NetworkError):
    """Transport-level failure (timeout, connection reset, DNS)."""

    def __init__(self, cause: BaseException | str) -> None:
        super().__init__(f"network failure: {cause}")
        self.cause = cause


class AuthError(ImageSyncError):
    """Device credential lifecycle failure."""


class NotRegisteredError(AuthError):
    def __init__(self) -> None:
        super().__init__("device is not registered")


class RefreshFailedError(AuthError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(f"token refresh failed: {detail}" if detail else "token refresh failed")


class CorruptCredentialError(AuthError):
    """Stored credential exists but cannot be read back.

    Distinct from an absent credential: absent means register, corrupt
    needs an explicit reset.
    """


class AssetNotFoundError(ImageSyncError, LookupError):
    def __init__(self, asset_id: str) -> None:
        super().__init__(f"asset not found: {asset_id}")
        self.asset_id = asset_id


class InvalidImageError(ImageSyncError, ValueError):
    """Input bytes are not a decodable image."""


class DerivativeError(ImageSyncError):
    """A required derivative could not be produced from the source image."""


class OfflineError(ImageSyncError):
    """Remote deletion deferred because the device is offline."""

    def __init__(self, asset_id: str = "") -> None:
        super().__init__(
            f"offline: deletion of {asset_id} queued" if asset_id else "offline: deletion queued"
        )
        self.asset_id = asset_id


# Error codes carried by the gateway envelope ``{ok: false, error: <code>}``.
ERROR_CODE_MAP: dict[str, type[NetworkError]] = {
    "unauthorized": UnauthorizedError,
    "token_expired": TokenExpiredError,
    "nonce_reused": NonceReusedError,
    "not_found": NotFoundError,
}
