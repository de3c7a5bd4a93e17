"""Device credential model and its secret-store persistence."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from imagesync.auth.secrets import SecretStore
from imagesync.errors import CorruptCredentialError

DEVICE_ID_KEY = "deviceId"
DEVICE_SECRET_KEY = "deviceSecret"
TOKEN_EXPIRY_KEY = "tokenExpiry"
DEFAULT_EXPIRY_BUFFER_SECONDS = 300


@dataclass(frozen=True, slots=True)
class DeviceCredential:
    """Anonymous device identity issued by the backend.

    Replaced wholesale on every refresh; the previous pair is invalid after
    rotation.
    """

    device_id: str
    device_secret: str
    token_expiry: datetime

    @property
    def bearer_token(self) -> str:
        return f"{self.device_id}.{self.device_secret}"


def is_token_expired(
    expiry: datetime | None,
    now: datetime | None = None,
    *,
    buffer_seconds: int = DEFAULT_EXPIRY_BUFFER_SECONDS,
) -> bool:
    """True iff ``now + buffer >= expiry``. A missing expiry counts as expired."""
    if expiry is None:
        return True
    current = now or datetime.now(UTC)
    return current + timedelta(seconds=buffer_seconds) >= _aware(expiry)


class CredentialStore:
    """Stores the credential triple under three secret keys."""

    def __init__(self, secrets: SecretStore) -> None:
        self.secrets = secrets

    def save(self, credential: DeviceCredential) -> None:
        # One write: a rotated id must never sit next to the previous secret.
        self.secrets.save_many(
            {
                DEVICE_ID_KEY: credential.device_id,
                DEVICE_SECRET_KEY: credential.device_secret,
                TOKEN_EXPIRY_KEY: _aware(credential.token_expiry).isoformat(),
            }
        )

    def load(self) -> DeviceCredential | None:
        """Return the stored credential, ``None`` when nothing is stored.

        Raises:
            CorruptCredentialError: part of the triple is missing or the
                expiry cannot be parsed.
        """
        try:
            device_id = self.secrets.load(DEVICE_ID_KEY)
            device_secret = self.secrets.load(DEVICE_SECRET_KEY)
            expiry_raw = self.secrets.load(TOKEN_EXPIRY_KEY)
        except (OSError, ValueError) as e:
            raise CorruptCredentialError(f"secret store unreadable: {e}") from e

        present = [value is not None for value in (device_id, device_secret, expiry_raw)]
        if not any(present):
            return None
        if not all(present) or not device_id or not device_secret:
            raise CorruptCredentialError("stored credential is incomplete")
        try:
            expiry = _aware(datetime.fromisoformat(str(expiry_raw)))
        except ValueError as e:
            raise CorruptCredentialError(f"stored token expiry is invalid: {expiry_raw!r}") from e
        return DeviceCredential(device_id=device_id, device_secret=device_secret, token_expiry=expiry)

    def delete(self) -> None:
        self.secrets.delete_many((DEVICE_ID_KEY, DEVICE_SECRET_KEY, TOKEN_EXPIRY_KEY))


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
