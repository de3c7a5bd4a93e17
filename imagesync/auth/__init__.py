"""Device identity, credential persistence and token lifecycle."""

from imagesync.auth.credentials import CredentialStore, DeviceCredential, is_token_expired
from imagesync.auth.manager import DeviceAuthManager
from imagesync.auth.secrets import FileSecretStore, MemorySecretStore, SecretStore

__all__ = [
    "CredentialStore",
    "DeviceAuthManager",
    "DeviceCredential",
    "FileSecretStore",
    "MemorySecretStore",
    "SecretStore",
    "is_token_expired",
]
