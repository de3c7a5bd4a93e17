"""Gateway client, endpoint catalogue and connectivity monitoring."""

from imagesync.network.client import APIGatewayClient
from imagesync.network.endpoints import (
    APIEndpoint,
    delete_image_endpoint,
    get_image_endpoint,
    refresh_endpoint,
    register_endpoint,
    upload_url_endpoint,
)
from imagesync.network.models import (
    APIErrorEnvelope,
    CredentialResponse,
    DeleteResponse,
    UploadURLResponse,
    parse_timestamp,
)
from imagesync.network.monitor import ConnectivityMonitor, tcp_probe

__all__ = [
    "APIEndpoint",
    "APIErrorEnvelope",
    "APIGatewayClient",
    "ConnectivityMonitor",
    "CredentialResponse",
    "DeleteResponse",
    "UploadURLResponse",
    "delete_image_endpoint",
    "get_image_endpoint",
    "parse_timestamp",
    "refresh_endpoint",
    "register_endpoint",
    "tcp_probe",
    "upload_url_endpoint",
]
