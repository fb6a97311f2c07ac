"""HTTP client module with connection pooling.

Usage:
    from dripline.http import get_sync_client
    client = get_sync_client()
    response = client.post("https://hooks.example.com/lead", json=payload, timeout=10)
"""

from dripline.http.client import (
    HTTPClientConfig,
    close_sync_client,
    configure_http_client,
    get_sync_client,
)

__all__ = [
    "get_sync_client",
    "close_sync_client",
    "configure_http_client",
    "HTTPClientConfig",
]
