"""
Storage module - remote clip storage backends.
"""

from clipdeck.services.storage.base import BaseStorage
from clipdeck.services.storage.client import StorageClient

__all__ = ["BaseStorage", "StorageClient", "create_storage"]


def create_storage(base_url: str | None = None, **kwargs) -> BaseStorage:
    """Factory function to create the storage backend client.

    Args:
        base_url: Backend root URL; None uses ``settings.api_base_url``.
        **kwargs: Passed through to ``StorageClient`` (timeout, transport).

    Returns:
        BaseStorage implementation instance
    """
    return StorageClient(base_url=base_url, **kwargs)
