from abc import ABC, abstractmethod
from pathlib import Path

from printquota.core.config import get_settings


class StorageBackend(ABC):
    """Read side of document storage; files are written by the upload service."""

    @abstractmethod
    async def local_path(self, key: str) -> Path:
        """Filesystem path of a stored file, for tools that need one (converters)."""
        ...


def get_storage() -> StorageBackend:
    from printquota.storage.local import LocalStorage
    return LocalStorage(get_settings().storage_local_path)
