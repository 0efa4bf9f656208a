"""Storage module."""

from .storage import ID_FIELD, IStorage, Storage, StorageTransaction

__all__ = ["ID_FIELD", "IStorage", "Storage", "StorageTransaction"]
