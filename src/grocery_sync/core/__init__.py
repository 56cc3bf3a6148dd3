from .client import SyncClient

__all__ = ["SyncClient"]
