"""Content storage uploaders."""

from __future__ import annotations

from ..config import StorageSettings
from .base import ContentUploader, UploadResult  # noqa: F401
from .kubo import KuboUploader  # noqa: F401
from .storacha import StorachaUploader  # noqa: F401


def build_uploader(settings: StorageSettings) -> ContentUploader:
    if settings.provider == "storacha":
        return StorachaUploader(timeout=settings.timeout)
    if settings.provider == "kubo":
        return KuboUploader(settings.kubo_api_url, timeout=settings.timeout)
    raise ValueError(f"unsupported storage provider '{settings.provider}'")


__all__ = [
    "ContentUploader",
    "KuboUploader",
    "StorachaUploader",
    "UploadResult",
    "build_uploader",
]
