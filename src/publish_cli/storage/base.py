"""Abstract interface for content-addressed storage uploaders."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class UploadResult:
    content_id: str
    size: int


class ContentUploader(ABC):
    """Base class for backends that turn a build directory into a CID."""

    name = "uploader"

    @abstractmethod
    def upload(self, directory: Path) -> UploadResult:
        """Upload ``directory`` and return the root CID of the stored tree."""
