"""Upload through the ``storacha`` command line client."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from ens_publish import contenthash
from ens_publish.errors import InvalidContentIdentifier, StorageError

from .base import ContentUploader, UploadResult

LOG = logging.getLogger(__name__)

_CID = re.compile(r"bafy[a-z0-9]+", re.IGNORECASE)


def extract_cid(output: str) -> str:
    """First CIDv1 (``bafy...``) printed by ``storacha up``."""

    match = _CID.search(output)
    if match is None:
        raise StorageError("could not find a CID in the storacha output")
    cid = match.group(0)
    try:
        contenthash.parse_cid(cid)
    except InvalidContentIdentifier as exc:
        raise StorageError(f"storacha printed an invalid CID {cid!r}") from exc
    return cid


def directory_size(directory: Path) -> int:
    return sum(p.stat().st_size for p in directory.rglob("*") if p.is_file())


class StorachaUploader(ContentUploader):
    name = "storacha"

    def __init__(self, *, executable: str = "storacha", timeout: Optional[float] = 300.0) -> None:
        self._executable = executable
        self._timeout = timeout

    def upload(self, directory: Path) -> UploadResult:
        if not directory.is_dir():
            raise StorageError(f"directory not found: {directory}")
        binary = shutil.which(self._executable)
        if binary is None:
            raise StorageError(
                f"{self._executable} CLI not found",
                hint="Install it with: npm install -g @storacha/cli",
            )

        LOG.info("Uploading %s via storacha", directory)
        try:
            completed = subprocess.run(
                [binary, "up", str(directory)],
                check=True,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.CalledProcessError as exc:
            raise StorageError(
                f"storacha up failed with exit code {exc.returncode}: {exc.stderr.strip()}"
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise StorageError(f"storacha up timed out after {self._timeout}s") from exc

        cid = extract_cid(completed.stdout + completed.stderr)
        LOG.info("Uploaded %s as %s", directory, cid)
        return UploadResult(content_id=cid, size=directory_size(directory))
