"""Upload to a Kubo (go-ipfs) node through its HTTP RPC API."""

from __future__ import annotations

import json
import logging
from contextlib import ExitStack
from pathlib import Path
from typing import List, Optional

import requests
from requests.exceptions import RequestException

from ens_publish import contenthash
from ens_publish.errors import InvalidContentIdentifier, StorageError

from ..metadata import list_files
from .base import ContentUploader, UploadResult

LOG = logging.getLogger(__name__)


def parse_add_response(body: str) -> UploadResult:
    """Root entry of a ``/api/v0/add`` NDJSON response.

    With ``wrap-with-directory`` the wrapper is the last line and has an empty
    name.
    """

    entries: List[dict] = []
    for line in body.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError as exc:
            raise StorageError(f"unexpected line in kubo response: {line[:80]!r}") from exc
    if not entries:
        raise StorageError("kubo returned an empty response")

    root = entries[-1]
    cid = root.get("Hash")
    if not cid:
        raise StorageError("kubo response has no root Hash")
    try:
        contenthash.parse_cid(cid)
    except InvalidContentIdentifier as exc:
        raise StorageError(f"kubo returned an invalid CID {cid!r}") from exc
    return UploadResult(content_id=cid, size=int(root.get("Size") or 0))


class KuboUploader(ContentUploader):
    name = "kubo"

    def __init__(
        self,
        api_url: str = "http://127.0.0.1:5001",
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 300.0,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout

    def upload(self, directory: Path) -> UploadResult:
        if not directory.is_dir():
            raise StorageError(f"directory not found: {directory}")
        paths = list_files(directory)
        if not paths:
            raise StorageError(f"{directory} contains no files to upload")

        url = f"{self._api_url}/api/v0/add"
        params = {"recursive": "true", "wrap-with-directory": "true", "cid-version": "1", "pin": "true"}
        LOG.info("Uploading %d file(s) from %s to %s", len(paths), directory, self._api_url)
        # Parent directories must precede their files in the multipart body.
        dirs = sorted(
            {parent for path in paths for parent in path.relative_to(directory).parents if parent.name},
            key=lambda p: p.as_posix(),
        )
        with ExitStack() as stack:
            files = [("file", (d.as_posix(), b"", "application/x-directory")) for d in dirs]
            files += [
                (
                    "file",
                    (
                        path.relative_to(directory).as_posix(),
                        stack.enter_context(path.open("rb")),
                        "application/octet-stream",
                    ),
                )
                for path in paths
            ]
            try:
                response = self._session.post(url, params=params, files=files, timeout=self._timeout)
            except RequestException as exc:
                raise StorageError(f"kubo upload to {url} failed: {exc}") from exc

        if response.status_code != 200:
            raise StorageError(f"kubo rejected the upload ({response.status_code}): {response.text[:200]}")
        result = parse_add_response(response.text)
        LOG.info("Uploaded %s as %s", directory, result.content_id)
        return result
