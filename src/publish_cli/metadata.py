"""Build and commit metadata attached to deployment proposals."""

from __future__ import annotations

import hashlib
import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ens_publish.governance.safe import ORIGIN_MAX_LENGTH

LOG = logging.getLogger(__name__)

_SKIPPED_DIRS = {"node_modules"}


@dataclass(frozen=True)
class BuildHash:
    digest: str
    file_count: int
    total_size: int

    @property
    def short(self) -> str:
        return self.digest[:8]


@dataclass(frozen=True)
class CommitInfo:
    hash: str
    short_hash: str
    subject: str
    author: str
    timestamp: str
    url: Optional[str] = None


def list_files(directory: Path) -> List[Path]:
    files: List[Path] = []
    for entry in sorted(directory.iterdir()):
        if entry.name.startswith(".") or entry.name in _SKIPPED_DIRS:
            continue
        if entry.is_dir():
            files.extend(list_files(entry))
        elif entry.is_file():
            files.append(entry)
    return files


def build_hash(directory: Path) -> BuildHash:
    """SHA-256 over every file's relative path and contents, in path order.

    Dotfiles, dot-directories and ``node_modules`` are skipped.  The digest
    only depends on the tree, so two builds of the same commit can be compared.
    """

    if not directory.is_dir():
        raise NotADirectoryError(f"{directory} is not a directory")

    digest = hashlib.sha256()
    files = sorted(list_files(directory), key=lambda p: p.relative_to(directory).as_posix())
    total = 0
    for path in files:
        content = path.read_bytes()
        digest.update(path.relative_to(directory).as_posix().encode())
        digest.update(content)
        total += len(content)
    return BuildHash(digest=digest.hexdigest(), file_count=len(files), total_size=total)


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


# ----------------------------------------------------------------------
# git
# ----------------------------------------------------------------------
def _git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout.strip()


def github_url(remote: str) -> Optional[str]:
    """Web URL of a GitHub remote (SSH or HTTPS form), else ``None``."""

    if remote.startswith("git@github.com:"):
        remote = "https://github.com/" + remote[len("git@github.com:"):]
    if not remote.startswith("https://github.com/"):
        return None
    return remote[: -len(".git")] if remote.endswith(".git") else remote


def commit_info(cwd: Path) -> Optional[CommitInfo]:
    """Describe HEAD of the repository at ``cwd``; ``None`` outside a git checkout."""

    try:
        _git(cwd, "rev-parse", "--git-dir")
    except (OSError, subprocess.CalledProcessError):
        LOG.warning("%s is not a git repository; deploying without commit info", cwd)
        return None

    try:
        full = _git(cwd, "rev-parse", "HEAD")
    except subprocess.CalledProcessError:
        LOG.warning("%s has no commits yet; deploying without commit info", cwd)
        return None
    try:
        remote = _git(cwd, "config", "--get", "remote.origin.url")
    except subprocess.CalledProcessError:
        remote = ""
    web = github_url(remote)
    return CommitInfo(
        hash=full,
        short_hash=_git(cwd, "rev-parse", "--short", "HEAD"),
        subject=_git(cwd, "log", "-1", "--pretty=%s"),
        author=_git(cwd, "log", "-1", "--pretty=%an <%ae>"),
        timestamp=_git(cwd, "log", "-1", "--pretty=%aI"),
        url=f"{web}/commit/{full}" if web else None,
    )


def is_clean(cwd: Path) -> bool:
    try:
        return _git(cwd, "status", "--porcelain") == ""
    except (OSError, subprocess.CalledProcessError):
        return False


# ----------------------------------------------------------------------
# Descriptions and URLs
# ----------------------------------------------------------------------
def gateway_urls(content_id: str, name: Optional[str] = None) -> List[str]:
    urls = [f"https://w3s.link/ipfs/{content_id}", f"https://ipfs.io/ipfs/{content_id}"]
    if name:
        urls.insert(0, f"https://{name}.limo")
    return urls


def origin(
    name: str,
    content_id: str,
    *,
    commit: Optional[CommitInfo] = None,
    build: Optional[BuildHash] = None,
) -> str:
    """Short description stored with the Safe proposal, capped at the service limit."""

    parts = [f"Deploy {name}", f"cid={content_id}"]
    if commit is not None:
        parts.append(f"commit={commit.short_hash}")
    if build is not None:
        parts.append(f"build={build.short}")
    if commit is not None:
        parts.append(commit.subject)
    return " | ".join(parts)[:ORIGIN_MAX_LENGTH]


def describe(
    name: str,
    content_id: str,
    *,
    commit: Optional[CommitInfo] = None,
    build: Optional[BuildHash] = None,
    now: Optional[datetime] = None,
) -> str:
    """Multi-line deployment summary for operators."""

    lines = [f"Deploy {name}", "", f"CID: {content_id}"]
    lines.extend(f"  {url}" for url in gateway_urls(content_id, name))
    if commit is not None:
        lines += ["", f"Commit: {commit.short_hash} {commit.subject}", f"Author: {commit.author}"]
        if commit.url:
            lines.append(f"URL: {commit.url}")
    if build is not None:
        lines += [
            "",
            f"Build hash: {build.short}...",
            f"Files: {build.file_count}, size: {format_size(build.total_size)}",
        ]
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
    lines += ["", f"Prepared: {stamp}"]
    return "\n".join(lines)
