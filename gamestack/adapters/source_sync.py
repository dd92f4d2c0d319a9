"""Pull/push workload data to a git repository.

Seed: shallow-clone the locator's ref, then destructively refill the data
directory from the (optional) subpath.

Sync: full clone, check out (or create) the ref, replace the tracked
contents with the local data directory, and commit + push only when
something changed.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

from gamestack.adapters.archive import clear_directory, copy_directory_contents, reset_directory
from gamestack.adapters.refs import SourceLocator
from gamestack.core.context import OperationContext
from gamestack.errors import InfrastructureError, InvalidSourceLocatorError

logger = logging.getLogger(__name__)

TOKEN_USERNAME = "x-access-token"

# How often a running git subprocess is checked for cancellation.
_POLL_SECONDS = 0.1


@dataclass(frozen=True, slots=True)
class GitIdentity:
    user_name: str
    user_email: str
    token: str = ""


def with_git_token(repo_url: str, token: str) -> str:
    """Embed `token` into https URLs; every other scheme is returned unchanged."""

    if not token:
        return repo_url
    try:
        parts = urlsplit(repo_url)
    except ValueError as e:
        raise InvalidSourceLocatorError(f"invalid repository url: {e}") from e
    if parts.scheme != "https" or not parts.hostname:
        return repo_url

    # Keep host and port exactly as written, IPv6 brackets included.
    host = parts.netloc.rpartition("@")[2]
    netloc = f"{TOKEN_USERNAME}:{quote(token, safe='')}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def _path_in_clone(repo_dir: Path, subpath: str) -> Path:
    """Return `repo_dir / subpath`, refusing symlinks and anything resolving outside the clone."""

    if not subpath:
        return repo_dir
    path = repo_dir
    for part in Path(subpath).parts:
        path = path / part
        if path.is_symlink():
            raise InvalidSourceLocatorError(f"source path is a symlink: {subpath}")
    if not path.resolve().is_relative_to(repo_dir.resolve()):
        raise InvalidSourceLocatorError(f"source path escapes the repository: {subpath}")
    return path


class GitSourceSync:
    def __init__(self, *, identity: GitIdentity, git_binary: str = "git") -> None:
        self._identity = identity
        self._git = git_binary

    def seed(self, ctx: OperationContext, locator: SourceLocator, data_dir: str | Path) -> None:
        auth_url = with_git_token(locator.repo_url, self._identity.token)

        with tempfile.TemporaryDirectory(prefix="gamestack-seed-") as tmp:
            repo_dir = Path(tmp) / "repo"
            self._run(
                ctx,
                "clone",
                "--depth",
                "1",
                "--branch",
                locator.ref,
                auth_url,
                str(repo_dir),
                what="git clone source",
            )

            src_dir = _path_in_clone(repo_dir, locator.subpath)
            if not src_dir.is_dir():
                raise InfrastructureError(f"source path not found in repo: {locator.subpath}")

            # Destructive from here on: clear, then refill.
            reset_directory(data_dir)
            copy_directory_contents(src_dir, data_dir)

        logger.info("seeded %s from %s", data_dir, locator)

    def sync(self, ctx: OperationContext, locator: SourceLocator, data_dir: str | Path, *, label: str) -> bool:
        """Push `data_dir` to the locator; returns False when nothing changed."""

        auth_url = with_git_token(locator.repo_url, self._identity.token)

        with tempfile.TemporaryDirectory(prefix="gamestack-sync-") as tmp:
            repo_dir = Path(tmp) / "repo"
            repo = str(repo_dir)
            self._run(ctx, "clone", auth_url, repo, what="git clone for sync")

            try:
                self._run(ctx, "-C", repo, "checkout", locator.ref, what="git checkout")
            except InfrastructureError:
                self._run(ctx, "-C", repo, "checkout", "-b", locator.ref, what="checkout branch for sync")

            target_dir = _path_in_clone(repo_dir, locator.subpath)
            try:
                target_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise InfrastructureError(f"create repo path for sync: {e}") from e

            clear_directory(target_dir)
            copy_directory_contents(data_dir, target_dir)

            self._run(ctx, "-C", repo, "config", "user.name", self._identity.user_name, what="git config user.name")
            self._run(ctx, "-C", repo, "config", "user.email", self._identity.user_email, what="git config user.email")
            self._run(ctx, "-C", repo, "add", "-A", what="git add")

            status = self._run(ctx, "-C", repo, "status", "--porcelain", what="git status")
            if not status.strip():
                logger.info("%s sync skipped (no changes) source=%s", label, locator)
                return False

            stamp = datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
            self._run(ctx, "-C", repo, "commit", "-m", f"chore: sync {label} data {stamp}", what="git commit")
            self._run(ctx, "-C", repo, "push", "origin", f"HEAD:refs/heads/{locator.ref}", what="git push")

        logger.info("%s sync to source complete source=%s", label, locator)
        return True

    def _redact(self, text: str) -> str:
        token = self._identity.token
        if not token:
            return text
        return text.replace(token, "***").replace(quote(token, safe=""), "***")

    def _run(self, ctx: OperationContext, *args: str, what: str) -> str:
        """Run git, killing it as soon as `ctx` is cancelled or expires."""

        ctx.check()
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"

        try:
            proc = subprocess.Popen(
                [self._git, *args],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
            )
        except OSError as e:
            raise InfrastructureError(f"{what}: {e}") from e

        while True:
            try:
                stdout, stderr = proc.communicate(timeout=_POLL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if ctx.cancelled or ctx.expired:
                    proc.kill()
                    proc.communicate()
                    ctx.check()

        if proc.returncode != 0:
            msg = stderr.strip() or f"exit status {proc.returncode}"
            raise InfrastructureError(f"{what}: git failed: {self._redact(msg)}")
        return stdout
