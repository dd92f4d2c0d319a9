"""Backup references and source locators.

Backup reference: `s3://<bucket>/<key>`, or a bare key resolved against the
default bucket.

Source locator: `<repo-url>[#<ref>[:<subpath>]]`, ref defaulting to `main`
and subpath to the repository root. Both grammars are validated before any
network call.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass

from gamestack.errors import ConfigurationError, InvalidBackupRefError, InvalidSourceLocatorError

S3_SCHEME = "s3://"
DEFAULT_SOURCE_REF = "main"

_REF_RE = re.compile(r"^[A-Za-z0-9._/@+-]+$")


def parse_backup_ref(default_bucket: str, backup_ref: str) -> tuple[str, str]:
    ref = (backup_ref or "").strip()
    if not ref:
        raise InvalidBackupRefError("empty backup ref")

    if ref.startswith(S3_SCHEME):
        bucket, sep, key = ref[len(S3_SCHEME) :].partition("/")
        if not sep or not bucket.strip() or not key.strip("/").strip():
            raise InvalidBackupRefError(f"invalid s3 backup ref: {backup_ref}")
        return bucket.strip(), key.strip().strip("/")

    if "://" in ref:
        raise InvalidBackupRefError(f"unsupported backup ref scheme: {backup_ref}")

    key = ref.strip("/")
    if not key:
        raise InvalidBackupRefError(f"invalid backup ref: {backup_ref}")

    default_bucket = (default_bucket or "").strip()
    if not default_bucket:
        raise ConfigurationError("default backup bucket is not configured")
    return default_bucket, key


def format_backup_ref(bucket: str, key: str) -> str:
    return f"{S3_SCHEME}{bucket}/{key}"


@dataclass(frozen=True, slots=True)
class SourceLocator:
    raw: str
    repo_url: str
    ref: str = DEFAULT_SOURCE_REF
    subpath: str = ""

    @classmethod
    def parse(cls, raw: str) -> SourceLocator:
        value = (raw or "").strip()
        if not value:
            raise InvalidSourceLocatorError("source locator is required")

        repo_url, has_ref, ref_spec = value.partition("#")
        repo_url = repo_url.strip()
        if not repo_url:
            raise InvalidSourceLocatorError(f"source locator has no repository url: {raw}")

        ref = DEFAULT_SOURCE_REF
        subpath = ""
        if has_ref:
            ref_part, has_path, path_part = ref_spec.partition(":")
            if ref_part.strip():
                ref = ref_part.strip()
            if has_path:
                subpath = path_part.strip().lstrip("/")

        # A ref starting with '-' would be read by git as an option.
        if ref.startswith("-") or not _REF_RE.match(ref) or ".." in ref:
            raise InvalidSourceLocatorError(f"invalid ref in source locator: {ref!r}")

        if subpath:
            normalized = posixpath.normpath(subpath)
            if normalized == ".":
                normalized = ""
            if normalized == ".." or normalized.startswith("../") or "\\" in subpath or "\x00" in subpath:
                raise InvalidSourceLocatorError(f"invalid subpath in source locator: {subpath!r}")
            subpath = normalized

        return cls(raw=value, repo_url=repo_url, ref=ref, subpath=subpath)

    def __str__(self) -> str:
        return self.raw
