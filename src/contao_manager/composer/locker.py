"""Lockfile access compatible with Composer's locking subsystem."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

from contao_manager.errors import LockError

RELEVANT_KEYS = (
    "name",
    "version",
    "require",
    "require-dev",
    "conflict",
    "replace",
    "provide",
    "minimum-stability",
    "prefer-stable",
    "repositories",
    "extra",
)


class Locker:
    """Read-only view of a lockfile bound to the manifest it was generated from."""

    def __init__(self, lock_path: Path, manifest_contents: str) -> None:
        self.lock_path = lock_path
        self.manifest_contents = manifest_contents
        self._lock_data: dict[str, Any] | None = None

    def is_locked(self) -> bool:
        """Return True when the lockfile exists and carries a package list."""

        if not self.lock_path.is_file():
            return False
        return "packages" in self.get_lock_data()

    def is_fresh(self) -> bool:
        """Compare the lock fingerprint with the current manifest."""

        lock = self.get_lock_data()
        content_hash = lock.get("content-hash")
        if content_hash:
            return content_hash == content_hash_for(self.manifest_contents)
        legacy_hash = lock.get("hash")
        if legacy_hash:
            digest = hashlib.md5(self.manifest_contents.encode("utf-8")).hexdigest()  # noqa: S324
            return legacy_hash == digest
        return False

    def get_lock_data(self) -> dict[str, Any]:
        if self._lock_data is None:
            self._lock_data = _read_lock(self.lock_path)
        return self._lock_data


def content_hash_for(manifest_contents: str) -> str:
    """Fingerprint of the manifest keys that influence dependency resolution."""

    try:
        content = json.loads(manifest_contents)
    except json.JSONDecodeError as error:
        raise LockError("composer.json does not contain valid JSON", details=str(error)) from error
    if not isinstance(content, dict):
        raise LockError("composer.json must contain a JSON object")

    relevant: dict[str, Any] = {key: content[key] for key in RELEVANT_KEYS if key in content}
    config = content.get("config")
    if isinstance(config, dict) and "platform" in config:
        relevant["config"] = {"platform": config["platform"]}

    ordered = {key: relevant[key] for key in sorted(relevant)}
    return hashlib.md5(_php_json_encode(ordered).encode("ascii")).hexdigest()  # noqa: S324


def _read_lock(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text("utf-8")
    except OSError as error:
        raise LockError(f"Could not read {path}", details=str(error)) from error
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        raise LockError(f'"{path}" does not contain valid JSON', details=str(error)) from error
    if not isinstance(payload, dict):
        raise LockError(f'"{path}" must contain a JSON object')
    return payload


def _php_json_encode(value: Any) -> str:
    # json_encode() defaults: escaped slashes and unicode, empty objects become arrays.
    encoded = json.dumps(_php_normalize(value), ensure_ascii=True, separators=(",", ":"))
    return encoded.replace("/", "\\/")


def _php_normalize(value: Any) -> Any:
    if isinstance(value, dict):
        if not value:
            return []
        return {key: _php_normalize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_php_normalize(item) for item in value]
    return value
