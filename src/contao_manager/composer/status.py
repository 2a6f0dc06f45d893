"""Composer state inspection: manifest, lockfile and vendor directory."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Generic, TypeVar

from contao_manager.composer.environment import Environment
from contao_manager.composer.schema import ManifestSchema
from contao_manager.errors import LockError, ManifestError, ServiceUnavailableError
from contao_manager.i18n import Translator
from contao_manager.server_info import ServerInfo

logger = logging.getLogger(__name__)

CORE_PACKAGE = "contao/manager-bundle"

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class Ok(Generic[T]):
    """Successful validation step carrying the refined value."""

    value: T


@dataclass(slots=True, frozen=True)
class Err:
    """Failed validation step; the chain stops here."""

    error: ManifestError


@dataclass(slots=True)
class JsonState:
    found: bool = False
    valid: bool = False
    error: str | None = None


@dataclass(slots=True)
class LockState:
    found: bool = False
    fresh: bool = False


@dataclass(slots=True)
class VendorState:
    found: bool = False


@dataclass(slots=True)
class ComposerState:
    """Derived read model, recomputed on every request."""

    json: JsonState = field(default_factory=JsonState)
    lock: LockState = field(default_factory=LockState)
    vendor: VendorState = field(default_factory=VendorState)

    def to_dict(self) -> dict[str, Any]:
        return {
            "json": asdict(self.json),
            "lock": asdict(self.lock),
            "vendor": asdict(self.vendor),
        }


class ComposerStatusInspector:
    """Report whether the project has a usable manifest, lockfile and vendor directory.

    Inspection is a chain of steps, each returning ``Ok`` with the refined state or
    ``Err`` with a typed manifest error. The first ``Err`` ends the chain and its
    message is stored, localized, in the manifest error slot. Only the missing
    runtime executable is raised, before any filesystem access.
    """

    def __init__(
        self,
        *,
        environment: Environment,
        server_info: ServerInfo,
        translator: Translator,
        schema: ManifestSchema | None = None,
    ) -> None:
        self.environment = environment
        self.server_info = server_info
        self.translator = translator
        self.schema = schema or ManifestSchema()

    def inspect(self) -> ComposerState:
        if not self.server_info.get_php_executable():
            raise ServiceUnavailableError(self.translator.trans("boot.composer.missing_hosting"))

        state = ComposerState()
        if not self.environment.json_file.exists():
            return state

        state.json.found = True
        state.json.valid = True
        state.vendor.found = self.environment.vendor_dir.is_dir()

        parsed = self._parse_manifest()
        if isinstance(parsed, Err):
            return self._invalid(state, parsed.error)

        validated = self._validate_schema(parsed.value)
        if isinstance(validated, Err):
            return self._invalid(state, validated.error)

        declared = self._declares_core_package()
        if isinstance(declared, Err):
            return self._invalid(state, declared.error)
        if not declared.value:
            # A foreign manifest must present as missing so setup does not detect an install.
            state.json.found = False
            state.json.valid = False
            return state

        locked = self._inspect_lock()
        if isinstance(locked, Err):
            return self._invalid(state, locked.error)
        state.lock = locked.value
        return state

    def _parse_manifest(self) -> Ok[dict[str, Any]] | Err:
        try:
            return Ok(self.environment.read_manifest())
        except ManifestError as error:
            return Err(error)

    def _validate_schema(self, manifest: dict[str, Any]) -> Ok[dict[str, Any]] | Err:
        try:
            self.schema.validate(manifest)
        except ManifestError as error:
            return Err(error)
        return Ok(manifest)

    def _declares_core_package(self) -> Ok[bool] | Err:
        try:
            return Ok(self.environment.has_package(CORE_PACKAGE))
        except ManifestError as error:
            return Err(error)

    def _inspect_lock(self) -> Ok[LockState] | Err:
        lock = LockState()
        try:
            locker = self.environment.get_locker()
            if locker.is_locked():
                lock.found = True
                lock.fresh = locker.is_fresh()
        except ManifestError as error:
            return Err(error)
        except Exception as error:  # noqa: BLE001
            logger.debug("Lock inspection failed", exc_info=True)
            return Err(LockError(str(error)))
        return Ok(lock)

    def _invalid(self, state: ComposerState, error: ManifestError) -> ComposerState:
        logger.info(
            "Manifest %s failed %s check: %s",
            self.environment.json_file,
            error.kind,
            error,
        )
        state.json.valid = False
        state.json.error = self.translator.trans("boot.composer.invalid", exception=str(error))
        return state
