"""Manifest validation against the package manager JSON schema."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from jsonschema import exceptions as jsonschema_exceptions
from jsonschema.validators import validator_for

from contao_manager.errors import SchemaValidationError

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent / "resources" / "composer-schema.json"


class ManifestSchema:
    """Validate decoded manifests; top-level required keys are not enforced."""

    def __init__(self, schema_path: Path | None = None) -> None:
        self.schema_path = schema_path or DEFAULT_SCHEMA_PATH

    def validate(self, manifest: Any) -> None:
        """Raise SchemaValidationError describing the most relevant violation."""

        validator = _load_validator(str(self.schema_path))
        error = jsonschema_exceptions.best_match(validator.iter_errors(manifest))
        if error is None:
            return
        raise SchemaValidationError(_format_error(error))


@lru_cache(maxsize=4)
def _load_validator(schema_path: str) -> Any:
    schema = json.loads(Path(schema_path).read_text("utf-8"))
    if not isinstance(schema, dict):
        raise TypeError(f"Expected JSON object in {schema_path}")
    schema = {**schema, "required": []}
    validator_cls = validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _format_error(error: jsonschema_exceptions.ValidationError) -> str:
    location = ".".join(str(part) for part in error.absolute_path)
    if location:
        return f"{location} : {error.message}"
    return error.message
