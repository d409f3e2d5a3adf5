"""
Registry Validators
~~~~~~~~~~~~~~~~~~~

Checks run on a mutated or rolled-back registry before it is written.
Whether a failure blocks the write or only warns is the caller's
decision (``validation.mandatory``).
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft202012Validator

from plyra_registry.exceptions import ConfigError

__all__ = [
    "ValidationReport",
    "BaseValidator",
    "StructureValidator",
    "JsonSchemaValidator",
    "default_validator",
]

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    """Outcome of validating a registry document."""

    valid: bool = True
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


class BaseValidator(ABC):
    """Validates a registry document."""

    @abstractmethod
    def validate(self, document: Any) -> ValidationReport:
        """Return a report; never raises for an invalid document."""
        ...


class StructureValidator(BaseValidator):
    """
    Minimal structural check of the registry shape.

    The document must be an object whose ``components`` is a list of
    objects with unique non-empty ``name`` fields; ``tokens``, when
    present, must be an object.
    """

    def validate(self, document: Any) -> ValidationReport:
        errors: list[str] = []
        if not isinstance(document, dict):
            return ValidationReport(valid=False, errors=["Registry must be a JSON object"])

        components = document.get("components", [])
        if not isinstance(components, list):
            errors.append("'components' must be an array")
            components = []

        seen: set[str] = set()
        for index, component in enumerate(components):
            if not isinstance(component, dict):
                errors.append(f"components[{index}] must be an object")
                continue
            name = component.get("name")
            if not isinstance(name, str) or not name:
                errors.append(f"components[{index}] is missing a name")
                continue
            if name in seen:
                errors.append(f"Duplicate component name: {name}")
            seen.add(name)

        if "tokens" in document and not isinstance(document["tokens"], dict):
            errors.append("'tokens' must be an object")

        return ValidationReport(valid=not errors, errors=errors)


class JsonSchemaValidator(BaseValidator):
    """Validates against a JSON Schema (draft 2020-12)."""

    def __init__(
        self,
        schema: dict[str, Any] | None = None,
        schema_path: str | None = None,
    ) -> None:
        if schema is None:
            if schema_path is None:
                raise ValueError("JsonSchemaValidator needs a schema or schema_path")
            try:
                with open(schema_path, encoding="utf-8") as f:
                    schema = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                raise ConfigError(f"Cannot load registry schema {schema_path}: {exc}") from exc
        Draft202012Validator.check_schema(schema)
        self._validator = Draft202012Validator(schema)

    def validate(self, document: Any) -> ValidationReport:
        errors = [
            f"{'/'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
            for err in sorted(self._validator.iter_errors(document), key=str)
        ]
        return ValidationReport(valid=not errors, errors=errors)


def default_validator(schema_path: str | None = None) -> BaseValidator:
    """JSON Schema validation when a schema is configured, else structural."""
    if schema_path:
        return JsonSchemaValidator(schema_path=schema_path)
    return StructureValidator()
