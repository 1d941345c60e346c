"""
GTSS Error Taxonomy

Every failure the package reports to a caller derives from
:class:`GTSSError`, so front ends can catch one type and print a message.

Package Location: src/gtss/errors.py
"""

from typing import Any, Dict, List, Optional


class GTSSError(Exception):
    """Base class for all GTSS record-store and export errors."""


class ValidationError(GTSSError, ValueError):
    """
    Raised when an insert or patch payload is malformed.

    Raised at the store boundary before any state is touched.  ``errors``
    carries pydantic's structured error list (``loc`` / ``msg`` / ``type``)
    when the failure came from schema validation.
    """

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors: List[Dict[str, Any]] = errors or []

    @classmethod
    def from_pydantic(cls, entity: str, exc, model=None) -> "ValidationError":
        """Build from a ``pydantic.ValidationError``.

        When ``model`` is given, camelCase aliases in each error ``loc`` are
        reported under the model's snake_case field names.
        """
        aliases: Dict[str, str] = {}
        if model is not None:
            aliases = {
                info.alias: name
                for name, info in model.model_fields.items()
                if info.alias
            }
        details = []
        for err in exc.errors(include_url=False):
            loc = tuple(aliases.get(p, p) if isinstance(p, str) else p for p in err.get("loc", ()))
            details.append({**err, "loc": loc})
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "<payload>" for err in details)
        return cls(f"Invalid {entity} data: {fields}", details)


class NotFoundError(GTSSError, KeyError):
    """Raised when an update targets a key that matches no record."""

    def __init__(self, entity: str, key: str):
        super().__init__(entity, key)
        self.entity = entity
        self.key = key

    def __str__(self) -> str:
        return f"{self.entity} not found: {self.key}"


class ExportError(GTSSError):
    """Raised when the export archive or documents cannot be produced."""


class ArchiveImportError(GTSSError):
    """Raised when an import archive or document is unreadable or malformed."""

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(f"{filename}: {message}" if filename else message)
        self.filename = filename


class ConfigError(GTSSError):
    """Raised when a workspace ``gtss.json`` is missing, unreadable or invalid."""
