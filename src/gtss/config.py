"""
GTSS Workspace Configuration

A workspace is a directory holding ``gtss.json`` plus the persisted
record store.  The file is created by ``gtss init`` and looks like::

    {
        "backend":          "json",
        "db_filename":      "gtss.db",
        "data_dirname":     "data",
        "export_filename":  "gtss-export.zip",
        "default_language": "en"
    }

``backend`` selects where the store lives inside the workspace:
``json`` -> ``<root>/<data_dirname>/gtss_*.json``, ``sqlite`` ->
``<root>/<db_filename>``, ``memory`` -> nothing is persisted.

Package Location: src/gtss/config.py
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional

from .data.archive import ARCHIVE_FILENAME
from .data.backends import BACKEND_NAMES
from .errors import ConfigError

CONFIG_FILENAME = "gtss.json"
WORKSPACE_ENV = "GTSS_WORKSPACE"


@dataclass
class Settings:
    """Settings for one workspace.

    Attributes:
        root:             Workspace directory (not written to the file).
        backend:          ``'json'``, ``'sqlite'`` or ``'memory'``.
        db_filename:      SQLite file name, relative to ``root``.
        data_dirname:     JSON document folder, relative to ``root``.
        export_filename:  Default archive name for ``gtss export``.
        default_language: Language written for an agency saved without one.
    """

    root: Path = field(default_factory=Path.cwd)
    backend: str = "json"
    db_filename: str = "gtss.db"
    data_dirname: str = "data"
    export_filename: str = ARCHIVE_FILENAME
    default_language: str = "en"

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        if self.backend not in BACKEND_NAMES:
            raise ConfigError(
                f"Unknown backend '{self.backend}' "
                f"(expected one of {', '.join(BACKEND_NAMES)})"
            )

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILENAME

    def storage_path(self) -> Optional[Path]:
        """Location handed to :func:`gtss.data.backends.create_backend`."""
        if self.backend == "json":
            return self.root / self.data_dirname
        if self.backend == "sqlite":
            return self.root / self.db_filename
        return None

    def export_path(self) -> Path:
        return self.root / self.export_filename

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("root")
        return data

    def save(self) -> Path:
        """Write ``gtss.json`` into ``root`` (creating the directory)."""
        self.root.mkdir(parents=True, exist_ok=True)
        with self.config_path.open("w") as fh:
            json.dump(self.to_dict(), fh, indent=4)
            fh.write("\n")
        return self.config_path

    @classmethod
    def load(cls, root: Path) -> "Settings":
        """Read ``<root>/gtss.json``.

        Raises:
            ConfigError: If the file is missing, is not a JSON object, or
                contains unknown keys or an unknown backend.
        """
        root = Path(root)
        path = root / CONFIG_FILENAME
        if not path.exists():
            raise ConfigError(f"{CONFIG_FILENAME} not found in {root}")
        try:
            with path.open() as fh:
                raw = json.load(fh)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Failed to parse {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"{path} must contain a JSON object")

        known = {f.name for f in fields(cls)} - {"root"}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigError(f"Unknown settings in {path}: {', '.join(unknown)}")
        return cls(root=root, **raw)


def find_workspace(start: Optional[Path] = None) -> Optional[Path]:
    """Locate the workspace directory.

    ``GTSS_WORKSPACE`` wins when set.  Otherwise walk upward from
    ``start`` (default: the working directory) until a directory containing
    ``gtss.json`` is found.

    Returns:
        Workspace root, or ``None`` when nothing was found.
    """
    override = os.environ.get(WORKSPACE_ENV)
    if override:
        return Path(override).expanduser().resolve()

    current = Path(start or Path.cwd()).resolve()
    while True:
        if (current / CONFIG_FILENAME).is_file():
            return current
        parent = current.parent
        if parent == current:
            return None
        current = parent
