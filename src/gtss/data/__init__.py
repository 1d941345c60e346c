"""
GTSS Data Package (Imperative Shell)

This package owns all state and I/O for the GTSS builder.

Modules:
- backends: Key-value persistence (memory, JSON files, SQLite)
- store:    Record store with cascading delete
- archive:  ZIP / text document export and import
"""

from .backends import (
    BACKEND_NAMES,
    JsonFileBackend,
    KeyValueBackend,
    MemoryBackend,
    SqliteBackend,
    create_backend,
)
from .store import RecordStore, open_store
from .archive import (
    ARCHIVE_FILENAME,
    DOCUMENT_FILENAMES,
    build_archive,
    read_archive,
    read_sources,
    write_archive,
    write_documents,
)

__all__ = [
    # Backends
    'BACKEND_NAMES',
    'JsonFileBackend',
    'KeyValueBackend',
    'MemoryBackend',
    'SqliteBackend',
    'create_backend',
    # Store
    'RecordStore',
    'open_store',
    # Archive
    'ARCHIVE_FILENAME',
    'DOCUMENT_FILENAMES',
    'build_archive',
    'read_archive',
    'read_sources',
    'write_archive',
    'write_documents',
]
