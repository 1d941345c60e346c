"""
GTSS Archive I/O (Imperative Shell)

Packages the four rendered GTSS documents into a ZIP archive or a folder
of standalone ``.txt`` files, and reads such archives back for import.

Writes are atomic: the payload goes to a temporary file next to the
target and is renamed into place only once complete, so a failed export
never leaves a partial archive behind.

ZIP entry timestamps are the export time expressed in the agency's
timezone (UTC when no agency is defined).  Pass ``timestamp`` to make the
archive bytes reproducible.

Package Location: src/gtss/data/archive.py
"""

import io
import logging
import os
import tempfile
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pytz

from ..analysis.serializer import DOCUMENT_KINDS, parse_documents, render_documents
from ..errors import ArchiveImportError, ExportError
from ..schemas import GTSSData, ImportedData
from ..utils.timezone import resolve_pytz

log = logging.getLogger(__name__)

ARCHIVE_FILENAME = "gtss-export.zip"

DOCUMENT_FILENAMES: Dict[str, str] = {
    "agency": "agency.txt",
    "signals": "signals.txt",
    "phases": "phases.txt",
    "detectors": "detectors.txt",
}

# File-name fragment -> document kind, checked in this order.
_KIND_HINTS: Tuple[Tuple[str, str], ...] = (
    ("agency", "agency"),
    ("signal", "signals"),
    ("phase", "phases"),
    ("detect", "detectors"),
)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def _entry_timestamp(data: GTSSData, timestamp: Optional[datetime]) -> Tuple[int, ...]:
    """ZIP ``date_time`` tuple for the export moment in the agency's zone."""
    when = timestamp or datetime.now(pytz.UTC)
    if when.tzinfo is None:
        when = pytz.UTC.localize(when)
    tz = resolve_pytz(data.agency.agency_timezone) if data.agency else pytz.UTC
    return when.astimezone(tz).timetuple()[:6]


def build_archive(data: GTSSData, timestamp: Optional[datetime] = None) -> bytes:
    """Render ``data`` and package the four documents as ZIP bytes.

    Args:
        data:      Store snapshot.
        timestamp: Export moment; defaults to now.

    Returns:
        ZIP archive containing ``agency.txt``, ``signals.txt``,
        ``phases.txt`` and ``detectors.txt`` in that order.
    """
    documents = render_documents(data)
    date_time = _entry_timestamp(data, timestamp)

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for kind in DOCUMENT_KINDS:
            info = zipfile.ZipInfo(DOCUMENT_FILENAMES[kind], date_time=date_time)
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, documents[kind].encode("utf-8"))
    return buffer.getvalue()


def _file_mode() -> int:
    """Regular-file mode honouring the process umask (``mkstemp`` uses 0600)."""
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def _atomic_write_many(files: List[Tuple[Path, bytes]]) -> None:
    """Stage every payload in a temporary file, then rename them all into place.

    A failure while staging removes the temporary files and leaves any
    existing targets untouched.
    """
    staged: List[Tuple[str, Path]] = []
    target = None
    try:
        mode = _file_mode()
        for target, payload in files:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".tmp", dir=target.parent
            )
            staged.append((tmp_name, target))
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
            os.chmod(tmp_name, mode)
        for tmp_name, target in staged:
            os.replace(tmp_name, target)
    except OSError as exc:
        for tmp_name, _ in staged:
            Path(tmp_name).unlink(missing_ok=True)
        raise ExportError(f"Could not write {target}: {exc}") from exc


def write_archive(
    data: GTSSData,
    path: Path,
    timestamp: Optional[datetime] = None,
) -> Path:
    """Write the ZIP archive for ``data`` to ``path``.

    Args:
        data:      Store snapshot.
        path:      Destination file; a directory gets
                   :data:`ARCHIVE_FILENAME` appended.
        timestamp: Export moment; defaults to now.

    Returns:
        The path written.

    Raises:
        ExportError: If the archive cannot be assembled or written.  No
            file is left at the destination.
    """
    target = Path(path)
    if target.is_dir():
        target = target / ARCHIVE_FILENAME

    try:
        payload = build_archive(data, timestamp)
    except (ValueError, zipfile.BadZipFile) as exc:
        raise ExportError(f"Could not assemble archive: {exc}") from exc

    _atomic_write_many([(target, payload)])
    log.info("Archive written", extra={"path": str(target), "bytes": len(payload)})
    return target


def write_documents(data: GTSSData, directory: Path) -> List[Path]:
    """Write the four documents as standalone ``.txt`` files.

    Args:
        data:      Store snapshot.
        directory: Destination folder (created if missing).

    Returns:
        Paths written, in document order.

    Raises:
        ExportError: If any file cannot be written.
    """
    directory = Path(directory)
    documents = render_documents(data)
    files = [
        (directory / DOCUMENT_FILENAMES[kind], documents[kind].encode("utf-8"))
        for kind in DOCUMENT_KINDS
    ]
    _atomic_write_many(files)
    written = [target for target, _ in files]
    log.info("Documents written", extra={"directory": str(directory)})
    return written


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def document_kind(filename: str) -> Optional[str]:
    """Guess the document kind from a file name (``'Signals.txt'`` -> ``'signals'``)."""
    lower = Path(filename).name.lower()
    for fragment, kind in _KIND_HINTS:
        if fragment in lower:
            return kind
    return None


def _collect_entries(source: Path) -> List[Tuple[str, bytes]]:
    if source.is_dir():
        return [
            (p.name, p.read_bytes())
            for p in sorted(source.iterdir())
            if p.is_file() and p.suffix.lower() == ".txt"
        ]
    if not source.exists():
        raise ArchiveImportError("file not found", str(source))
    if zipfile.is_zipfile(source):
        try:
            with zipfile.ZipFile(source) as zf:
                return [
                    (Path(name).name, zf.read(name))
                    for name in zf.namelist()
                    if not name.endswith("/") and name.lower().endswith(".txt")
                ]
        except zipfile.BadZipFile as exc:
            raise ArchiveImportError(f"corrupt ZIP archive: {exc}", str(source)) from exc
    if source.suffix.lower() == ".txt":
        return [(source.name, source.read_bytes())]
    raise ArchiveImportError("expected a ZIP archive, a .txt document or a directory", str(source))


def read_sources(paths: Iterable[Path]) -> ImportedData:
    """Read GTSS documents from any mix of ZIP archives, ``.txt`` files and folders.

    Args:
        paths: Sources to read.

    Returns:
        Validated :class:`~gtss.schemas.ImportedData`.

    Raises:
        ArchiveImportError: Unreadable source, unrecognised or duplicated
            document, undecodable text, or a row that fails validation.
    """
    documents: Dict[str, Tuple[str, str]] = {}
    for path in paths:
        for filename, raw in _collect_entries(Path(path)):
            kind = document_kind(filename)
            if kind is None:
                raise ArchiveImportError("unrecognised GTSS document", filename)
            if kind in documents:
                raise ArchiveImportError(
                    f"duplicate {kind} document (already read {documents[kind][0]})", filename
                )
            try:
                text = raw.decode("utf-8-sig")
            except UnicodeDecodeError as exc:
                raise ArchiveImportError(f"not UTF-8 text: {exc}", filename) from exc
            documents[kind] = (filename, text)

    if not documents:
        raise ArchiveImportError("no GTSS documents found")

    log.debug("Documents found", extra={"documents": sorted(documents)})
    return parse_documents(documents)


def read_archive(path: Path) -> ImportedData:
    """Read one ZIP archive, ``.txt`` document or folder of documents."""
    return read_sources([path])
