"""
GTSS Document Serializer (Functional Core)

Pure transformations between a store snapshot and the four GTSS text
documents (``agency``, ``signals``, ``phases``, ``detectors``).  No file or
archive I/O happens here; see ``src/gtss/data/archive.py`` for that.

Rendering rules:
    - Every document starts with a fixed header line; rows follow in the
      same column order.  An empty collection (or an absent agency) still
      yields the header line.
    - Missing values are empty fields, booleans are ``true`` / ``false``,
      whole-number floats drop their ``.0``.
    - Quoting is RFC-4180 minimal quoting (only values containing the
      delimiter, a quote or a line break are quoted).
    - Phase ``movement_type`` is transcoded through
      :data:`~gtss.analysis.encoding.MOVEMENT_CODES`; phase rows are sorted
      by ``signal_id`` then numeric ``phase``.  Signal and detector rows keep
      collection order.

Package Location: src/gtss/analysis/serializer.py
"""

from __future__ import annotations

import io
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import ArchiveImportError, ValidationError
from ..schemas import (
    AgencyInsert,
    DetectorInsert,
    GTSSData,
    ImportedData,
    PhaseInsert,
    SignalInsert,
)
from .encoding import decode_movement, encode_movement

# (column header, record field) pairs, in emission order.
ColumnSpec = Sequence[Tuple[str, str]]

AGENCY_COLUMNS: ColumnSpec = (
    ("agency_id", "agency_id"),
    ("agency_name", "agency_name"),
    ("agency_url", "agency_url"),
    ("agency_timezone", "agency_timezone"),
    ("agency_lang", "agency_language"),
    ("contact_person", "contact_person"),
    ("contact_email", "contact_email"),
    ("agency_lat", "agency_lat"),
    ("agency_lon", "agency_lon"),
)

SIGNAL_COLUMNS: ColumnSpec = (
    ("signal_id", "signal_id"),
    ("agency_id", "agency_id"),
    ("street_name_1", "street_name_1"),
    ("street_name_2", "street_name_2"),
    ("cnt_lat", "latitude"),
    ("cnt_lon", "longitude"),
    ("control_type", "control_type"),
    ("cabinet_type", "cabinet_type"),
    ("cabinet_lat", "cabinet_lat"),
    ("cabinet_lon", "cabinet_lon"),
    ("has_battery_backup", "has_battery_backup"),
    ("has_cctv", "has_cctv"),
)

PHASE_COLUMNS: ColumnSpec = (
    ("signal_id", "signal_id"),
    ("phase", "phase"),
    ("movement_type", "movement_type"),
    ("num_of_lanes", "num_of_lanes"),
    ("compass_bearing", "compass_bearing"),
    ("posted_speed_limit", "posted_speed"),
    ("is_overlap", "is_overlap"),
    ("is_pedestrian", "is_pedestrian"),
    ("channel_output", "channel_output"),
    ("vehicle_detection_ids", "vehicle_detection_ids"),
    ("ped_audible_enabled", "ped_audible_enabled"),
)

DETECTOR_COLUMNS: ColumnSpec = (
    ("signal_id", "signal_id"),
    ("detector_channel", "channel"),
    ("phase", "phase"),
    ("description", "description"),
    ("purpose", "purpose"),
    ("vehicle_type", "vehicle_type"),
    ("lane", "lane"),
    ("det_technology_type", "technology_type"),
    ("length", "length"),
    ("stopbar_setback", "stopbar_setback_dist"),
)

DOCUMENT_COLUMNS: Dict[str, ColumnSpec] = {
    "agency": AGENCY_COLUMNS,
    "signals": SIGNAL_COLUMNS,
    "phases": PHASE_COLUMNS,
    "detectors": DETECTOR_COLUMNS,
}

DOCUMENT_KINDS: Tuple[str, ...] = tuple(DOCUMENT_COLUMNS)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def format_value(value: Any) -> str:
    """Render one cell.  ``None`` becomes an empty field."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def records_frame(
    records: Iterable[BaseModel],
    columns: ColumnSpec,
    transforms: Optional[Mapping[str, Any]] = None,
) -> pd.DataFrame:
    """Build a string-typed DataFrame for one document.

    Args:
        records:    Records in emission order.
        columns:    ``(header, field)`` pairs.
        transforms: Optional ``{field: callable}`` applied to raw values
                    before formatting.

    Returns:
        DataFrame whose columns are the headers and whose cells are
        already-formatted strings.
    """
    transforms = transforms or {}
    headers = [header for header, _ in columns]
    rows: List[List[str]] = []
    for record in records:
        row = []
        for _, field in columns:
            value = getattr(record, field)
            if field in transforms:
                value = transforms[field](value)
            row.append(format_value(value))
        rows.append(row)
    return pd.DataFrame(rows, columns=headers, dtype=object)


def frame_to_text(frame: pd.DataFrame) -> str:
    """Serialize a document frame to CSV text with a trailing newline."""
    return frame.to_csv(index=False, lineterminator="\n")


def agency_frame(data: GTSSData) -> pd.DataFrame:
    records = [data.agency] if data.agency is not None else []
    return records_frame(records, AGENCY_COLUMNS)


def signals_frame(data: GTSSData) -> pd.DataFrame:
    return records_frame(data.signals, SIGNAL_COLUMNS)


def phases_frame(data: GTSSData) -> pd.DataFrame:
    ordered = sorted(data.phases, key=lambda p: (p.signal_id, p.phase))
    return records_frame(
        ordered, PHASE_COLUMNS, transforms={"movement_type": encode_movement}
    )


def detectors_frame(data: GTSSData) -> pd.DataFrame:
    return records_frame(data.detectors, DETECTOR_COLUMNS)


def render_documents(data: GTSSData) -> Dict[str, str]:
    """Render all four GTSS documents from a store snapshot.

    Args:
        data: Consistent snapshot (see ``RecordStore.snapshot``).

    Returns:
        ``{kind: text}`` for ``agency``, ``signals``, ``phases`` and
        ``detectors``, in that order.
    """
    return {
        "agency": frame_to_text(agency_frame(data)),
        "signals": frame_to_text(signals_frame(data)),
        "phases": frame_to_text(phases_frame(data)),
        "detectors": frame_to_text(detectors_frame(data)),
    }


# ---------------------------------------------------------------------------
# Parsing (import)
# ---------------------------------------------------------------------------

_INSERT_MODELS = {
    "agency": AgencyInsert,
    "signals": SignalInsert,
    "phases": PhaseInsert,
    "detectors": DetectorInsert,
}


def parse_document(kind: str, text: str, filename: Optional[str] = None) -> List[Dict[str, Any]]:
    """Parse one GTSS document back into field-name dicts.

    Empty cells are dropped so that insert defaults apply, and phase
    movement codes are decoded back to their labels.  Columns that are not
    part of the document's contract are ignored.

    Args:
        kind:     One of :data:`DOCUMENT_KINDS`.
        text:     Document text (header line first).
        filename: Name used in error messages.

    Returns:
        One dict per data row, keyed by record field name.

    Raises:
        ArchiveImportError: If the text is empty or has none of the
            expected columns.
    """
    columns = DOCUMENT_COLUMNS[kind]
    filename = filename or f"{kind}.txt"
    try:
        frame = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError:
        raise ArchiveImportError("document is empty", filename)
    except pd.errors.ParserError as exc:
        raise ArchiveImportError(f"could not parse CSV: {exc}", filename)

    frame.columns = [str(c).strip() for c in frame.columns]
    present = [(header, field) for header, field in columns if header in frame.columns]
    if not present:
        expected = ", ".join(header for header, _ in columns)
        raise ArchiveImportError(f"no recognised columns (expected {expected})", filename)

    rows: List[Dict[str, Any]] = []
    for values in frame.to_dict(orient="records"):
        row: Dict[str, Any] = {}
        for header, field in present:
            cell = values[header].strip()
            if cell:
                row[field] = cell
        if kind == "phases" and "movement_type" in row:
            row["movement_type"] = decode_movement(row["movement_type"])
        rows.append(row)
    return rows


def parse_documents(documents: Mapping[str, Tuple[str, str]]) -> ImportedData:
    """Validate parsed documents into insert payloads.

    Args:
        documents: ``{kind: (filename, text)}``; kinds that are missing stay
                   ``None`` on the result.

    Returns:
        ImportedData with validated insert payloads.

    Raises:
        ArchiveImportError: For the first row that fails validation, naming
            the file and the 1-based data row.
    """
    parsed: Dict[str, Any] = {"sources": []}
    for kind in DOCUMENT_KINDS:
        if kind not in documents:
            continue
        filename, text = documents[kind]
        parsed["sources"].append(kind)
        model = _INSERT_MODELS[kind]
        payloads = []
        for index, row in enumerate(parse_document(kind, text, filename), start=1):
            try:
                payloads.append(model.model_validate(row))
            except PydanticValidationError as exc:
                details = ValidationError.from_pydantic(kind, exc, model).errors
                fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in details)
                raise ArchiveImportError(f"row {index}: invalid {fields}", filename) from exc
        if kind == "agency":
            if len(payloads) > 1:
                raise ArchiveImportError("more than one agency row", filename)
            parsed[kind] = payloads[0] if payloads else None
        else:
            parsed[kind] = payloads
    return ImportedData(**parsed)
