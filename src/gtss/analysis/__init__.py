"""
GTSS Analysis Package (Functional Core)

Pure transformations with no I/O.  Functions accept store snapshots or
record lists and return text, DataFrames or new payloads.

Modules:
- encoding:     Movement-type dictionary
- serializer:   Rendering and parsing of the four GTSS documents
- completeness: Per-signal completeness scores and export checks
- phases:       Left-turn / opposite-approach phase helpers
"""

from .encoding import (
    MOVEMENT_CODES,
    MOVEMENT_TYPES,
    decode_movement,
    encode_movement,
)

from .serializer import (
    DOCUMENT_COLUMNS,
    DOCUMENT_KINDS,
    parse_document,
    parse_documents,
    render_documents,
)

from .completeness import (
    evaluate_completeness,
    export_issues,
    has_errors,
)

from .phases import (
    derive_left_turn,
    derive_opposite,
    left_turn_phase_number,
    opposite_phase_number,
)

__all__ = [
    # Encoding
    'MOVEMENT_CODES',
    'MOVEMENT_TYPES',
    'decode_movement',
    'encode_movement',
    # Serializer
    'DOCUMENT_COLUMNS',
    'DOCUMENT_KINDS',
    'parse_document',
    'parse_documents',
    'render_documents',
    # Completeness
    'evaluate_completeness',
    'export_issues',
    'has_errors',
    # Phases
    'derive_left_turn',
    'derive_opposite',
    'left_turn_phase_number',
    'opposite_phase_number',
]
