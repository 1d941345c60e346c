"""
Movement-Type Encoding (Functional Core)

Closed dictionary mapping the human-readable movement labels entered on
a phase to the short codes written in ``phases.txt``.

Package Location: src/gtss/analysis/encoding.py
"""

from typing import Dict, Optional

MOVEMENT_CODES: Dict[str, str] = {
    "Through": "T",
    "Left Turn": "L",
    "Left Through Shared": "LT",
    "Permissive Phase": "TL",
    "Flashing Yellow Arrow": "FYA",
    "U-Turn": "U",
    "Right Turn": "R",
    "Through-Right": "TR",
    "Pedestrian": "PED",
}

MOVEMENT_LABELS: Dict[str, str] = {code: label for label, code in MOVEMENT_CODES.items()}

# Labels in the order the phase editor offers them.
MOVEMENT_TYPES = tuple(MOVEMENT_CODES)


def encode_movement(movement_type: Optional[str]) -> Optional[str]:
    """Return the export code for a movement label.

    Labels outside the dictionary are returned unchanged.
    """
    if movement_type is None:
        return None
    return MOVEMENT_CODES.get(movement_type, movement_type)


def decode_movement(code: Optional[str]) -> Optional[str]:
    """Inverse of :func:`encode_movement`; unknown codes pass through."""
    if code is None:
        return None
    return MOVEMENT_LABELS.get(code, code)
