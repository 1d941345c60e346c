"""
Phase Duplication Helpers (Functional Core)

NEMA dual-ring numbering helpers used when an operator copies a phase to
its companion left turn or to the opposing approach.

Ring layout assumed (standard eight-phase quad)::

    Ring 1:  1  2 | 3  4
    Ring 2:  5  6 | 7  8

Package Location: src/gtss/analysis/phases.py
"""

from typing import Dict, Optional

from ..errors import ValidationError
from ..schemas import PhaseInsert

# Through phase -> the left turn that opposes it.
_LEFT_TURN_FOR_THROUGH: Dict[int, int] = {2: 5, 4: 7, 6: 1, 8: 3}


def left_turn_phase_number(phase_number: int) -> Optional[int]:
    """Return the left-turn phase paired with through phase 2, 4, 6 or 8."""
    return _LEFT_TURN_FOR_THROUGH.get(phase_number)


def opposite_phase_number(phase_number: int) -> Optional[int]:
    """Return the phase serving the opposing approach, for phases 1..8.

    1<->5, 2<->6, 3<->7, 4<->8.
    """
    if phase_number < 1 or phase_number > 8:
        return None
    return ((phase_number + 3) % 8) + 1


def derive_left_turn(source: PhaseInsert) -> PhaseInsert:
    """Build the left-turn phase that accompanies a through phase.

    Bearing and posted speed carry over; lanes reset to one and the
    pedestrian flag is cleared.

    Raises:
        ValidationError: If ``source`` is not a Through movement on an
            even-numbered phase 2-8.
    """
    if source.movement_type != "Through":
        raise ValidationError("Duplicate to left turn only works for Through movements")
    target = left_turn_phase_number(source.phase)
    if target is None:
        raise ValidationError("Duplicate to left turn only works for phases 2, 4, 6, or 8")

    data = source.model_dump(exclude={"id"})
    data.update(
        phase=target,
        movement_type="Left Turn",
        is_pedestrian=False,
        num_of_lanes=1,
    )
    return PhaseInsert.model_validate(data)


def derive_opposite(source: PhaseInsert) -> PhaseInsert:
    """Copy a phase onto the opposing approach, keeping every other field.

    Raises:
        ValidationError: If ``source.phase`` is outside 1..8.
    """
    target = opposite_phase_number(source.phase)
    if target is None:
        raise ValidationError("Duplicate to opposite approach only works for phases 1 through 8")
    data = source.model_dump(exclude={"id"})
    data["phase"] = target
    return PhaseInsert.model_validate(data)
