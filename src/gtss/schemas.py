"""
GTSS Entity Schemas

Pydantic models for the four GTSS record kinds.  Each kind has three
shapes:

- ``<Kind>Insert``: the payload accepted by ``save`` (a record minus its
  internal ``id``).  Optional fields carry their server-side defaults.
- ``<Kind>``: the stored record (insert fields plus ``id``).
- ``<Kind>Patch``: the payload accepted by ``update``.  Every mutable
  column is optional; only the keys that were actually supplied are merged.

Payload keys may be given in snake_case or in the camelCase used by the
original web front end (``signalId``, ``streetName1``, ``stopbarSetbackDist``).

Package Location: src/gtss/schemas.py
"""

from typing import Annotated, Any, Dict, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError
from .utils.timezone import is_known_timezone

DEFAULT_LANGUAGE = "en"

NonEmptyStr = Annotated[str, Field(min_length=1)]
Latitude = Annotated[float, Field(ge=-90, le=90)]
Longitude = Annotated[float, Field(ge=-180, le=180)]
PhaseNumber = Annotated[int, Field(ge=1)]
LaneCount = Annotated[int, Field(ge=1)]
Bearing = Annotated[int, Field(ge=0, le=359)]
Speed = Annotated[int, Field(ge=0)]
Distance = Annotated[float, Field(ge=0)]

M = TypeVar("M", bound=BaseModel)


class GTSSModel(BaseModel):
    """Shared configuration for every GTSS payload and record."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _blank_strings_to_none(cls, data: Any) -> Any:
        # Form and CSV input report "no value" as an empty string.
        if isinstance(data, Mapping):
            return {
                key: (None if isinstance(value, str) and not value.strip() else value)
                for key, value in data.items()
            }
        return data


# ---------------------------------------------------------------------------
# Agency
# ---------------------------------------------------------------------------

class AgencyInsert(GTSSModel):
    agency_id: NonEmptyStr
    agency_name: NonEmptyStr
    agency_url: Optional[str] = None
    agency_timezone: NonEmptyStr
    agency_language: Optional[str] = DEFAULT_LANGUAGE
    contact_person: Optional[str] = None
    contact_email: Optional[str] = None
    agency_lat: Optional[Latitude] = None
    agency_lon: Optional[Longitude] = None

    @field_validator("agency_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        if not is_known_timezone(value):
            raise ValueError(f"unknown timezone '{value}'")
        return value

    @field_validator("agency_language")
    @classmethod
    def _default_language(cls, value: Optional[str]) -> str:
        return value or DEFAULT_LANGUAGE


class Agency(AgencyInsert):
    id: NonEmptyStr


# ---------------------------------------------------------------------------
# Signal
# ---------------------------------------------------------------------------

class SignalInsert(GTSSModel):
    """Signal payload.  A blank ``signal_id`` is assigned by the store."""

    signal_id: Optional[str] = None
    agency_id: NonEmptyStr
    street_name_1: NonEmptyStr
    street_name_2: NonEmptyStr
    latitude: Latitude
    longitude: Longitude
    control_type: Optional[str] = None
    cabinet_type: Optional[str] = None
    cabinet_lat: Optional[Latitude] = None
    cabinet_lon: Optional[Longitude] = None
    has_battery_backup: bool = False
    has_cctv: bool = False


class Signal(SignalInsert):
    id: NonEmptyStr
    signal_id: NonEmptyStr


class SignalPatch(GTSSModel):
    signal_id: Optional[str] = None
    agency_id: Optional[str] = None
    street_name_1: Optional[str] = None
    street_name_2: Optional[str] = None
    latitude: Optional[Latitude] = None
    longitude: Optional[Longitude] = None
    control_type: Optional[str] = None
    cabinet_type: Optional[str] = None
    cabinet_lat: Optional[Latitude] = None
    cabinet_lon: Optional[Longitude] = None
    has_battery_backup: Optional[bool] = None
    has_cctv: Optional[bool] = None


# ---------------------------------------------------------------------------
# Phase
# ---------------------------------------------------------------------------

def _movement_label(value: Optional[str]) -> Optional[str]:
    """Store export codes ('L', 'PED', ...) as their dictionary label."""
    from .analysis.encoding import decode_movement

    return decode_movement(value)


class PhaseInsert(GTSSModel):
    phase: PhaseNumber
    signal_id: NonEmptyStr
    movement_type: NonEmptyStr
    num_of_lanes: LaneCount = 1
    compass_bearing: Optional[Bearing] = None
    posted_speed: Optional[Speed] = None
    is_overlap: bool = False
    is_pedestrian: bool = False
    channel_output: Optional[str] = None
    vehicle_detection_ids: Optional[str] = None
    ped_audible_enabled: bool = False

    @field_validator("movement_type")
    @classmethod
    def _canonical_movement(cls, value: str) -> str:
        return _movement_label(value)


class Phase(PhaseInsert):
    id: NonEmptyStr


class PhasePatch(GTSSModel):
    phase: Optional[PhaseNumber] = None
    signal_id: Optional[str] = None
    movement_type: Optional[str] = None
    num_of_lanes: Optional[LaneCount] = None
    compass_bearing: Optional[Bearing] = None
    posted_speed: Optional[Speed] = None
    is_overlap: Optional[bool] = None
    is_pedestrian: Optional[bool] = None
    channel_output: Optional[str] = None
    vehicle_detection_ids: Optional[str] = None
    ped_audible_enabled: Optional[bool] = None

    @field_validator("movement_type")
    @classmethod
    def _canonical_movement(cls, value: Optional[str]) -> Optional[str]:
        return _movement_label(value)


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

class DetectorInsert(GTSSModel):
    channel: NonEmptyStr
    signal_id: NonEmptyStr
    phase: PhaseNumber
    description: Optional[str] = None
    purpose: NonEmptyStr
    vehicle_type: Optional[str] = None
    lane: Optional[str] = None
    technology_type: NonEmptyStr
    length: Optional[Distance] = None
    stopbar_setback_dist: Optional[Distance] = None


class Detector(DetectorInsert):
    id: NonEmptyStr


class DetectorPatch(GTSSModel):
    channel: Optional[str] = None
    signal_id: Optional[str] = None
    phase: Optional[PhaseNumber] = None
    description: Optional[str] = None
    purpose: Optional[str] = None
    vehicle_type: Optional[str] = None
    lane: Optional[str] = None
    technology_type: Optional[str] = None
    length: Optional[Distance] = None
    stopbar_setback_dist: Optional[Distance] = None


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------

class GTSSData(BaseModel):
    """Consistent snapshot of the whole store, as handed to the exporter."""

    agency: Optional[Agency] = None
    signals: List[Signal] = Field(default_factory=list)
    phases: List[Phase] = Field(default_factory=list)
    detectors: List[Detector] = Field(default_factory=list)


class ImportedData(BaseModel):
    """Records parsed from an archive; ``None`` means the document was absent."""

    sources: List[str] = Field(default_factory=list)
    agency: Optional[AgencyInsert] = None
    signals: Optional[List[SignalInsert]] = None
    phases: Optional[List[PhaseInsert]] = None
    detectors: Optional[List[DetectorInsert]] = None


# ---------------------------------------------------------------------------
# Boundary helpers
# ---------------------------------------------------------------------------

def parse_payload(
    model: Type[M],
    payload: Union[BaseModel, Mapping[str, Any]],
    entity: str,
) -> M:
    """Validate ``payload`` as ``model``, re-raising as GTSS ``ValidationError``.

    Model instances of another type are converted through the keys that
    were explicitly set on them, so a patch built from a record keeps its
    merge semantics.

    Args:
        model:   Target pydantic model class.
        payload: Mapping or pydantic model instance.
        entity:  Entity label used in the error message.

    Returns:
        Instance of ``model``.

    Raises:
        ValidationError: If the payload does not satisfy the schema.
    """
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    if not isinstance(payload, Mapping):
        raise ValidationError(f"Invalid {entity} data: expected a mapping")
    try:
        return model.model_validate(dict(payload))
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(entity, exc, model) from exc


def merge_patch(record: M, patch: BaseModel, entity: str, frozen: tuple = ("id",)) -> M:
    """Apply the supplied fields of ``patch`` over ``record``.

    Fields absent from the patch keep their current value; fields listed
    in ``frozen`` are never overwritten.  The merged result is validated
    as a whole so a patch cannot null out a required column.

    Args:
        record: Existing stored record.
        patch:  Patch model; only ``model_fields_set`` keys are applied.
        entity: Entity label used in the error message.
        frozen: Field names that an update may not change.

    Returns:
        New record instance of the same type as ``record``.
    """
    changes: Dict[str, Any] = patch.model_dump(exclude_unset=True)
    merged = record.model_dump()
    for name, value in changes.items():
        if name in frozen:
            continue
        merged[name] = value
    try:
        return type(record).model_validate(merged)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(entity, exc, type(record)) from exc
