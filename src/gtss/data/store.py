"""
GTSS Record Store (Imperative Shell)

Sole owner of the four GTSS collections: one nullable Agency and keyed
collections of Signals, Phases and Detectors.  Enforces the identity and
referential rules and persists every change through a
:class:`~gtss.data.backends.KeyValueBackend`.

Rules enforced here:
    - Agency is a singleton; saving again keeps its internal ``id``.
    - ``signal_id`` is unique among live signals.  A blank ``signal_id``
      on save becomes ``SIG_{count + 1:03d}`` (bumped past any live
      collision).
    - Updates merge only the supplied fields and never change ``id`` or a
      signal's ``signal_id``.
    - Deleting a signal removes every phase and detector carrying its
      ``signal_id`` in the same backend write.

Every mutating operation, and ``snapshot()``, runs under one re-entrant
lock held by the instance.  State is swapped in memory only after the
backend write succeeds, so a failed write leaves the store unchanged.

Package Location: src/gtss/data/store.py
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import GTSSError, NotFoundError, ValidationError
from ..schemas import (
    Agency,
    AgencyInsert,
    Detector,
    DetectorInsert,
    DetectorPatch,
    GTSSData,
    ImportedData,
    Phase,
    PhaseInsert,
    PhasePatch,
    Signal,
    SignalInsert,
    SignalPatch,
    merge_patch,
    parse_payload,
)
from .backends import KeyValueBackend, MemoryBackend, create_backend

if TYPE_CHECKING:
    from ..config import Settings

log = logging.getLogger(__name__)

Payload = Union[BaseModel, Mapping[str, Any]]

# Fixed namespace keys, shared with the browser-storage layout.
AGENCY_KEY = "gtss_agency"
SIGNALS_KEY = "gtss_signals"
PHASES_KEY = "gtss_phases"
DETECTORS_KEY = "gtss_detectors"

_NAMESPACES: Dict[str, Tuple[str, Type[BaseModel]]] = {
    "agency": (AGENCY_KEY, Agency),
    "signals": (SIGNALS_KEY, Signal),
    "phases": (PHASES_KEY, Phase),
    "detectors": (DETECTORS_KEY, Detector),
}

IMPORT_MODES = ("replace", "merge")


def _new_id() -> str:
    return uuid.uuid4().hex


def next_signal_id(existing: List[str]) -> str:
    """Return ``SIG_NNN`` for ``len(existing) + 1``, bumped past collisions."""
    taken = set(existing)
    number = len(existing) + 1
    while f"SIG_{number:03d}" in taken:
        number += 1
    return f"SIG_{number:03d}"


class RecordStore:
    """In-process record store with pluggable persistence.

    Args:
        backend: Where collection snapshots are persisted.  Defaults to a
                 fresh :class:`MemoryBackend`.

    Example::

        store = RecordStore()
        sig = store.save_signal({
            "agency_id": "ITD", "street_name_1": "Main St",
            "street_name_2": "1st Ave", "latitude": 46.73, "longitude": -117.0,
        })
        store.save_phase({"signal_id": sig.signal_id, "phase": 2,
                          "movement_type": "Through"})
        store.delete_signal(sig.signal_id)   # phase goes with it
    """

    def __init__(self, backend: Optional[KeyValueBackend] = None) -> None:
        self.backend = backend if backend is not None else MemoryBackend()
        self._lock = threading.RLock()
        self._agency: Optional[Agency] = None
        self._signals: Dict[str, Signal] = {}
        self._phases: Dict[str, Phase] = {}
        self._detectors: Dict[str, Detector] = {}
        self._load()

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        self.backend.close()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        """Populate the collections from the backend."""
        for name, (key, model) in _NAMESPACES.items():
            raw = self.backend.read(key)
            if raw is None:
                continue
            try:
                decoded = json.loads(raw)
                if name == "agency":
                    self._agency = model.model_validate(decoded) if decoded else None
                else:
                    records = [model.model_validate(item) for item in decoded]
                    setattr(self, f"_{name}", {r.id: r for r in records})
            except (ValueError, TypeError, PydanticValidationError) as exc:
                raise GTSSError(f"Stored document '{key}' is corrupt: {exc}") from exc

    def _commit(self, **changes: Any) -> None:
        """Persist the given collections in one backend write, then swap them in.

        Keyword names are ``agency``, ``signals``, ``phases``, ``detectors``.
        """
        items: Dict[str, Optional[str]] = {}
        for name, value in changes.items():
            key, _ = _NAMESPACES[name]
            if name == "agency":
                items[key] = None if value is None else value.model_dump_json()
            else:
                items[key] = json.dumps([r.model_dump(mode="json") for r in value.values()])
        try:
            self.backend.write_many(items)
        except (OSError, sqlite3.Error) as exc:
            raise GTSSError(f"Storage write failed: {exc}") from exc
        for name, value in changes.items():
            setattr(self, f"_{name}", value)

    # ------------------------------------------------------------------
    # Agency
    # ------------------------------------------------------------------

    def get_agency(self) -> Optional[Agency]:
        with self._lock:
            return self._agency.model_copy() if self._agency else None

    def save_agency(self, payload: Payload) -> Agency:
        """Create the agency, or overwrite it while keeping its internal id."""
        data = parse_payload(AgencyInsert, payload, "agency")
        with self._lock:
            agency_pk = self._agency.id if self._agency else _new_id()
            agency = Agency.model_validate({**data.model_dump(exclude={"id"}), "id": agency_pk})
            self._commit(agency=agency)
        log.info("Agency saved", extra={"entity": "agency", "key": agency.agency_id})
        return agency.model_copy()

    def clear_agency(self) -> None:
        with self._lock:
            self._commit(agency=None)

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def get_signals(self) -> List[Signal]:
        with self._lock:
            return [s.model_copy() for s in self._signals.values()]

    def _find_signal(self, signal_id: str) -> Optional[Signal]:
        for signal in self._signals.values():
            if signal.signal_id == signal_id:
                return signal
        return None

    def get_signal(self, signal_id: str) -> Optional[Signal]:
        with self._lock:
            signal = self._find_signal(signal_id)
            return signal.model_copy() if signal else None

    def save_signal(self, payload: Payload) -> Signal:
        """Insert a signal, generating ``signal_id`` when it is blank.

        Raises:
            ValidationError: Malformed payload, or an explicit
                ``signal_id`` that is already in use.
        """
        data = parse_payload(SignalInsert, payload, "signal")
        with self._lock:
            live_ids = [s.signal_id for s in self._signals.values()]
            signal_id = data.signal_id
            if not signal_id:
                signal_id = next_signal_id(live_ids)
            elif signal_id in live_ids:
                raise ValidationError(f"Signal ID already exists: {signal_id}")

            signal = Signal.model_validate({
                **data.model_dump(exclude={"id"}),
                "id": _new_id(),
                "signal_id": signal_id,
            })
            signals = dict(self._signals)
            signals[signal.id] = signal
            self._commit(signals=signals)
        log.info("Signal saved", extra={"entity": "signal", "key": signal_id})
        return signal.model_copy()

    def update_signal(self, signal_id: str, patch: Payload) -> Signal:
        """Merge ``patch`` into the signal addressed by ``signal_id``.

        Raises:
            ValidationError: Malformed patch, or an attempt to change
                ``signal_id``.
            NotFoundError: No live signal has ``signal_id``.
        """
        changes = parse_payload(SignalPatch, patch, "signal")
        with self._lock:
            existing = self._find_signal(signal_id)
            if existing is None:
                raise NotFoundError("Signal", signal_id)
            if (
                "signal_id" in changes.model_fields_set
                and changes.signal_id not in (None, existing.signal_id)
            ):
                raise ValidationError("Signal ID cannot be changed by an update")

            updated = merge_patch(existing, changes, "signal", frozen=("id", "signal_id"))
            signals = dict(self._signals)
            signals[existing.id] = updated
            self._commit(signals=signals)
        log.info("Signal updated", extra={"entity": "signal", "key": signal_id})
        return updated.model_copy()

    def delete_signal(self, signal_id: str) -> None:
        """Delete a signal and every phase and detector that references it.

        No-op when the signal does not exist.
        """
        with self._lock:
            existing = self._find_signal(signal_id)
            if existing is None:
                return
            signals = {k: v for k, v in self._signals.items() if k != existing.id}
            phases = {k: v for k, v in self._phases.items() if v.signal_id != signal_id}
            detectors = {k: v for k, v in self._detectors.items() if v.signal_id != signal_id}
            removed_phases = len(self._phases) - len(phases)
            removed_detectors = len(self._detectors) - len(detectors)
            self._commit(signals=signals, phases=phases, detectors=detectors)
        log.info(
            f"Signal {signal_id} deleted with {removed_phases} phases "
            f"and {removed_detectors} detectors",
            extra={"entity": "signal", "key": signal_id},
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def get_phases(self) -> List[Phase]:
        with self._lock:
            return [p.model_copy() for p in self._phases.values()]

    def get_phase(self, phase_pk: str) -> Optional[Phase]:
        with self._lock:
            phase = self._phases.get(phase_pk)
            return phase.model_copy() if phase else None

    def get_phases_by_signal(self, signal_id: str) -> List[Phase]:
        with self._lock:
            return [p.model_copy() for p in self._phases.values() if p.signal_id == signal_id]

    def save_phase(self, payload: Payload) -> Phase:
        data = parse_payload(PhaseInsert, payload, "phase")
        with self._lock:
            phase = Phase.model_validate({**data.model_dump(exclude={"id"}), "id": _new_id()})
            phases = dict(self._phases)
            phases[phase.id] = phase
            self._commit(phases=phases)
        log.info("Phase saved", extra={"entity": "phase", "key": phase.id})
        return phase.model_copy()

    def update_phase(self, phase_pk: str, patch: Payload) -> Phase:
        changes = parse_payload(PhasePatch, patch, "phase")
        with self._lock:
            existing = self._phases.get(phase_pk)
            if existing is None:
                raise NotFoundError("Phase", phase_pk)
            updated = merge_patch(existing, changes, "phase")
            phases = dict(self._phases)
            phases[phase_pk] = updated
            self._commit(phases=phases)
        log.info("Phase updated", extra={"entity": "phase", "key": phase_pk})
        return updated.model_copy()

    def delete_phase(self, phase_pk: str) -> None:
        with self._lock:
            if phase_pk not in self._phases:
                return
            phases = {k: v for k, v in self._phases.items() if k != phase_pk}
            self._commit(phases=phases)
        log.info("Phase deleted", extra={"entity": "phase", "key": phase_pk})

    # ------------------------------------------------------------------
    # Detectors
    # ------------------------------------------------------------------

    def get_detectors(self) -> List[Detector]:
        with self._lock:
            return [d.model_copy() for d in self._detectors.values()]

    def get_detector(self, detector_pk: str) -> Optional[Detector]:
        with self._lock:
            detector = self._detectors.get(detector_pk)
            return detector.model_copy() if detector else None

    def get_detectors_by_signal(self, signal_id: str) -> List[Detector]:
        with self._lock:
            return [d.model_copy() for d in self._detectors.values() if d.signal_id == signal_id]

    def save_detector(self, payload: Payload) -> Detector:
        data = parse_payload(DetectorInsert, payload, "detector")
        with self._lock:
            detector = Detector.model_validate({**data.model_dump(exclude={"id"}), "id": _new_id()})
            detectors = dict(self._detectors)
            detectors[detector.id] = detector
            self._commit(detectors=detectors)
        log.info("Detector saved", extra={"entity": "detector", "key": detector.id})
        return detector.model_copy()

    def update_detector(self, detector_pk: str, patch: Payload) -> Detector:
        changes = parse_payload(DetectorPatch, patch, "detector")
        with self._lock:
            existing = self._detectors.get(detector_pk)
            if existing is None:
                raise NotFoundError("Detector", detector_pk)
            updated = merge_patch(existing, changes, "detector")
            detectors = dict(self._detectors)
            detectors[detector_pk] = updated
            self._commit(detectors=detectors)
        log.info("Detector updated", extra={"entity": "detector", "key": detector_pk})
        return updated.model_copy()

    def delete_detector(self, detector_pk: str) -> None:
        with self._lock:
            if detector_pk not in self._detectors:
                return
            detectors = {k: v for k, v in self._detectors.items() if k != detector_pk}
            self._commit(detectors=detectors)
        log.info("Detector deleted", extra={"entity": "detector", "key": detector_pk})

    # ------------------------------------------------------------------
    # Whole-dataset operations
    # ------------------------------------------------------------------

    def snapshot(self) -> GTSSData:
        """Return a consistent copy of all four collections."""
        with self._lock:
            return GTSSData(
                agency=self._agency.model_copy() if self._agency else None,
                signals=[s.model_copy() for s in self._signals.values()],
                phases=[p.model_copy() for p in self._phases.values()],
                detectors=[d.model_copy() for d in self._detectors.values()],
            )

    def clear_all(self) -> None:
        """Remove the agency and every signal, phase and detector."""
        with self._lock:
            self._commit(agency=None, signals={}, phases={}, detectors={})
        log.info("All records cleared")

    def import_data(self, data: ImportedData, mode: str = "replace") -> Dict[str, int]:
        """Load parsed records into the store as one persisted write.

        ``replace`` discards the current dataset and loads what was
        supplied (collections missing from ``data`` end up empty).
        ``merge`` upserts: signals by ``signal_id``, phases by
        ``(signal_id, phase)``, detectors by ``(signal_id, channel)``;
        a supplied agency overwrites the singleton.

        Args:
            data: Output of :func:`gtss.analysis.serializer.parse_documents`.
            mode: ``'replace'`` or ``'merge'``.

        Returns:
            ``{"agency": 0|1, "signals": n, "phases": n, "detectors": n}``
            counting the records taken from ``data``.

        Raises:
            ValidationError: Unknown mode or duplicate ``signal_id`` in
                ``data``.
        """
        if mode not in IMPORT_MODES:
            raise ValidationError(f"Unknown import mode '{mode}' (expected replace or merge)")

        with self._lock:
            if mode == "replace":
                agency, signals, phases, detectors = None, {}, {}, {}
            else:
                agency = self._agency
                signals = dict(self._signals)
                phases = dict(self._phases)
                detectors = dict(self._detectors)

            if data.agency is not None:
                agency_pk = self._agency.id if self._agency else _new_id()
                agency = Agency.model_validate(
                    {**data.agency.model_dump(exclude={"id"}), "id": agency_pk}
                )

            seen: set = set()
            for item in data.signals or []:
                by_key = {s.signal_id: s for s in signals.values()}
                signal_id = item.signal_id or next_signal_id(list(by_key))
                if signal_id in seen:
                    raise ValidationError(f"Duplicate signal ID in import: {signal_id}")
                seen.add(signal_id)
                current = by_key.get(signal_id)
                record = Signal.model_validate({
                    **item.model_dump(exclude={"id"}),
                    "id": current.id if current else _new_id(),
                    "signal_id": signal_id,
                })
                signals[record.id] = record

            for item in data.phases or []:
                current = next(
                    (p for p in phases.values()
                     if (p.signal_id, p.phase) == (item.signal_id, item.phase)),
                    None,
                )
                record = Phase.model_validate(
                    {**item.model_dump(exclude={"id"}), "id": current.id if current else _new_id()}
                )
                phases[record.id] = record

            for item in data.detectors or []:
                current = next(
                    (d for d in detectors.values()
                     if (d.signal_id, d.channel) == (item.signal_id, item.channel)),
                    None,
                )
                record = Detector.model_validate(
                    {**item.model_dump(exclude={"id"}), "id": current.id if current else _new_id()}
                )
                detectors[record.id] = record

            self._commit(agency=agency, signals=signals, phases=phases, detectors=detectors)

        counts = {
            "agency": 1 if data.agency is not None else 0,
            "signals": len(data.signals or []),
            "phases": len(data.phases or []),
            "detectors": len(data.detectors or []),
        }
        log.info(f"Imported records ({mode})", extra=counts)
        return counts


# ---------------------------------------------------------------------------
# Module-level convenience wrapper
# ---------------------------------------------------------------------------

def open_store(settings: "Settings") -> RecordStore:
    """Build a store for a workspace's configured backend.

    Args:
        settings: Loaded workspace settings.

    Returns:
        RecordStore bound to the backend named in ``settings.backend``.
    """
    backend = create_backend(settings.backend, settings.storage_path())
    return RecordStore(backend)
