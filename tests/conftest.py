"""
Pytest configuration and fixtures for the GTSS builder tests.

Provides:
- Sample agency / signal / phase / detector payloads
- In-memory stores (empty and populated)
- A backend factory covering memory, JSON-file and SQLite persistence
"""

import pytest

from gtss.data.backends import create_backend
from gtss.data.store import RecordStore


# ============ Payload Fixtures ============

@pytest.fixture
def agency_payload():
    """Provide a complete agency payload."""
    return {
        "agency_id": "ITD-D2",
        "agency_name": "Idaho Transportation Department District 2",
        "agency_url": "https://itd.idaho.gov",
        "agency_timezone": "America/Boise",
        "contact_person": "Signal Shop",
        "contact_email": "signals@itd.idaho.gov",
    }


@pytest.fixture
def make_signal():
    """Build a signal payload; keyword arguments override the defaults."""

    def _make(**overrides):
        payload = {
            "agency_id": "ITD-D2",
            "street_name_1": "US-95",
            "street_name_2": "SH-8",
            "latitude": 46.7324,
            "longitude": -117.0002,
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def make_phase():
    def _make(signal_id, phase, movement_type="Through", **overrides):
        payload = {"signal_id": signal_id, "phase": phase, "movement_type": movement_type}
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def make_detector():
    def _make(signal_id, channel, phase=2, **overrides):
        payload = {
            "signal_id": signal_id,
            "channel": str(channel),
            "phase": phase,
            "purpose": "Stop Bar",
            "technology_type": "Radar",
        }
        payload.update(overrides)
        return payload

    return _make


# ============ Store Fixtures ============

@pytest.fixture
def store():
    """Provide an empty in-memory store."""
    with RecordStore() as s:
        yield s


@pytest.fixture
def populated_store(store, agency_payload, make_signal, make_phase, make_detector):
    """Agency plus SIG_001 (two phases, two detectors) and SIG_002 (one phase, one detector)."""
    store.save_agency(agency_payload)
    store.save_signal(make_signal())
    store.save_signal(make_signal(street_name_1="Main St", street_name_2="1st Ave"))

    store.save_phase(make_phase("SIG_001", 2, compass_bearing=0, posted_speed=45))
    store.save_phase(make_phase("SIG_001", 6, compass_bearing=180, posted_speed=45))
    store.save_phase(make_phase("SIG_002", 4, movement_type="Left Turn"))

    store.save_detector(make_detector("SIG_001", 1, phase=2))
    store.save_detector(make_detector("SIG_001", 2, phase=6))
    store.save_detector(make_detector("SIG_002", 1, phase=4))
    return store


@pytest.fixture(params=["memory", "json", "sqlite"])
def backend_name(request):
    return request.param


@pytest.fixture
def open_backend(backend_name, tmp_path):
    """Return a callable that opens the parametrized backend at a fixed location.

    Calling it twice yields two backends over the same storage, so tests
    can check what survives a reopen.  The memory backend has no storage,
    so it is shared between calls instead.
    """
    locations = {
        "memory": None,
        "json": tmp_path / "data",
        "sqlite": tmp_path / "gtss.db",
    }
    opened = []

    def _open():
        if backend_name == "memory" and opened:
            return opened[0]
        backend = create_backend(backend_name, locations[backend_name])
        opened.append(backend)
        return backend

    yield _open
    for backend in opened:
        backend.close()
