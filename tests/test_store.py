"""
Record store tests: identity rules, partial updates, cascade delete,
snapshots and import.
"""

import threading

import pytest

from gtss.data.backends import MemoryBackend
from gtss.data.store import RecordStore, next_signal_id
from gtss.errors import GTSSError, NotFoundError, ValidationError
from gtss.schemas import ImportedData, PhaseInsert, SignalInsert


class TestAgency:

    def test_absent_until_saved(self, store):
        assert store.get_agency() is None

    def test_save_fills_default_language(self, store, agency_payload):
        agency = store.save_agency(agency_payload)
        assert agency.agency_language == "en"
        assert agency.id

    def test_second_save_keeps_internal_id(self, store, agency_payload):
        first = store.save_agency(agency_payload)
        second = store.save_agency({**agency_payload, "agency_name": "District 2"})
        assert second.id == first.id
        assert store.get_agency().agency_name == "District 2"

    def test_clear_agency(self, store, agency_payload):
        store.save_agency(agency_payload)
        store.clear_agency()
        assert store.get_agency() is None

    def test_unknown_timezone_rejected(self, store, agency_payload):
        with pytest.raises(ValidationError):
            store.save_agency({**agency_payload, "agency_timezone": "Mars/Olympus"})
        assert store.get_agency() is None


class TestSignalIdentity:

    def test_blank_signal_id_is_generated(self, store, make_signal):
        first = store.save_signal(make_signal())
        second = store.save_signal(make_signal(signal_id=""))
        assert first.signal_id == "SIG_001"
        assert second.signal_id == "SIG_002"

    def test_explicit_signal_id_kept(self, store, make_signal):
        signal = store.save_signal(make_signal(signal_id="2068"))
        assert signal.signal_id == "2068"
        assert store.get_signal("2068") == signal

    def test_duplicate_signal_id_rejected(self, store, make_signal):
        store.save_signal(make_signal(signal_id="2068"))
        with pytest.raises(ValidationError):
            store.save_signal(make_signal(signal_id="2068"))
        assert len(store.get_signals()) == 1

    def test_generated_id_skips_live_collision(self, store, make_signal):
        store.save_signal(make_signal())                  # SIG_001
        store.save_signal(make_signal())                  # SIG_002
        store.delete_signal("SIG_001")
        third = store.save_signal(make_signal())
        assert third.signal_id == "SIG_003"
        assert [s.signal_id for s in store.get_signals()] == ["SIG_002", "SIG_003"]

    def test_internal_ids_are_unique(self, store, make_signal):
        ids = {store.save_signal(make_signal()).id for _ in range(5)}
        assert len(ids) == 5

    def test_next_signal_id(self):
        assert next_signal_id([]) == "SIG_001"
        assert next_signal_id(["SIG_001", "SIG_002"]) == "SIG_003"
        assert next_signal_id(["X", "SIG_002"]) == "SIG_003"

    def test_defaults_filled(self, store, make_signal):
        signal = store.save_signal(make_signal())
        assert signal.has_battery_backup is False
        assert signal.has_cctv is False
        assert signal.cabinet_lat is None

    def test_camel_case_payload_accepted(self, store):
        signal = store.save_signal({
            "agencyId": "ITD-D2",
            "streetName1": "Main St",
            "streetName2": "1st Ave",
            "latitude": 46.7,
            "longitude": -117.0,
            "hasCctv": True,
        })
        assert signal.street_name_1 == "Main St"
        assert signal.has_cctv is True

    def test_model_payload_accepted(self, store, make_signal):
        signal = store.save_signal(SignalInsert(**make_signal()))
        assert signal.signal_id == "SIG_001"

    @pytest.mark.parametrize("field,value", [
        ("latitude", 91),
        ("longitude", -181),
        ("street_name_1", ""),
    ])
    def test_invalid_payload_rejected(self, store, make_signal, field, value):
        with pytest.raises(ValidationError) as excinfo:
            store.save_signal(make_signal(**{field: value}))
        assert excinfo.value.errors
        assert store.get_signals() == []

    def test_unknown_field_rejected(self, store, make_signal):
        with pytest.raises(ValidationError):
            store.save_signal(make_signal(colour="red"))


class TestUpdates:

    def test_partial_merge(self, store, make_signal):
        store.save_signal(make_signal(control_type="Actuated"))
        updated = store.update_signal("SIG_001", {"has_cctv": True})
        assert updated.has_cctv is True
        assert updated.control_type == "Actuated"
        assert updated.street_name_1 == "US-95"

    def test_update_keeps_ids(self, store, make_signal):
        original = store.save_signal(make_signal())
        updated = store.update_signal("SIG_001", {"street_name_2": "Troy Hwy"})
        assert updated.id == original.id
        assert updated.signal_id == "SIG_001"

    def test_same_signal_id_in_patch_is_ignored(self, store, make_signal):
        store.save_signal(make_signal())
        updated = store.update_signal("SIG_001", {"signal_id": "SIG_001", "has_cctv": True})
        assert updated.signal_id == "SIG_001"

    def test_changing_signal_id_rejected(self, store, make_signal):
        store.save_signal(make_signal())
        with pytest.raises(ValidationError):
            store.update_signal("SIG_001", {"signal_id": "SIG_999"})
        assert store.get_signal("SIG_001") is not None

    def test_missing_signal(self, store):
        with pytest.raises(NotFoundError) as excinfo:
            store.update_signal("SIG_404", {"has_cctv": True})
        assert "SIG_404" in str(excinfo.value)

    def test_invalid_patch_leaves_record(self, store, make_signal):
        store.save_signal(make_signal())
        with pytest.raises(ValidationError):
            store.update_signal("SIG_001", {"latitude": 200})
        assert store.get_signal("SIG_001").latitude == pytest.approx(46.7324)

    def test_patch_cannot_null_required_field(self, store, make_signal):
        store.save_signal(make_signal())
        with pytest.raises(ValidationError):
            store.update_signal("SIG_001", {"street_name_1": None})

    def test_update_phase(self, populated_store):
        phase = populated_store.get_phases_by_signal("SIG_001")[0]
        updated = populated_store.update_phase(phase.id, {"num_of_lanes": 3})
        assert updated.num_of_lanes == 3
        assert updated.movement_type == phase.movement_type
        assert updated.id == phase.id

    def test_update_missing_phase_and_detector(self, store):
        with pytest.raises(NotFoundError):
            store.update_phase("nope", {"num_of_lanes": 2})
        with pytest.raises(NotFoundError):
            store.update_detector("nope", {"lane": "1"})

    def test_failed_updates_leave_store_unchanged(self, populated_store):
        before = populated_store.snapshot()

        with pytest.raises(NotFoundError):
            populated_store.update_signal("SIG_404", {"has_cctv": True})
        with pytest.raises(NotFoundError):
            populated_store.update_phase("nope", {"num_of_lanes": 2})
        with pytest.raises(NotFoundError):
            populated_store.update_detector("nope", {"lane": "1"})

        after = populated_store.snapshot()
        assert after == before
        assert (len(after.signals), len(after.phases), len(after.detectors)) == (2, 3, 3)

    def test_update_detector(self, populated_store):
        detector = populated_store.get_detectors_by_signal("SIG_002")[0]
        updated = populated_store.update_detector(detector.id, {"length": 40})
        assert updated.length == 40
        assert updated.purpose == "Stop Bar"


class TestCascadeDelete:

    def test_delete_signal_removes_children(self, populated_store):
        populated_store.delete_signal("SIG_001")

        assert populated_store.get_signal("SIG_001") is None
        assert populated_store.get_phases_by_signal("SIG_001") == []
        assert populated_store.get_detectors_by_signal("SIG_001") == []
        # Other signal untouched
        assert len(populated_store.get_phases_by_signal("SIG_002")) == 1
        assert len(populated_store.get_detectors_by_signal("SIG_002")) == 1

    def test_no_orphans_after_delete(self, populated_store):
        populated_store.delete_signal("SIG_002")
        live = {s.signal_id for s in populated_store.get_signals()}
        assert all(p.signal_id in live for p in populated_store.get_phases())
        assert all(d.signal_id in live for d in populated_store.get_detectors())

    def test_delete_missing_is_noop(self, populated_store):
        before = populated_store.snapshot()
        populated_store.delete_signal("SIG_404")
        populated_store.delete_phase("nope")
        populated_store.delete_detector("nope")
        assert populated_store.snapshot() == before

    def test_cascade_is_one_backend_write(self, make_signal, make_phase, make_detector):
        backend = CountingBackend()
        store = RecordStore(backend)
        store.save_signal(make_signal())
        store.save_phase(make_phase("SIG_001", 2))
        store.save_detector(make_detector("SIG_001", 1))
        backend.calls.clear()

        store.delete_signal("SIG_001")

        assert len(backend.calls) == 1
        assert set(backend.calls[0]) == {"gtss_signals", "gtss_phases", "gtss_detectors"}

    def test_failed_write_leaves_store_unchanged(self, make_signal, make_phase):
        backend = CountingBackend()
        store = RecordStore(backend)
        store.save_signal(make_signal())
        store.save_phase(make_phase("SIG_001", 2))

        backend.fail = True
        with pytest.raises(GTSSError, match="disk full") as excinfo:
            store.delete_signal("SIG_001")
        assert isinstance(excinfo.value.__cause__, OSError)

        assert store.get_signal("SIG_001") is not None
        assert len(store.get_phases()) == 1

    def test_delete_phase_and_detector(self, populated_store):
        phase = populated_store.get_phases()[0]
        detector = populated_store.get_detectors()[0]
        populated_store.delete_phase(phase.id)
        populated_store.delete_detector(detector.id)
        assert populated_store.get_phase(phase.id) is None
        assert populated_store.get_detector(detector.id) is None


class TestSnapshots:

    def test_returned_records_are_copies(self, populated_store):
        signal = populated_store.get_signal("SIG_001")
        signal.street_name_1 = "Changed"
        assert populated_store.get_signal("SIG_001").street_name_1 == "US-95"

    def test_snapshot_contents(self, populated_store):
        data = populated_store.snapshot()
        assert data.agency.agency_id == "ITD-D2"
        assert [s.signal_id for s in data.signals] == ["SIG_001", "SIG_002"]
        assert len(data.phases) == 3
        assert len(data.detectors) == 3

    def test_snapshot_not_affected_by_later_writes(self, populated_store):
        data = populated_store.snapshot()
        populated_store.delete_signal("SIG_001")
        assert len(data.signals) == 2

    def test_clear_all(self, populated_store):
        populated_store.clear_all()
        data = populated_store.snapshot()
        assert data.agency is None
        assert data.signals == data.phases == data.detectors == []

    def test_concurrent_saves_get_distinct_ids(self, store, make_signal):
        def worker():
            for _ in range(10):
                store.save_signal(make_signal())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        ids = [s.signal_id for s in store.get_signals()]
        assert len(ids) == 40
        assert len(set(ids)) == 40


class TestImportData:

    def _imported(self, make_signal, make_phase, **kwargs):
        data = {
            "sources": ["signals", "phases"],
            "signals": [SignalInsert(**make_signal(signal_id="SIG_001", street_name_1="Imported"))],
            "phases": [PhaseInsert(**make_phase("SIG_001", 2, num_of_lanes=2))],
        }
        data.update(kwargs)
        return ImportedData(**data)

    def test_replace_discards_existing(self, populated_store, make_signal, make_phase):
        counts = populated_store.import_data(self._imported(make_signal, make_phase), "replace")

        assert counts == {"agency": 0, "signals": 1, "phases": 1, "detectors": 0}
        data = populated_store.snapshot()
        assert data.agency is None
        assert [s.street_name_1 for s in data.signals] == ["Imported"]
        assert len(data.phases) == 1
        assert data.detectors == []

    def test_merge_upserts_by_business_key(self, populated_store, make_signal, make_phase):
        original = populated_store.get_signal("SIG_001")
        populated_store.import_data(self._imported(make_signal, make_phase), "merge")

        merged = populated_store.get_signal("SIG_001")
        assert merged.id == original.id
        assert merged.street_name_1 == "Imported"
        assert len(populated_store.get_signals()) == 2

        phases = [p for p in populated_store.get_phases_by_signal("SIG_001") if p.phase == 2]
        assert len(phases) == 1
        assert phases[0].num_of_lanes == 2
        assert len(populated_store.get_detectors()) == 3

    def test_merge_keeps_agency_id(self, populated_store, agency_payload):
        agency_pk = populated_store.get_agency().id
        data = ImportedData(sources=["agency"], agency={**agency_payload, "agency_name": "New"})
        populated_store.import_data(data, "merge")
        agency = populated_store.get_agency()
        assert agency.id == agency_pk
        assert agency.agency_name == "New"

    def test_blank_imported_signal_id_generated(self, store, make_signal):
        data = ImportedData(sources=["signals"], signals=[make_signal(), make_signal()])
        store.import_data(data)
        assert [s.signal_id for s in store.get_signals()] == ["SIG_001", "SIG_002"]

    def test_duplicate_import_signal_rejected(self, populated_store, make_signal):
        before = populated_store.snapshot()
        data = ImportedData(
            sources=["signals"],
            signals=[make_signal(signal_id="X"), make_signal(signal_id="X")],
        )
        with pytest.raises(ValidationError):
            populated_store.import_data(data, "merge")
        assert populated_store.snapshot() == before

    def test_unknown_mode(self, store):
        with pytest.raises(ValidationError):
            store.import_data(ImportedData(), "append")


class CountingBackend(MemoryBackend):
    """Memory backend that records each write group and can be told to fail."""

    def __init__(self):
        super().__init__()
        self.calls = []
        self.fail = False

    def write_many(self, items):
        if self.fail:
            raise OSError("disk full")
        self.calls.append(dict(items))
        super().write_many(items)
