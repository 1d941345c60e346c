"""
Archive export / import tests.
"""

import io
import os
import tempfile
import zipfile
from datetime import datetime

import pytest
import pytz

from gtss.data.archive import (
    ARCHIVE_FILENAME,
    build_archive,
    document_kind,
    read_archive,
    read_sources,
    write_archive,
    write_documents,
)
from gtss.data.store import RecordStore
from gtss.errors import ArchiveImportError, ExportError
from gtss.schemas import GTSSData

FIXED = pytz.UTC.localize(datetime(2026, 3, 2, 18, 30, 0))


class TestBuildArchive:

    def test_entries_in_order(self, populated_store):
        payload = build_archive(populated_store.snapshot(), FIXED)
        with zipfile.ZipFile(io.BytesIO(payload)) as zf:
            assert zf.namelist() == ["agency.txt", "signals.txt", "phases.txt", "detectors.txt"]
            assert zf.read("signals.txt").decode("utf-8").startswith("signal_id,agency_id,")

    def test_empty_store_still_has_four_entries(self):
        payload = build_archive(GTSSData(), FIXED)
        with zipfile.ZipFile(io.BytesIO(payload)) as zf:
            assert len(zf.namelist()) == 4
            assert zf.read("agency.txt").count(b"\n") == 1

    def test_reproducible_with_fixed_timestamp(self, populated_store):
        data = populated_store.snapshot()
        assert build_archive(data, FIXED) == build_archive(data, FIXED)

    def test_entry_time_in_agency_timezone(self, populated_store):
        payload = build_archive(populated_store.snapshot(), FIXED)
        with zipfile.ZipFile(io.BytesIO(payload)) as zf:
            # 18:30 UTC is 11:30 in Boise (MST, UTC-7) on 2 March.
            assert zf.getinfo("agency.txt").date_time == (2026, 3, 2, 11, 30, 0)

    def test_entry_time_utc_without_agency(self):
        payload = build_archive(GTSSData(), FIXED)
        with zipfile.ZipFile(io.BytesIO(payload)) as zf:
            assert zf.getinfo("phases.txt").date_time == (2026, 3, 2, 18, 30, 0)


class TestWriteArchive:

    def test_writes_file(self, populated_store, tmp_path):
        target = write_archive(populated_store.snapshot(), tmp_path / "out.zip", FIXED)
        assert target == tmp_path / "out.zip"
        assert zipfile.is_zipfile(target)
        assert not list(tmp_path.glob("*.tmp"))

    def test_directory_target_gets_default_name(self, populated_store, tmp_path):
        target = write_archive(populated_store.snapshot(), tmp_path, FIXED)
        assert target == tmp_path / ARCHIVE_FILENAME

    def test_failure_raises_export_error_and_leaves_nothing(self, populated_store, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x")
        target = blocker / "out.zip"

        with pytest.raises(ExportError):
            write_archive(populated_store.snapshot(), target, FIXED)
        assert not target.exists()
        assert sorted(p.name for p in tmp_path.iterdir()) == ["not_a_dir"]

    def test_write_documents(self, populated_store, tmp_path):
        paths = write_documents(populated_store.snapshot(), tmp_path / "export")
        assert [p.name for p in paths] == ["agency.txt", "signals.txt", "phases.txt", "detectors.txt"]
        assert (tmp_path / "export" / "phases.txt").read_text().startswith("signal_id,phase,")

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
    def test_written_files_follow_umask(self, populated_store, tmp_path):
        umask = os.umask(0o022)
        try:
            archive = write_archive(populated_store.snapshot(), tmp_path / "out.zip", FIXED)
            paths = write_documents(populated_store.snapshot(), tmp_path / "export")
        finally:
            os.umask(umask)

        for path in [archive, *paths]:
            assert path.stat().st_mode & 0o777 == 0o644

    def test_failed_document_write_keeps_previous_documents(self, populated_store, tmp_path, monkeypatch):
        old = {name: f"old {name}\n" for name in ("agency.txt", "signals.txt", "phases.txt", "detectors.txt")}
        for name, text in old.items():
            (tmp_path / name).write_text(text)

        real_mkstemp = tempfile.mkstemp
        calls = []

        def mkstemp_failing_on_fourth(*args, **kwargs):
            calls.append(1)
            if len(calls) == 4:
                raise OSError("disk full")
            return real_mkstemp(*args, **kwargs)

        monkeypatch.setattr(tempfile, "mkstemp", mkstemp_failing_on_fourth)
        with pytest.raises(ExportError, match="disk full"):
            write_documents(populated_store.snapshot(), tmp_path)

        assert {p.name: p.read_text() for p in tmp_path.iterdir()} == old


class TestReadArchive:

    @pytest.mark.parametrize("filename,kind", [
        ("agency.txt", "agency"),
        ("Signals.txt", "signals"),
        ("my_phases.txt", "phases"),
        ("DETECTORS.TXT", "detectors"),
        ("detection.txt", "detectors"),
        ("readme.txt", None),
    ])
    def test_document_kind(self, filename, kind):
        assert document_kind(filename) == kind

    def test_zip_round_trip(self, populated_store, tmp_path):
        original = populated_store.snapshot()
        archive = write_archive(original, tmp_path / "gtss.zip", FIXED)

        restored = RecordStore()
        restored.import_data(read_archive(archive), "replace")
        data = restored.snapshot()

        def strip(records):
            return [r.model_dump(exclude={"id"}) for r in records]

        assert data.agency.model_dump(exclude={"id"}) == original.agency.model_dump(exclude={"id"})
        assert strip(data.signals) == strip(original.signals)
        assert sorted(strip(data.phases), key=str) == sorted(strip(original.phases), key=str)
        assert strip(data.detectors) == strip(original.detectors)

    def test_directory_source(self, populated_store, tmp_path):
        write_documents(populated_store.snapshot(), tmp_path)
        imported = read_archive(tmp_path)
        assert imported.sources == ["agency", "signals", "phases", "detectors"]
        assert len(imported.detectors) == 3

    def test_single_txt_files(self, populated_store, tmp_path):
        write_documents(populated_store.snapshot(), tmp_path)
        imported = read_sources([tmp_path / "signals.txt", tmp_path / "phases.txt"])
        assert imported.sources == ["signals", "phases"]
        assert imported.agency is None
        assert imported.detectors is None

    def test_unrecognised_document(self, tmp_path):
        (tmp_path / "notes.txt").write_text("hello\n")
        with pytest.raises(ArchiveImportError, match="notes.txt"):
            read_archive(tmp_path)

    def test_duplicate_document(self, populated_store, tmp_path):
        write_documents(populated_store.snapshot(), tmp_path)
        with pytest.raises(ArchiveImportError, match="duplicate signals"):
            read_sources([tmp_path / "signals.txt", tmp_path / "signals.txt"])

    def test_missing_path(self, tmp_path):
        with pytest.raises(ArchiveImportError, match="not found"):
            read_archive(tmp_path / "missing.zip")

    def test_empty_directory(self, tmp_path):
        with pytest.raises(ArchiveImportError, match="no GTSS documents"):
            read_archive(tmp_path)

    def test_not_utf8(self, tmp_path):
        (tmp_path / "signals.txt").write_bytes(b"signal_id\n\xff\xfe\xfa\n")
        with pytest.raises(ArchiveImportError, match="UTF-8"):
            read_archive(tmp_path)

    def test_unsupported_file(self, tmp_path):
        path = tmp_path / "data.csv"
        path.write_text("a,b\n")
        with pytest.raises(ArchiveImportError):
            read_archive(path)
