"""
GTSS Builder Command-Line Interface

Subcommands:

    gtss init     [--backend json|sqlite|memory]   Create a workspace (gtss.json)
    gtss agency   show | set key=value ...         View or edit the agency
    gtss signal   list | add | update | delete     Manage signals
    gtss phase    list | add | update | delete | duplicate
    gtss detector list | add | update | delete
    gtss check                                     Completeness and export issues
    gtss export   [--format zip|txt] [--output P]  Write the GTSS documents
    gtss import   PATH ... [--mode replace|merge]  Load documents back in

Record fields are passed as snake_case ``key=value`` pairs, e.g.::

    gtss signal add agency_id=ITD street_name_1="Main St" \\
        street_name_2="1st Ave" latitude=46.73 longitude=-117.0

The workspace is found by walking upward from the working directory to
the nearest ``gtss.json``; ``--workspace`` or ``GTSS_WORKSPACE`` override
the search.

Package Location: src/gtss/cli.py
"""

from __future__ import annotations

import argparse
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

import pandas as pd

from .analysis.completeness import evaluate_completeness, export_issues, has_errors
from .analysis.phases import derive_left_turn, derive_opposite
from .config import CONFIG_FILENAME, WORKSPACE_ENV, Settings, find_workspace
from .data.archive import read_sources, write_archive, write_documents
from .data.backends import BACKEND_NAMES
from .data.store import IMPORT_MODES, RecordStore, open_store
from .errors import GTSSError, ValidationError
from .utils.logging import configure_logging

SIGNAL_LIST_COLUMNS = ["signal_id", "street_name_1", "street_name_2", "latitude", "longitude", "control_type"]
PHASE_LIST_COLUMNS = ["id", "signal_id", "phase", "movement_type", "num_of_lanes", "compass_bearing", "posted_speed"]
DETECTOR_LIST_COLUMNS = ["id", "signal_id", "channel", "phase", "purpose", "technology_type", "lane"]


# ===========================================================================
# Shared helpers
# ===========================================================================

def _die(message: str) -> None:
    """Print an error message and exit with status 1.

    Args:
        message: Human-readable error text.
    """
    print(f"\n❌  Error: {message}", file=sys.stderr)
    sys.exit(1)


def _load_settings(args: argparse.Namespace) -> Settings:
    """Resolve the workspace for this invocation and read its settings.

    Raises:
        SystemExit: When no workspace can be located.
    """
    root = Path(args.workspace) if args.workspace else find_workspace()
    if root is None:
        _die(
            f"Could not locate a GTSS workspace.\n"
            f"Run 'gtss init' in the project folder, or point {WORKSPACE_ENV} "
            f"at a directory containing '{CONFIG_FILENAME}'."
        )
    return Settings.load(root)


@contextmanager
def _open(args: argparse.Namespace) -> Iterator[RecordStore]:
    settings = _load_settings(args)
    with open_store(settings) as store:
        yield store


def _parse_fields(pairs: Sequence[str]) -> Dict[str, str]:
    """Turn ``['key=value', ...]`` into a dict.

    An empty value (``key=``) is kept; the schemas treat it as "no value".
    """
    fields: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            _die(f"Expected key=value, got '{pair}'")
        fields[key.strip()] = value
    return fields


def _print_record(title: str, record) -> None:
    print(f"\n{title}")
    for name, value in record.model_dump().items():
        print(f"    {name:<22} {'' if value is None else value}")


def _print_table(records: List, columns: List[str], empty: str) -> None:
    if not records:
        print(f"    {empty}")
        return
    frame = pd.DataFrame([r.model_dump() for r in records], columns=columns)
    print(frame.fillna("").to_string(index=False))


# ===========================================================================
# Subcommand handlers
# ===========================================================================

# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

def handle_init(args: argparse.Namespace) -> None:
    """Create ``gtss.json`` and the empty store for a new workspace."""
    root = Path(args.workspace or os.environ.get(WORKSPACE_ENV) or Path.cwd())
    settings = Settings(root=root, backend=args.backend)

    print(f"\n📂  Setting up GTSS workspace: {root}")
    if settings.config_path.exists() and not args.force:
        print(f"    ⏭️   {CONFIG_FILENAME} already exists, skipping (use --force to overwrite)")
        return

    settings.save()
    print(f"    ✅  {CONFIG_FILENAME} created (backend: {settings.backend})")
    with open_store(settings):
        pass
    location = settings.storage_path()
    if location is not None:
        print(f"    ✅  Store ready at {location}")
    print("\n✅  Setup complete.  Next: gtss agency set agency_id=... agency_name=... agency_timezone=...")


# ---------------------------------------------------------------------------
# agency
# ---------------------------------------------------------------------------

def handle_agency_show(args: argparse.Namespace) -> None:
    with _open(args) as store:
        agency = store.get_agency()
    if agency is None:
        print("\n    No agency defined.  Use 'gtss agency set ...'.")
        return
    _print_record("🏛️   Agency", agency)


def handle_agency_set(args: argparse.Namespace) -> None:
    """Create the agency or merge the given fields into the existing one."""
    settings = _load_settings(args)
    fields = _parse_fields(args.fields)
    with open_store(settings) as store:
        existing = store.get_agency()
        payload = existing.model_dump(exclude={"id"}) if existing else {}
        payload.update(fields)
        if not payload.get("agency_language"):
            payload["agency_language"] = settings.default_language
        agency = store.save_agency(payload)
    print(f"\n✅  Agency saved: {agency.agency_id} ({agency.agency_name})")


# ---------------------------------------------------------------------------
# signal
# ---------------------------------------------------------------------------

def handle_signal_list(args: argparse.Namespace) -> None:
    with _open(args) as store:
        signals = store.get_signals()
    print(f"\n🚦  Signals ({len(signals)})")
    _print_table(signals, SIGNAL_LIST_COLUMNS, "No signals defined.")


def handle_signal_add(args: argparse.Namespace) -> None:
    with _open(args) as store:
        signal = store.save_signal(_parse_fields(args.fields))
    print(f"\n✅  Signal added: {signal.signal_id}")


def handle_signal_update(args: argparse.Namespace) -> None:
    with _open(args) as store:
        signal = store.update_signal(args.signal_id, _parse_fields(args.fields))
    _print_record(f"✅  Signal updated: {signal.signal_id}", signal)


def handle_signal_delete(args: argparse.Namespace) -> None:
    with _open(args) as store:
        if store.get_signal(args.signal_id) is None:
            print(f"\n    ⏭️   Signal {args.signal_id} not found, nothing to delete")
            return
        phases = len(store.get_phases_by_signal(args.signal_id))
        detectors = len(store.get_detectors_by_signal(args.signal_id))
        store.delete_signal(args.signal_id)
    print(
        f"\n🗑️   Signal {args.signal_id} deleted "
        f"(with {phases} phases and {detectors} detectors)"
    )


# ---------------------------------------------------------------------------
# phase
# ---------------------------------------------------------------------------

def handle_phase_list(args: argparse.Namespace) -> None:
    with _open(args) as store:
        if args.signal:
            phases = store.get_phases_by_signal(args.signal)
        else:
            phases = store.get_phases()
    phases = sorted(phases, key=lambda p: (p.signal_id, p.phase))
    print(f"\n🔢  Phases ({len(phases)})")
    _print_table(phases, PHASE_LIST_COLUMNS, "No phases defined.")


def handle_phase_add(args: argparse.Namespace) -> None:
    with _open(args) as store:
        phase = store.save_phase(_parse_fields(args.fields))
    print(f"\n✅  Phase {phase.phase} added to {phase.signal_id} (id: {phase.id})")


def handle_phase_update(args: argparse.Namespace) -> None:
    with _open(args) as store:
        phase = store.update_phase(args.id, _parse_fields(args.fields))
    _print_record(f"✅  Phase updated: {phase.id}", phase)


def handle_phase_delete(args: argparse.Namespace) -> None:
    with _open(args) as store:
        store.delete_phase(args.id)
    print(f"\n🗑️   Phase {args.id} deleted")


def handle_phase_duplicate(args: argparse.Namespace) -> None:
    """Copy a phase to its left-turn companion or to the opposing approach."""
    with _open(args) as store:
        source = store.get_phase(args.id)
        if source is None:
            _die(f"Phase not found: {args.id}")
        if args.to == "left-turn":
            payload = derive_left_turn(source)
        else:
            payload = derive_opposite(source)
        phase = store.save_phase(payload)
    print(
        f"\n✅  Phase {source.phase} duplicated to phase {phase.phase} "
        f"({phase.movement_type}) on {phase.signal_id} (id: {phase.id})"
    )


# ---------------------------------------------------------------------------
# detector
# ---------------------------------------------------------------------------

def handle_detector_list(args: argparse.Namespace) -> None:
    with _open(args) as store:
        if args.signal:
            detectors = store.get_detectors_by_signal(args.signal)
        else:
            detectors = store.get_detectors()
    print(f"\n📡  Detectors ({len(detectors)})")
    _print_table(detectors, DETECTOR_LIST_COLUMNS, "No detectors defined.")


def handle_detector_add(args: argparse.Namespace) -> None:
    with _open(args) as store:
        detector = store.save_detector(_parse_fields(args.fields))
    print(f"\n✅  Detector {detector.channel} added to {detector.signal_id} (id: {detector.id})")


def handle_detector_update(args: argparse.Namespace) -> None:
    with _open(args) as store:
        detector = store.update_detector(args.id, _parse_fields(args.fields))
    _print_record(f"✅  Detector updated: {detector.id}", detector)


def handle_detector_delete(args: argparse.Namespace) -> None:
    with _open(args) as store:
        store.delete_detector(args.id)
    print(f"\n🗑️   Detector {args.id} deleted")


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------

def _print_issues(issues: List[Dict[str, str]]) -> None:
    if not issues:
        print("    ✅  No issues found")
        return
    for issue in issues:
        icon = "❌" if issue["type"] == "error" else "⚠️ "
        print(f"    {icon}  [{issue['section']}] {issue['message']}")


def handle_check(args: argparse.Namespace) -> None:
    """Print per-signal completeness and the export issue list."""
    with _open(args) as store:
        data = store.snapshot()

    results, summary = evaluate_completeness(data.signals, data.phases, data.detectors)
    print("\n📊  Completeness")
    if results.empty:
        print("    No signals defined.")
    else:
        print(results.to_string(index=False))
    print(
        f"\n    {summary['complete_signals']} complete, "
        f"{summary['partial_signals']} partial, "
        f"{summary['incomplete_signals']} incomplete "
        f"of {summary['total_signals']} signals "
        f"({summary['overall_completeness']}% complete)"
    )

    print("\n🔍  Export issues")
    _print_issues(export_issues(data))


# ---------------------------------------------------------------------------
# export
# ---------------------------------------------------------------------------

def handle_export(args: argparse.Namespace) -> None:
    """Write the GTSS documents as a ZIP archive or as four ``.txt`` files."""
    settings = _load_settings(args)
    with open_store(settings) as store:
        data = store.snapshot()

    issues = export_issues(data)
    if has_errors(issues):
        print("\n🔍  Export issues")
        _print_issues(issues)
        if not args.force:
            _die("Export blocked by the errors above (use --force to export anyway)")

    print(
        f"\n📦  Exporting {len(data.signals)} signals, {len(data.phases)} phases, "
        f"{len(data.detectors)} detectors"
    )
    if args.format == "zip":
        target = write_archive(data, Path(args.output) if args.output else settings.export_path())
        print(f"\n✅  Archive written: {target}")
    else:
        directory = Path(args.output) if args.output else settings.root / "export"
        for path in write_documents(data, directory):
            print(f"    ✅  {path}")
        print("\n✅  Documents written.")


# ---------------------------------------------------------------------------
# import
# ---------------------------------------------------------------------------

def handle_import(args: argparse.Namespace) -> None:
    data = read_sources([Path(p) for p in args.paths])
    with _open(args) as store:
        counts = store.import_data(data, mode=args.mode)
    print(f"\n📥  Imported ({args.mode}) from: {', '.join(data.sources)}")
    for kind, count in counts.items():
        print(f"    {kind:<10} {count}")
    print("\n✅  Import complete.")


# ===========================================================================
# Argument parser construction
# ===========================================================================

def _add_fields_arg(parser: argparse.ArgumentParser, required: bool = True) -> None:
    parser.add_argument(
        "fields",
        nargs="+" if required else "*",
        metavar="key=value",
        help="Record fields, snake_case names (e.g. street_name_1=\"Main St\").",
    )


def _build_parser() -> argparse.ArgumentParser:
    """Construct and return the top-level argument parser.

    Returns:
        Configured ``ArgumentParser`` with every subcommand attached.
    """
    parser = argparse.ArgumentParser(
        prog="gtss",
        description=(
            "GTSS Builder – General Traffic Signal Specification\n"
            "Record entry, completeness checks, and GTSS export/import."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--workspace",
        metavar="DIR",
        default=None,
        help=f"Workspace directory (default: nearest folder with {CONFIG_FILENAME}).",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        metavar="LEVEL",
        help="Logging level for the gtss logger (default: WARNING).",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit log records as single-line JSON.",
    )
    subs = parser.add_subparsers(dest="command", metavar="<command>")
    subs.required = True

    # ------------------------------------------------------------------
    # init
    # ------------------------------------------------------------------
    p_init = subs.add_parser("init", help=f"Create {CONFIG_FILENAME} and an empty store.")
    p_init.add_argument(
        "--backend",
        choices=BACKEND_NAMES,
        default="json",
        help="Storage backend (default: json).",
    )
    p_init.add_argument(
        "--force",
        action="store_true",
        default=False,
        help=f"Overwrite an existing {CONFIG_FILENAME}.",
    )
    p_init.set_defaults(func=handle_init)

    # ------------------------------------------------------------------
    # agency
    # ------------------------------------------------------------------
    p_agency = subs.add_parser("agency", help="Show or set the agency record.")
    agency_subs = p_agency.add_subparsers(dest="action", metavar="<action>")
    agency_subs.required = True
    agency_subs.add_parser("show", help="Print the agency.").set_defaults(func=handle_agency_show)
    p_agency_set = agency_subs.add_parser("set", help="Create or update the agency.")
    _add_fields_arg(p_agency_set)
    p_agency_set.set_defaults(func=handle_agency_set)

    # ------------------------------------------------------------------
    # signal
    # ------------------------------------------------------------------
    p_signal = subs.add_parser("signal", help="Manage signals.")
    signal_subs = p_signal.add_subparsers(dest="action", metavar="<action>")
    signal_subs.required = True
    signal_subs.add_parser("list", help="List signals.").set_defaults(func=handle_signal_list)

    p_sig_add = signal_subs.add_parser(
        "add", help="Add a signal (signal_id is generated when omitted)."
    )
    _add_fields_arg(p_sig_add)
    p_sig_add.set_defaults(func=handle_signal_add)

    p_sig_upd = signal_subs.add_parser("update", help="Update fields of a signal.")
    p_sig_upd.add_argument("signal_id", help="Signal ID, e.g. SIG_001.")
    _add_fields_arg(p_sig_upd)
    p_sig_upd.set_defaults(func=handle_signal_update)

    p_sig_del = signal_subs.add_parser(
        "delete", help="Delete a signal with its phases and detectors."
    )
    p_sig_del.add_argument("signal_id", help="Signal ID, e.g. SIG_001.")
    p_sig_del.set_defaults(func=handle_signal_delete)

    # ------------------------------------------------------------------
    # phase
    # ------------------------------------------------------------------
    p_phase = subs.add_parser("phase", help="Manage phases.")
    phase_subs = p_phase.add_subparsers(dest="action", metavar="<action>")
    phase_subs.required = True

    p_ph_list = phase_subs.add_parser("list", help="List phases.")
    p_ph_list.add_argument("--signal", metavar="SIGNAL_ID", help="Only this signal.")
    p_ph_list.set_defaults(func=handle_phase_list)

    p_ph_add = phase_subs.add_parser("add", help="Add a phase.")
    _add_fields_arg(p_ph_add)
    p_ph_add.set_defaults(func=handle_phase_add)

    p_ph_upd = phase_subs.add_parser("update", help="Update fields of a phase.")
    p_ph_upd.add_argument("id", help="Internal phase id (see 'gtss phase list').")
    _add_fields_arg(p_ph_upd)
    p_ph_upd.set_defaults(func=handle_phase_update)

    p_ph_del = phase_subs.add_parser("delete", help="Delete a phase.")
    p_ph_del.add_argument("id", help="Internal phase id.")
    p_ph_del.set_defaults(func=handle_phase_delete)

    p_ph_dup = phase_subs.add_parser(
        "duplicate",
        help="Copy a phase to its left-turn companion or the opposing approach.",
        description=(
            "left-turn: Through phase 2/4/6/8 -> Left Turn phase 5/7/1/3.\n"
            "opposite:  phase n -> ((n + 3) % 8) + 1, i.e. 1<->5, 2<->6, 3<->7, 4<->8."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_ph_dup.add_argument("id", help="Internal id of the phase to copy.")
    p_ph_dup.add_argument(
        "--to",
        choices=("left-turn", "opposite"),
        required=True,
        help="Which phase to derive.",
    )
    p_ph_dup.set_defaults(func=handle_phase_duplicate)

    # ------------------------------------------------------------------
    # detector
    # ------------------------------------------------------------------
    p_det = subs.add_parser("detector", help="Manage detectors.")
    det_subs = p_det.add_subparsers(dest="action", metavar="<action>")
    det_subs.required = True

    p_det_list = det_subs.add_parser("list", help="List detectors.")
    p_det_list.add_argument("--signal", metavar="SIGNAL_ID", help="Only this signal.")
    p_det_list.set_defaults(func=handle_detector_list)

    p_det_add = det_subs.add_parser("add", help="Add a detector.")
    _add_fields_arg(p_det_add)
    p_det_add.set_defaults(func=handle_detector_add)

    p_det_upd = det_subs.add_parser("update", help="Update fields of a detector.")
    p_det_upd.add_argument("id", help="Internal detector id (see 'gtss detector list').")
    _add_fields_arg(p_det_upd)
    p_det_upd.set_defaults(func=handle_detector_update)

    p_det_del = det_subs.add_parser("delete", help="Delete a detector.")
    p_det_del.add_argument("id", help="Internal detector id.")
    p_det_del.set_defaults(func=handle_detector_delete)

    # ------------------------------------------------------------------
    # check / export / import
    # ------------------------------------------------------------------
    subs.add_parser(
        "check", help="Show completeness scores and export issues."
    ).set_defaults(func=handle_check)

    p_exp = subs.add_parser("export", help="Write the GTSS documents.")
    p_exp.add_argument(
        "--format",
        choices=("zip", "txt"),
        default="zip",
        help="ZIP archive (default) or four standalone .txt files.",
    )
    p_exp.add_argument(
        "--output",
        metavar="PATH",
        default=None,
        help="Archive path or output folder (default: from gtss.json).",
    )
    p_exp.add_argument(
        "--force",
        action="store_true",
        default=False,
        help="Export even when the issue check reports errors.",
    )
    p_exp.set_defaults(func=handle_export)

    p_imp = subs.add_parser(
        "import", help="Load GTSS documents from a ZIP, .txt files or a folder."
    )
    p_imp.add_argument("paths", nargs="+", metavar="PATH", help="Sources to read.")
    p_imp.add_argument(
        "--mode",
        choices=IMPORT_MODES,
        default="replace",
        help="replace: discard current records (default); merge: upsert.",
    )
    p_imp.set_defaults(func=handle_import)

    return parser


# ===========================================================================
# Entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate handler.

    This function is registered as the ``gtss`` console script entry point
    in ``pyproject.toml``.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, json_format=args.log_json)
    try:
        args.func(args)
    except ValidationError as exc:
        details = "\n".join(
            f"  - {'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors
        )
        _die(f"{exc}\n{details}" if details else str(exc))
    except GTSSError as exc:
        _die(str(exc))


if __name__ == "__main__":
    main()
