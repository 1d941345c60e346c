"""
GTSS Completeness & Export Checks (Functional Core)

Scores how fully each signal has been described and lists the problems
that would make an export inconsistent.  Pure functions: lists of records
in, DataFrames / dicts out.

Scoring (per signal):
    phase_completeness    = min(phase_count / 8, 1)
    detector_completeness = min(detector_count / 4, 1)
    score                 = round(mean of the two * 100)

    status = ``complete`` at 100, ``partial`` at >= 60, else ``incomplete``.

Package Location: src/gtss/analysis/completeness.py
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd

from ..schemas import Detector, GTSSData, Phase, Signal

REQUIRED_PHASE_COUNT = 8
MIN_REQUIRED_DETECTORS = 4
PARTIAL_THRESHOLD = 60

RESULT_COLUMNS = [
    "signal_id",
    "street",
    "phase_count",
    "detector_count",
    "phase_completeness",
    "detector_completeness",
    "score",
    "status",
]


def evaluate_completeness(
    signals: Sequence[Signal],
    phases: Sequence[Phase],
    detectors: Sequence[Detector],
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """Score every signal and summarise the dataset.

    Args:
        signals:   Signals in display order.
        phases:    All phases (any signal).
        detectors: All detectors (any signal).

    Returns:
        ``(results, summary)`` where ``results`` has one row per signal
        with :data:`RESULT_COLUMNS` (completeness values are percentages
        0-100) and ``summary`` holds ``total_signals``,
        ``complete_signals``, ``partial_signals``, ``incomplete_signals``
        and ``overall_completeness``.
    """
    if not signals:
        return pd.DataFrame(columns=RESULT_COLUMNS), _summary(pd.Series(dtype=object), 0)

    phase_counts = pd.Series([p.signal_id for p in phases], dtype=object).value_counts()
    det_counts = pd.Series([d.signal_id for d in detectors], dtype=object).value_counts()

    df = pd.DataFrame({
        "signal_id": [s.signal_id for s in signals],
        "street": [f"{s.street_name_1} & {s.street_name_2}" for s in signals],
    })
    df["phase_count"] = df["signal_id"].map(phase_counts).fillna(0).astype(int)
    df["detector_count"] = df["signal_id"].map(det_counts).fillna(0).astype(int)

    phase_ratio = np.minimum(df["phase_count"].to_numpy() / REQUIRED_PHASE_COUNT, 1.0)
    det_ratio = np.minimum(df["detector_count"].to_numpy() / MIN_REQUIRED_DETECTORS, 1.0)
    # Halves round up.
    score = [_round_half_up((p + d) / 2 * 100) for p, d in zip(phase_ratio, det_ratio)]

    df["phase_completeness"] = [_round_half_up(v * 100) for v in phase_ratio]
    df["detector_completeness"] = [_round_half_up(v * 100) for v in det_ratio]
    df["score"] = score
    df["status"] = [_status(s) for s in score]

    return df[RESULT_COLUMNS], _summary(df["status"], len(signals))


def _round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def _status(score: int) -> str:
    if score == 100:
        return "complete"
    if score >= PARTIAL_THRESHOLD:
        return "partial"
    return "incomplete"


def _summary(statuses: pd.Series, total: int) -> Dict[str, Any]:
    counts = statuses.value_counts()
    complete = int(counts.get("complete", 0))
    return {
        "total_signals": total,
        "complete_signals": complete,
        "partial_signals": int(counts.get("partial", 0)),
        "incomplete_signals": int(counts.get("incomplete", 0)),
        "overall_completeness": _round_half_up(complete / total * 100) if total else 0,
    }


def export_issues(data: GTSSData) -> List[Dict[str, str]]:
    """List problems to review before exporting.

    Returns:
        List of ``{"type": "error" | "warning", "section": ..., "message": ...}``
        dicts.  Errors are: missing agency, phases or detectors whose
        ``signal_id`` matches no signal.  Warnings are: no signals, signals
        without cabinet coordinates.
    """
    issues: List[Dict[str, str]] = []

    if data.agency is None:
        issues.append(_issue("error", "Agency Information", "Agency information is required"))

    if not data.signals:
        issues.append(_issue("warning", "Signal Locations", "No signals configured"))

    for signal in data.signals:
        if signal.cabinet_lat is None or signal.cabinet_lon is None:
            issues.append(_issue(
                "warning",
                "Signal Locations",
                f"Missing cabinet coordinates for {signal.signal_id}",
            ))

    signal_ids = {s.signal_id for s in data.signals}
    orphan_phases = [p for p in data.phases if p.signal_id not in signal_ids]
    if orphan_phases:
        issues.append(_issue(
            "error", "Phases",
            f"{len(orphan_phases)} phases reference non-existent signals",
        ))
    orphan_detectors = [d for d in data.detectors if d.signal_id not in signal_ids]
    if orphan_detectors:
        issues.append(_issue(
            "error", "Detectors",
            f"{len(orphan_detectors)} detectors reference non-existent signals",
        ))

    return issues


def has_errors(issues: Sequence[Dict[str, str]]) -> bool:
    return any(issue["type"] == "error" for issue in issues)


def _issue(kind: str, section: str, message: str) -> Dict[str, str]:
    return {"type": kind, "section": section, "message": message}
