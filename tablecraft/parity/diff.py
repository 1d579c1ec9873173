# tablecraft/parity/diff.py
import logging
import os
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

COMPARED_KEYS = ("draw", "recordsTotal", "recordsFiltered", "data")

UNAVAILABLE = "pipeline_output_unavailable"
NO_DIFF = "no_diff"
MAX_SEVERITY = 9999


def _data_length(payload: Mapping[str, Any]) -> Optional[int]:
    data = payload.get("data")
    if isinstance(data, (list, tuple)):
        return len(data)
    return None


def summarize(legacy: Mapping[str, Any], pipeline: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "recordsTotal": {"legacy": legacy.get("recordsTotal"), "pipeline": pipeline.get("recordsTotal")},
        "recordsFiltered": {"legacy": legacy.get("recordsFiltered"), "pipeline": pipeline.get("recordsFiltered")},
        "data_length": {"legacy": _data_length(legacy), "pipeline": _data_length(pipeline)},
    }


def compare(legacy: Mapping[str, Any], pipeline: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Compare the two wire payloads on draw, counts and data length.

    Returns {"note": "no_diff", "summary": ...}, the per-key differences plus
    "summary", or {"note": "pipeline_output_unavailable"}.
    """
    if pipeline is None:
        return {"note": UNAVAILABLE}

    diff: Dict[str, Any] = {}
    for key in COMPARED_KEYS:
        if key == "data":
            legacy_len, pipeline_len = _data_length(legacy), _data_length(pipeline)
            if legacy_len != pipeline_len:
                diff["data_length"] = {"legacy": legacy_len, "pipeline": pipeline_len}
            continue
        if legacy.get(key) != pipeline.get(key):
            diff[key] = {"legacy": legacy.get(key), "pipeline": pipeline.get(key)}

    summary = summarize(legacy, pipeline)
    if not diff:
        return {"note": NO_DIFF, "summary": summary}
    diff["summary"] = summary
    return diff


def severity(report: Mapping[str, Any]) -> int:
    """+1 per count mismatch, +|delta| for data length, maximum when the pipeline produced nothing"""
    if report.get("note") == UNAVAILABLE:
        return MAX_SEVERITY
    if report.get("note") == NO_DIFF:
        return 0

    score = 0
    if "recordsTotal" in report:
        score += 1
    if "recordsFiltered" in report:
        score += 1
    lengths = report.get("data_length")
    if isinstance(lengths, Mapping):
        legacy_len = lengths.get("legacy") or 0
        pipeline_len = lengths.get("pipeline") or 0
        score += abs(legacy_len - pipeline_len)
    return score


def tolerance(settings: Optional[Any] = None) -> int:
    """Allowed severity: DT_DIFF_TOLERANCE setting or environment variable, default 0"""
    if settings is not None and getattr(settings, "DT_DIFF_TOLERANCE", None) is not None:
        return max(0, int(settings.DT_DIFF_TOLERANCE))
    raw = os.getenv("DT_DIFF_TOLERANCE")
    if raw is None:
        return 0
    try:
        return max(0, int(raw))
    except ValueError:
        logger.warning(f"Invalid DT_DIFF_TOLERANCE value: {raw}")
        return 0


def within_tolerance(report: Mapping[str, Any], allowed: int = 0) -> bool:
    return severity(report) <= allowed
