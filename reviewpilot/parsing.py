"""
Adapter from free-form model output to structured data.

Models wrap their JSON in prose or markdown fences, invent enum values and
drop fields. Everything here degrades to an empty result; no parsing
exception leaves this module.
"""

import json
import logging
from typing import Any, List, Optional

from reviewpilot.models import ReviewComment

logger = logging.getLogger(__name__)

VALID_CATEGORIES = {
    "bug",
    "logic_error",
    "security",
    "performance",
    "style",
    "documentation",
    "testing",
    "best_practice",
    "refactoring",
}
VALID_SEVERITIES = {"info", "warning", "error", "critical"}

DEFAULT_CATEGORY = "best_practice"
DEFAULT_SEVERITY = "warning"
DEFAULT_CONFIDENCE = 0.5

_decoder = json.JSONDecoder()


class MalformedModelOutput(Exception):
    """Model output could not be parsed into the expected structure."""
    pass


def extract_json_array(text: Optional[str]) -> list:
    """
    Return the first bracketed JSON array in ``text``.

    Everything around the array is ignored. Raises MalformedModelOutput
    when no decodable array exists.
    """
    if not text:
        raise MalformedModelOutput("Empty model output")

    start = text.find("[")
    while start != -1:
        try:
            value, _ = _decoder.raw_decode(text, start)
        except RecursionError as e:
            raise MalformedModelOutput("JSON nested too deeply in model output") from e
        except ValueError:
            value = None
        if isinstance(value, list):
            return value
        start = text.find("[", start + 1)

    raise MalformedModelOutput("No JSON array found in model output")


def _pick(item: dict, *keys: str) -> Any:
    for key in keys:
        if item.get(key) is not None:
            return item[key]
    return None


def clamp_confidence(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return min(1.0, max(0.0, number))


def _positive_int(value: Any) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 1 else None


def _to_comment(item: dict, default_file_path: str) -> ReviewComment:
    category = str(item.get("category") or "").lower()
    severity = str(item.get("severity") or "").lower()
    side = str(item.get("side") or "RIGHT").upper()
    suggestion = _pick(item, "suggestionCode", "suggestion_code")

    return ReviewComment(
        file_path=_pick(item, "filePath", "file_path") or default_file_path,
        line_number=_positive_int(_pick(item, "lineNumber", "line_number")) or 1,
        end_line_number=_positive_int(_pick(item, "endLineNumber", "end_line_number")),
        side=side if side in ("LEFT", "RIGHT") else "RIGHT",
        body=str(item.get("body") or ""),
        suggestion_code=str(suggestion) if suggestion else None,
        category=category if category in VALID_CATEGORIES else DEFAULT_CATEGORY,
        severity=severity if severity in VALID_SEVERITIES else DEFAULT_SEVERITY,
        confidence=clamp_confidence(item.get("confidence")),
    )


def parse_review_comments(text: Optional[str], default_file_path: str = "") -> List[ReviewComment]:
    """Parse model output into review comments; malformed output yields []."""
    try:
        entries = extract_json_array(text)
    except MalformedModelOutput as e:
        logger.warning(f"Review output for {default_file_path or 'diff'} ignored: {e}")
        return []

    comments = []
    for entry in entries:
        if not isinstance(entry, dict):
            logger.warning(f"Skipping non-object review entry: {entry!r}")
            continue
        try:
            comments.append(_to_comment(entry, default_file_path))
        except Exception as e:
            # Log but don't fail - skip invalid entries
            logger.warning(f"Skipping invalid review entry: {e}")
    return comments


def parse_risk_entries(text: Optional[str], limit: int = 3) -> List[dict]:
    """
    Parse AI risk output into at most ``limit`` entries.

    Each entry has ``type``, ``severity`` (0-1, default 0.5) and
    ``description``.
    """
    try:
        entries = extract_json_array(text)
    except MalformedModelOutput as e:
        logger.warning(f"Risk analysis output ignored: {e}")
        return []

    risks = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        risks.append({
            "type": str(entry.get("type") or "unknown"),
            "severity": clamp_confidence(entry.get("severity")),
            "description": str(entry.get("description") or ""),
        })
        if len(risks) >= limit:
            break
    return risks
