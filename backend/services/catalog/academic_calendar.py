"""
Academic year and period normalisation for assessments and units.

Assessments uploaded without an explicit academic year or period get one
derived from their due date: the academic year starts in August, the
second period starts in July.
"""
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Union

DateLike = Union[str, date, datetime, None]


def _parse_date(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value.strip():
        text = value.strip().replace("Z", "+00:00")
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
    return datetime.now()


def normalize_academic_year(value: Any, due_date: DateLike = None) -> str:
    """
    Return the academic year label for an assessment.

    An explicit string label wins. Otherwise a due date in August or later
    belongs to "{year}/{year+1}", anything earlier to "{year-1}/{year}".
    """
    if value and isinstance(value, str):
        return value

    reference = _parse_date(due_date)
    start_year = reference.year if reference.month >= 8 else reference.year - 1
    return f"{start_year}/{start_year + 1}"


def normalize_period(value: Any, due_date: DateLike = None) -> str:
    """Explicit period wins; else "1" before July and "2" from July on."""
    if value is not None and value != "":
        return str(value)

    reference = _parse_date(due_date)
    return "1" if reference.month < 7 else "2"


def enrich_assessment(assessment: Dict[str, Any]) -> Dict[str, Any]:
    """Fill academicYear and period from metadata or the due date."""
    metadata = assessment.get("metadata") or {}
    return {
        **assessment,
        "academicYear": normalize_academic_year(
            assessment.get("academicYear") or metadata.get("academicYear"),
            assessment.get("dueDate"),
        ),
        "period": normalize_period(
            assessment.get("period") or metadata.get("period"),
            assessment.get("dueDate"),
        ),
    }


def filter_assessments(
    assessments: Iterable[Dict[str, Any]],
    academic_year: str = "all",
    period: str = "all",
) -> List[Dict[str, Any]]:
    """Filter by normalised academic year and period ("all" disables a filter)."""
    results = []
    for assessment in assessments:
        if academic_year != "all" and normalize_academic_year(
            assessment.get("academicYear"), assessment.get("dueDate")
        ) != academic_year:
            continue
        if period != "all" and normalize_period(
            assessment.get("period"), assessment.get("dueDate")
        ) != period:
            continue
        results.append(assessment)
    return results


def available_periods(assessments: Iterable[Dict[str, Any]], academic_year: str = "all") -> List[str]:
    """Sorted distinct periods among assessments of the selected academic year."""
    periods = set()
    for assessment in filter_assessments(assessments, academic_year=academic_year):
        value = normalize_period(assessment.get("period"), assessment.get("dueDate"))
        if value:
            periods.add(value)
    return sorted(periods)


def group_assessments(assessments: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Dict[str, List[Dict[str, Any]]]]]:
    """Group as academic year -> period -> unit label -> assessments."""
    groups: Dict[str, Dict[str, Dict[str, List[Dict[str, Any]]]]] = {}
    for assessment in assessments:
        year_label = normalize_academic_year(assessment.get("academicYear"), assessment.get("dueDate")) or "Unknown Year"
        period = normalize_period(assessment.get("period"), assessment.get("dueDate")) or "N/A"
        unit_key = assessment.get("unitName") or assessment.get("unitCode") or "Unassigned Unit"
        groups.setdefault(year_label, {}).setdefault(period, {}).setdefault(unit_key, []).append(assessment)
    return groups


def _positive_int(*candidates: Any, default: int = 1) -> int:
    for candidate in candidates:
        if candidate is None:
            continue
        try:
            number = int(candidate)
        except (TypeError, ValueError):
            continue
        if number > 0:
            return number
        break
    return default


def normalize_units(units: Iterable[Optional[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Default missing year/semester to 1 and sort by year, semester, code."""
    normalized = []
    for unit in units:
        if not unit:
            continue
        duration = unit.get("duration") or {}
        normalized.append({
            **unit,
            "year": _positive_int(unit.get("year"), unit.get("unitYear"), unit.get("level"), duration.get("year")),
            "semester": _positive_int(
                unit.get("semester"), unit.get("term"), unit.get("period"),
                duration.get("semester"), duration.get("term"),
            ),
        })

    return sorted(
        normalized,
        key=lambda u: (u["year"], u["semester"], u.get("code") or u.get("unitCode") or ""),
    )


def periods_for_year(year: int, units: Iterable[Dict[str, Any]], base_periods: Optional[Iterable[int]] = None) -> List[int]:
    """Periods offered in a study year: configured ones plus those units use; at least [1]."""
    periods = set(base_periods or [])
    for unit in units:
        if unit.get("year") != year:
            continue
        try:
            semester = int(unit.get("semester"))
        except (TypeError, ValueError):
            continue
        if semester > 0:
            periods.add(semester)
    if not periods:
        periods.add(1)
    return sorted(periods)


def academic_year_label(raw_label: Any, known_labels: Iterable[str]) -> str:
    """Match a label case-insensitively against the course's academic years."""
    trimmed = raw_label.strip() if isinstance(raw_label, str) else ""
    if not trimmed:
        return ""
    for label in known_labels:
        if label.lower() == trimmed.lower():
            return label
    return trimmed
