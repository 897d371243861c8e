"""
Date handling for questions and request filters.

``extract_dates`` finds a literal date range in a Portuguese question
("de 01/06/2025 a 30/06/2025", "entre ... e ...", ISO variants) and clamps
impossible days to the end of their month, reporting each adjustment.

``resolve_relative_date`` turns request filter values (ISO dates or relative
terms such as ``inicio_mes_atual``) into concrete dates.
"""
from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, field
from datetime import date, timedelta

from src.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExtractedDateRange:
    start_date: date | None = None
    end_date: date | None = None
    corrections: tuple[str, ...] = field(default_factory=tuple)

    @property
    def found(self) -> bool:
        return self.start_date is not None and self.end_date is not None


# ── Patterns ─────────────────────────────────────────────

_BR = r"(\d{1,2}/\d{1,2}/\d{4})"
_ISO = r"(\d{4}-\d{1,2}-\d{1,2})"

_RANGE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(rf"\bde\s+{_BR}\s+(?:a|até|ate)\s+{_BR}", re.IGNORECASE),
    re.compile(rf"\bentre\s+{_BR}\s+e\s+{_BR}", re.IGNORECASE),
    re.compile(rf"{_BR}\s+(?:a|até|ate|-)\s+{_BR}", re.IGNORECASE),
    re.compile(rf"\bde\s+{_ISO}\s+(?:a|até|ate)\s+{_ISO}", re.IGNORECASE),
    re.compile(rf"\bentre\s+{_ISO}\s+e\s+{_ISO}", re.IGNORECASE),
    re.compile(rf"{_ISO}\s+(?:a|até|ate|-)\s+{_ISO}", re.IGNORECASE),
]

_BR_TOKEN = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_TOKEN = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")

_CHART_INTENT_RE = re.compile(
    r"gr[aá]fico|\bchart\b|evolu[cç][aã]o|\bpor\s+m[eê]s\b|\bpor\s+dia\b|tend[eê]ncia|\btrend\b"
    r"|timeline|hist[oó]rico|[uú]ltimos?\s+\d+|[uú]ltimas?\s+\d+|\blast\s+\d+",
    re.IGNORECASE,
)


# ── Normalisation ────────────────────────────────────────

def is_leap_year(year: int) -> bool:
    return (year % 4 == 0 and year % 100 != 0) or year % 400 == 0


def days_in_month(year: int, month: int) -> int:
    if month == 2:
        return 29 if is_leap_year(year) else 28
    return calendar.monthrange(2001, month)[1]


def normalize_date(day: int, month: int, year: int) -> date:
    """Clamp *day* into ``1..days_in_month``.

    Raises ``ValueError`` when *month* is outside 1..12.
    """
    if not 1 <= month <= 12:
        raise ValueError(f"month {month} out of range")
    return date(year, month, min(max(day, 1), days_in_month(year, month)))


def _parse_token(token: str) -> tuple[date, bool]:
    m = _BR_TOKEN.match(token)
    if m:
        day, month, year = (int(g) for g in m.groups())
    else:
        m = _ISO_TOKEN.match(token)
        if not m:
            raise ValueError(f"unrecognised date '{token}'")
        year, month, day = (int(g) for g in m.groups())
    parsed = normalize_date(day, month, year)
    return parsed, parsed.day != day


# ── Public API ───────────────────────────────────────────

def extract_dates(question: str | None) -> ExtractedDateRange:
    """Return the first literal date range found in *question*."""
    if not question:
        return ExtractedDateRange()

    for pattern in _RANGE_PATTERNS:
        m = pattern.search(question)
        if not m:
            continue
        corrections: list[str] = []
        try:
            bounds = []
            for token in m.groups():
                parsed, corrected = _parse_token(token)
                if corrected:
                    corrections.append(f"Ajustei {token} para {parsed.isoformat()}")
                bounds.append(parsed)
        except ValueError as exc:
            logger.info("Ignoring date range '%s': %s", m.group(0), exc)
            return ExtractedDateRange()
        for note in corrections:
            logger.info("Date corrected: %s", note)
        return ExtractedDateRange(bounds[0], bounds[1], tuple(corrections))

    return ExtractedDateRange()


def resolve_relative_date(value: str | None, today: date | None = None) -> date | None:
    """Resolve an ISO date or a relative term; anything else yields ``None``."""
    if not value:
        return None
    today = today or date.today()
    term = value.strip().lower()

    if term in ("hoje", "today"):
        return today
    if term in ("ontem", "yesterday"):
        return today - timedelta(days=1)
    if term in ("inicio_mes_atual", "start_of_current_month", "início do mês"):
        return today.replace(day=1)
    if term in ("fim_mes_atual", "end_of_current_month", "fim do mês"):
        return today.replace(day=days_in_month(today.year, today.month))
    if term in ("inicio_ano", "start_of_year"):
        return date(today.year, 1, 1)
    if term in ("fim_ano", "end_of_year"):
        return date(today.year, 12, 31)

    m = _ISO_TOKEN.match(term)
    if m:
        try:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            logger.info("Invalid calendar date in filter '%s', ignoring", value)
            return None
    logger.info("Unrecognised date filter '%s', ignoring", value)
    return None


def detect_chart_intent(question: str | None) -> bool:
    """True when the question asks for a chart or a trend over time."""
    return bool(question and _CHART_INTENT_RE.search(question))
