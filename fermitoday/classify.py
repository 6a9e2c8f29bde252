"""
Event classification (free-text summary -> class codes / professor names).

The school publishes each timetable change as a calendar entry whose summary
is written by hand, e.g.

    "CLASSE 5A, 5B AULA 12 - uscita anticipata"
    "PROF. ROSSI CLASSE 3C"
    "PROFF. BIANCHI, VERDI ASSENTI"

Extraction is a small ordered grammar: each ExtractionRule is a pattern plus
the way its captured text is split and cleaned. Rules of one grammar are
tried in order and the first one producing at least one identifier wins.
New announcement formats are added as new rules; filtering and sorting never
look at the patterns.

Everything here is pure: no I/O, no shared state, inputs never mutated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Callable, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from bs4 import BeautifulSoup

from fermitoday import config
from fermitoday.model import Event


# ---------------------------------------------------------------------------
# Grammar
# ---------------------------------------------------------------------------


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip())


@dataclass(frozen=True)
class ExtractionRule:
    """
    One pattern of the grammar.

    pattern  -- group 1 captures the identifier run
    split    -- regex separating identifiers inside the run (None: whole run)
    clean    -- normalizes one identifier
    accept   -- final filter on a cleaned identifier
    all_matches -- scan every occurrence instead of the first one only
    """

    name: str
    pattern: re.Pattern
    split: Optional[re.Pattern] = None
    clean: Callable[[str], str] = _collapse
    accept: Callable[[str], bool] = bool
    all_matches: bool = False

    def apply(self, text: str) -> List[str]:
        if self.all_matches:
            runs = [m.group(1) for m in self.pattern.finditer(text) if m.group(1)]
        else:
            m = self.pattern.search(text)
            runs = [m.group(1)] if m and m.group(1) else []

        out: List[str] = []
        for run in runs:
            parts = self.split.split(run) if self.split else [run]
            for part in parts:
                item = self.clean(part)
                if item and self.accept(item):
                    out.append(item)
        return out


def apply_grammar(rules: Sequence[ExtractionRule], text: str) -> List[str]:
    """
    Return the result of the first rule that yields anything.
    """
    if not text:
        return []
    for rule in rules:
        found = rule.apply(text)
        if found:
            return found
    return []


def _clean_professor(name: str) -> str:
    # strip, drop trailing quotes, collapse inner whitespace, uppercase
    return _collapse(re.sub(r"['\"]+$", "", name.strip())).upper()


CLASS_RULES: Tuple[ExtractionRule, ...] = (
    ExtractionRule(
        name="class-marker",
        pattern=re.compile(
            r"CLASS[EI]\s+([A-Z0-9,\s]+?)(?=\s*[-–]|\s+AULA|\s+PROF|\s*$)",
            re.IGNORECASE,
        ),
        split=re.compile(r"[,\s]+"),
        clean=lambda token: token.strip().upper(),
    ),
)

PROFESSOR_RULES: Tuple[ExtractionRule, ...] = (
    # "PROF. ROSSI", "PROFF. ROSSI, BIANCHI", "PROF.ssa VERDI"
    ExtractionRule(
        name="professor-list",
        pattern=re.compile(
            r"PROFF?\.(?:ssa)?\s*([A-Z][A-Z\s,.']+?)(?=\s*CLASSE|\s*AULA|\s*ASSENTE|\s*$)",
            re.IGNORECASE,
        ),
        split=re.compile(r","),
        clean=_clean_professor,
        accept=lambda name: 0 < len(name) < 50,
    ),
    # fallback: every "PROF NAME" occurrence
    ExtractionRule(
        name="professor-single",
        pattern=re.compile(
            r"PROF\.?(?:ssa)?\.?\s*([A-Z][A-Z\s]+?)(?=\s*[,()]|\s+ASSENTE|\s+CLASSE|\s*$)",
            re.IGNORECASE,
        ),
        clean=_clean_professor,
        all_matches=True,
    ),
)


def extract_classes(summary: str) -> List[str]:
    """
    Class codes announced in a summary, e.g. "CLASSE 5A, 5B AULA 12" -> ["5A", "5B"].
    """
    return apply_grammar(CLASS_RULES, summary)


def extract_professors(summary: str) -> List[str]:
    """
    Professor names mentioned in a summary, e.g. "PROF. ROSSI CLASSE 3C" -> ["ROSSI"].
    """
    return apply_grammar(PROFESSOR_RULES, summary)


def description_text(description: Optional[str]) -> str:
    """
    Plain text of an event description (calendar descriptions may carry HTML).
    """
    if not description:
        return ""
    if "<" not in description:
        return description
    return BeautifulSoup(description, "html.parser").get_text(" ", strip=True)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def filter_by_class(events: Iterable[Event], class_code: str) -> List[Event]:
    """
    Keep events whose extracted class codes contain class_code (exact, case-insensitive).
    """
    target = class_code.strip().upper()
    if not target:
        return []
    return [ev for ev in events if target in extract_classes(ev.summary)]


def _matches_professor(event: Event, target: str) -> bool:
    names = extract_professors(event.summary)
    if names:
        return target in names

    # malformed summary: looser check on the description
    desc = description_text(event.description).upper()
    return "PROF" in desc and target in desc


def filter_by_professor(events: Iterable[Event], professor: str) -> List[Event]:
    target = _collapse(professor).upper()
    if not target:
        return []
    return [ev for ev in events if _matches_professor(ev, target)]


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _display_tz() -> tzinfo:
    return ZoneInfo(config.DISPLAY_TIMEZONE)


def parse_when(value: str) -> Optional[datetime | date]:
    """
    Parse an ISO date or timestamp. Returns a date for date-only values,
    a (possibly naive) datetime otherwise, None if unparseable.
    """
    text = (value or "").strip()
    if not text:
        return None
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def start_instant(event: Event, tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """
    Aware start instant; date-only and naive values are read in tz
    (default: the school's timezone).
    """
    when = parse_when(event.start)
    if when is None:
        return None
    zone = tz or _display_tz()
    if not isinstance(when, datetime):
        return datetime(when.year, when.month, when.day, tzinfo=zone)
    if when.tzinfo is None:
        return when.replace(tzinfo=zone)
    return when


def start_date(event: Event, tz: Optional[tzinfo] = None) -> Optional[date]:
    """
    Calendar date of the start.

    Without tz the date is read as written (in the timestamp's own offset);
    with tz, aware timestamps are converted first.
    """
    when = parse_when(event.start)
    if when is None:
        return None
    if not isinstance(when, datetime):
        return when
    if tz is not None and when.tzinfo is not None:
        when = when.astimezone(tz)
    return when.date()


def on_date(events: Iterable[Event], day: date, tz: Optional[tzinfo] = None) -> List[Event]:
    """
    Keep events that start on day. Multi-day events only belong to their start date.
    """
    return [ev for ev in events if start_date(ev, tz) == day]


def sort_by_start(events: Iterable[Event]) -> List[Event]:
    """
    Ascending by start instant. Stable; unparseable starts go last.
    """

    def key(ev: Event) -> Tuple[int, float]:
        instant = start_instant(ev)
        if instant is None:
            return (1, 0.0)
        return (0, instant.timestamp())

    return sorted(events, key=key)


def target_date(which: str = "today", today: Optional[date] = None) -> date:
    """
    Resolve "today", "tomorrow" or an ISO date into a calendar date.
    """
    base = today or datetime.now(_display_tz()).date()
    choice = (which or "today").strip().lower()
    if choice == "today":
        return base
    if choice == "tomorrow":
        return base + timedelta(days=1)
    return date.fromisoformat(choice)


def select_events(
    events: Iterable[Event],
    day: date,
    section: Optional[str] = None,
    professor: Optional[str] = None,
    tz: Optional[tzinfo] = None,
) -> List[Event]:
    """
    The list shown to the user: date scope, then class/professor filter, then sort.
    """
    selected = on_date(events, day, tz)
    if section and section.strip():
        selected = filter_by_class(selected, section)
    if professor and professor.strip():
        selected = filter_by_professor(selected, professor)
    return sort_by_start(selected)


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------


def format_time_range(event: Event) -> str:
    if event.is_all_day_event:
        return "Tutto il giorno"
    zone = _display_tz()
    start = parse_when(event.start)
    end = parse_when(event.end)
    if not isinstance(start, datetime) or not isinstance(end, datetime):
        return "Orario non disponibile"

    def hhmm(when: datetime) -> str:
        if when.tzinfo is not None:
            when = when.astimezone(zone)
        return when.strftime("%H:%M")

    return f"{hhmm(start)} - {hhmm(end)}"
