"""Rule-based parser for Vietnamese class schedules and free-text events."""

import logging
import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any

from .config import (
    CLASS_PERIOD_MINUTES,
    CLASS_PERIOD_START_TIMES,
    DEFAULT_EVENT_DURATION_MINUTES,
    DEFAULT_FREE_TEXT_DURATION_MINUTES,
    DEFAULT_PRIORITY,
    MAX_PRIORITY,
    MIN_PRIORITY,
)
from .exceptions import ParsingError
from .models import ParsedEvent

logger = logging.getLogger(__name__)

# Accent-folded header spellings -> canonical column key
HEADER_ALIASES = {
    "lop": "lop",
    "lop hoc": "lop",
    "ma lop": "lop",
    "class": "lop",
    "ngay": "ngay",
    "ngay hoc": "ngay",
    "thu": "ngay",
    "date": "ngay",
    "phong": "phong",
    "phong hoc": "phong",
    "dia diem": "phong",
    "room": "phong",
    "ghi chu": "ghi_chu",
    "note": "ghi_chu",
    "notes": "ghi_chu",
    "mon hoc": "mon_hoc",
    "mon": "mon_hoc",
    "ten mon": "mon_hoc",
    "subject": "mon_hoc",
    "gio bat dau": "gio_bat_dau",
    "bat dau": "gio_bat_dau",
    "start": "gio_bat_dau",
    "start time": "gio_bat_dau",
    "gio ket thuc": "gio_ket_thuc",
    "ket thuc": "gio_ket_thuc",
    "end": "gio_ket_thuc",
    "end time": "gio_ket_thuc",
}

# Thứ 2 .. Chủ nhật -> Python weekday()
_WEEKDAY_WORDS = {
    "2": 0,
    "hai": 0,
    "3": 1,
    "ba": 1,
    "4": 2,
    "tu": 2,
    "5": 3,
    "nam": 3,
    "6": 4,
    "sau": 4,
    "7": 5,
    "bay": 5,
}

_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
# Lookbehinds keep "tiết 1-3" from reading as a date
_DMY_DATE_RE = re.compile(
    r"(?<!tiet )(?<!tiet)\b(\d{1,2})([/\-.])(\d{1,2})(?:\2(\d{2,4}))?\b"
)
_WEEKDAY_RE = re.compile(r"\bthu\s*(2|3|4|5|6|7|hai|ba|tu|nam|sau|bay)\b|\bt([2-7])\b")
_SUNDAY_RE = re.compile(r"\b(chu nhat|cn)\b")
_RELATIVE_DAY_RE = re.compile(r"\b(hom nay|ngay mai|ngay kia|ngay mot)\b")
_NEXT_WEEK_RE = re.compile(r"\btuan (sau|toi)\b")
_PERIOD_RE = re.compile(r"\btiet\s*(\d{1,2})(?:\s*(?:-|den|->)\s*(\d{1,2}))?")
_TIME_RE = re.compile(
    r"(?<![\d/.])(\d{1,2})\s*(?::|h(?![a-z]))\s*(\d{1,2})?(?::\d{2})?"
    r"(?:\s*(sang|trua|chieu|toi|dem|sa|ch|am|pm)\b)?"
)
_LOCATION_RE = re.compile(
    r"\b(?:tai|o)\s+(.+?)(?=\s+(?:luc|vao|tu|ngay|thu|hom|voi)\b|[,;]|\.(?:\s|$)|$)"
)
_ROOM_RE = re.compile(r"\bphong\s+([\w][\w.\-/]*)")
_PARTICIPANTS_RE = re.compile(
    r"\bvoi\s+(.+?)(?=\s+(?:luc|vao|tai|o|ngay|thu|tu)\b|[,;]|\.(?:\s|$)|$)"
)
_REQUIREMENTS_RE = re.compile(r"\b(?:mang theo|can chuan bi|chuan bi)\s+(.+?)(?=[;]|\.(?:\s|$)|$)")

_FILLER_WORDS = {
    "luc",
    "vao",
    "tu",
    "den",
    "toi",
    "ngay",
    "-",
    "->",
    "sang",
    "trua",
    "chieu",
    "dem",
    "gio",
    "tuan",
}

_CATEGORY_RULES: list[tuple[str, int, re.Pattern[str]]] = [
    (
        "exam",
        5,
        re.compile(r"\b(lich thi|thi giua ky|thi cuoi ky|thi hoc ky|di thi|kiem tra|bao ve|thi|exam)\b"),
    ),
    ("work", 4, re.compile(r"\b(deadline|han nop|nop bai|nop)\b")),
    ("meeting", 3, re.compile(r"\b(hop|meeting|gap mat|giao ban)\b")),
    ("work", 3, re.compile(r"\b(lam viec|ca lam|di lam|cong viec|work)\b")),
    (
        "study",
        3,
        re.compile(r"\b(hoc|lop|mon|bai giang|thuc hanh|ly thuyet|seminar|on tap)\b"),
    ),
    ("personal", 2, re.compile(r"\b(sinh nhat|kham benh|the duc|gym|gia dinh|du lich)\b")),
]
_URGENT_RE = re.compile(r"\b(gap|khan|khan cap|quan trong|urgent|important)\b")
# Urgency words whose folded form collides with a common word (gặp, khó khăn)
_URGENT_ACCENTED = {"gap": "gấp", "khan": "khẩn"}
_OPTIONAL_RE = re.compile(r"\b(tuy chon|neu co thoi gian|khong bat buoc|optional)\b")


def _fold_char(char: str) -> str:
    lowered = char.lower()[:1] or char
    if lowered == "đ":
        return "d"
    decomposed = unicodedata.normalize("NFD", lowered)
    base = "".join(c for c in decomposed if not unicodedata.combining(c))
    return base if len(base) == 1 else " "


def _is_urgent(original: str, folded: str) -> bool:
    for match in _URGENT_RE.finditer(folded):
        accented = _URGENT_ACCENTED.get(match.group(1))
        if accented and original[match.start(1) : match.end(1)].lower() != accented:
            continue
        return True
    return False


def fold_text(text: str) -> str:
    """
    Lowercase and strip Vietnamese diacritics character by character.

    The result has the same length as the NFC form of the input, so match
    positions can be mapped back to the original text.
    """
    return "".join(_fold_char(c) for c in unicodedata.normalize("NFC", text))


def normalize_header(header: str) -> str | None:
    """Map a CSV header (with or without diacritics) to a canonical key."""
    folded = fold_text(header).replace("_", " ").strip()
    folded = re.sub(r"\s+", " ", folded)
    return HEADER_ALIASES.get(folded)


@dataclass
class ParseContext:
    """Reference information used to resolve relative dates and times."""

    reference_date: date
    time_format: str = "24h"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ParseContext":
        data = data or {}
        reference = date.today()
        if data.get("date"):
            try:
                reference = date.fromisoformat(str(data["date"]))
            except ValueError as e:
                raise ParsingError(f"Invalid context date: {data['date']}") from e
        return cls(reference_date=reference, time_format=data.get("time_format") or "24h")


class VietnameseScheduleParser:
    """Parses Vietnamese schedule rows and sentences into calendar events."""

    def __init__(
        self,
        default_duration_minutes: int = DEFAULT_EVENT_DURATION_MINUTES,
        free_text_duration_minutes: int = DEFAULT_FREE_TEXT_DURATION_MINUTES,
        period_start_times: dict[int, str] | None = None,
        period_minutes: int = CLASS_PERIOD_MINUTES,
    ) -> None:
        """
        Initialize parser.

        Args:
            default_duration_minutes: Event length when a row has no end time
            free_text_duration_minutes: Event length for sentences without an end
            period_start_times: Class period number -> "HH:MM" start time
            period_minutes: Length of one class period
        """
        self.default_duration = timedelta(minutes=default_duration_minutes)
        self.free_text_duration = timedelta(minutes=free_text_duration_minutes)
        self.period_start_times = {
            number: time.fromisoformat(value)
            for number, value in (period_start_times or CLASS_PERIOD_START_TIMES).items()
        }
        self.period_length = timedelta(minutes=period_minutes)

    # Dates

    def _find_date(
        self, folded: str, reference: date
    ) -> tuple[date, list[tuple[int, int]]] | None:
        """Find the first date expression in folded text and its spans."""
        match = _ISO_DATE_RE.search(folded)
        if match:
            try:
                value = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
                return value, [match.span()]
            except ValueError:
                pass

        for match in _DMY_DATE_RE.finditer(folded):
            day, month, year = int(match.group(1)), int(match.group(3)), match.group(4)
            full_year = reference.year
            if year:
                full_year = int(year) + 2000 if len(year) == 2 else int(year)
            try:
                return date(full_year, month, day), [match.span()]
            except ValueError:
                continue

        match = _RELATIVE_DAY_RE.search(folded)
        if match:
            offsets = {"hom nay": 0, "ngay mai": 1, "ngay kia": 2, "ngay mot": 2}
            return reference + timedelta(days=offsets[match.group(1)]), [match.span()]

        weekday = None
        match = _WEEKDAY_RE.search(folded)
        if match:
            weekday = _WEEKDAY_WORDS[match.group(1) or match.group(2)]
        else:
            match = _SUNDAY_RE.search(folded)
            if match:
                weekday = 6
        if weekday is None or match is None:
            return None

        spans = [match.span()]
        value = reference + timedelta(days=(weekday - reference.weekday()) % 7)
        next_week = _NEXT_WEEK_RE.search(folded)
        if next_week:
            value += timedelta(days=7)
            spans.append(next_week.span())
        return value, spans

    def parse_date(self, value: str, reference: date) -> date:
        """
        Parse a date cell such as "15/10/2024", "2024-10-15" or "Thứ 2".

        Raises:
            ParsingError: If no date can be recognised
        """
        found = self._find_date(fold_text(value), reference)
        if found is None:
            raise ParsingError(f"Unrecognised date (ngay): '{value}'")
        return found[0]

    # Times

    @staticmethod
    def _prepare_time_text(folded: str) -> str:
        """Rewrite "7 gio 30 phut" / "7g30" as "7h    30" keeping the length."""
        prepared = re.sub(
            r"(\d\s*)(gio|g)(?=\s*\d|\b)",
            lambda m: m.group(1) + "h" + " " * (len(m.group(2)) - 1),
            folded,
        )
        return re.sub(r"\bphut\b", "    ", prepared)

    @staticmethod
    def _build_time(
        hour: int, minute: int, qualifier: str | None, time_format: str
    ) -> time:
        if qualifier in ("chieu", "toi", "ch", "pm") and hour < 12:
            hour += 12
        elif qualifier == "trua" and hour < 11:
            hour += 12
        elif qualifier == "dem" and 6 <= hour < 12:
            hour += 12
        elif qualifier in ("sang", "sa", "am") and hour == 12:
            hour = 0
        elif qualifier is None and time_format == "12h" and 1 <= hour <= 6:
            # Unqualified 12h class times from 1 to 6 are afternoon sessions
            hour += 12

        if not 0 <= hour <= 23 or not 0 <= minute <= 59:
            raise ParsingError(f"Invalid time {hour:02d}:{minute:02d}")
        return time(hour, minute)

    def _find_times(
        self, original: str, folded: str, time_format: str
    ) -> list[tuple[time, tuple[int, int]]]:
        prepared = self._prepare_time_text(folded)
        times = []
        for match in _TIME_RE.finditer(prepared):
            qualifier = match.group(3)
            # "tới" (until) and "tối" (evening) fold to the same word
            if qualifier == "toi":
                if original[match.start(3) : match.end(3)].lower() != "tối":
                    qualifier = None
            value = self._build_time(
                int(match.group(1)), int(match.group(2) or 0), qualifier, time_format
            )
            span = match.span()
            if match.group(3) and not qualifier:
                span = (match.start(), match.start(3))
            times.append((value, span))
        return times

    def parse_time(self, value: str, time_format: str = "24h") -> time:
        """
        Parse a time cell such as "7:30", "7h30", "2 giờ chiều" or "14".

        Raises:
            ParsingError: If no time can be recognised
        """
        original = unicodedata.normalize("NFC", value).strip()
        folded = fold_text(original)
        if re.fullmatch(r"\d{1,2}", folded):
            return self._build_time(int(folded), 0, None, time_format)

        times = self._find_times(original, folded, time_format)
        if not times:
            raise ParsingError(f"Unrecognised time: '{value}'")
        return times[0][0]

    def parse_periods(self, value: str) -> tuple[time, time] | None:
        """
        Parse a class-period expression like "tiết 1-3".

        Returns:
            (start, end) times, or None if the text names no period

        Raises:
            ParsingError: If a period number is outside the timetable
        """
        match = _PERIOD_RE.search(fold_text(value))
        if match is None:
            return None

        first = int(match.group(1))
        last = int(match.group(2) or first)
        if first not in self.period_start_times or last not in self.period_start_times:
            raise ParsingError(f"Unknown class period in '{value}'")
        if last < first:
            raise ParsingError(f"Period range is reversed in '{value}'")

        start = self.period_start_times[first]
        end = (datetime.combine(date.min, self.period_start_times[last]) + self.period_length).time()
        return start, end

    # Classification

    @staticmethod
    def infer_priority_and_category(text: str, is_class_row: bool = False) -> tuple[int, str]:
        """
        Infer a 1-5 priority and a category from keywords.

        Args:
            text: Text to inspect (any accents)
            is_class_row: Whether the text comes from a class-schedule row

        Returns:
            Tuple of (priority, category)
        """
        folded = fold_text(text)
        priority, category = DEFAULT_PRIORITY, "study" if is_class_row else "other"

        for rule_category, rule_priority, pattern in _CATEGORY_RULES:
            if pattern.search(folded):
                priority, category = rule_priority, rule_category
                break

        if _is_urgent(unicodedata.normalize("NFC", text), folded):
            priority += 1
        if _OPTIONAL_RE.search(folded):
            priority -= 1

        return max(MIN_PRIORITY, min(MAX_PRIORITY, priority)), category

    # Entry points

    def parse_entry(
        self, original_data: dict[str, Any], context: ParseContext | None = None
    ) -> ParsedEvent:
        """
        Parse one class-schedule row into an event.

        Args:
            original_data: Row keyed by lop/ngay/phong/ghi_chu/mon_hoc/
                gio_bat_dau/gio_ket_thuc
            context: Reference date and time format

        Returns:
            ParsedEvent for the row

        Raises:
            ParsingError: If required fields are missing or invalid
        """
        context = context or ParseContext(reference_date=date.today())
        row = {k: str(v).strip() for k, v in original_data.items() if v is not None}

        lop = row.get("lop", "")
        subject = row.get("mon_hoc", "")
        note = row.get("ghi_chu", "")
        title = subject or note or lop
        if not title:
            raise ParsingError("Missing subject (mon_hoc)")

        if not row.get("ngay"):
            raise ParsingError("Missing date (ngay)")
        day = self.parse_date(row["ngay"], context.reference_date)

        start_text = row.get("gio_bat_dau", "")
        end_text = row.get("gio_ket_thuc", "")
        if not start_text:
            raise ParsingError("Missing start time (gio_bat_dau)")

        period_end = None
        periods = self.parse_periods(start_text)
        if periods:
            start_time, period_end = periods
        else:
            start_time = self.parse_time(start_text, context.time_format)

        start = datetime.combine(day, start_time)
        if end_text:
            end_periods = self.parse_periods(end_text)
            end_time = end_periods[1] if end_periods else self.parse_time(end_text, context.time_format)
            end = datetime.combine(day, end_time)
        elif period_end is not None:
            end = datetime.combine(day, period_end)
        else:
            end = start + self.default_duration

        if end <= start:
            raise ParsingError(
                f"End time {end.time():%H:%M} is not after start time {start.time():%H:%M}"
            )

        description_parts = []
        if lop:
            description_parts.append(f"Lớp {lop}")
        if note and note != title:
            description_parts.append(note)

        priority, category = self.infer_priority_and_category(
            f"{subject} {note}", is_class_row=bool(subject or lop)
        )

        requirements = []
        if note:
            match = _REQUIREMENTS_RE.search(fold_text(note))
            if match:
                requirements = _split_list(unicodedata.normalize("NFC", note)[match.start(1) : match.end(1)])

        return ParsedEvent(
            title=title,
            description=" - ".join(description_parts),
            start_datetime=start,
            end_datetime=end,
            location=row.get("phong", ""),
            priority=priority,
            category=category,
            requirements=requirements,
        )

    def parse_text(self, text: str, context: ParseContext | None = None) -> ParsedEvent:
        """
        Parse a free-text Vietnamese sentence into an event.

        Example: "Họp nhóm lúc 14h30 thứ 6 tại phòng A1.203"

        Raises:
            ParsingError: If no time or title can be found
        """
        if not text or not text.strip():
            raise ParsingError("Empty text provided for parsing")

        context = context or ParseContext(reference_date=date.today())
        original = unicodedata.normalize("NFC", text.strip())
        folded = fold_text(original)
        removed: list[tuple[int, int]] = []

        found_date = self._find_date(folded, context.reference_date)
        day = context.reference_date
        if found_date:
            day, spans = found_date
            removed.extend(spans)

        start = end = None
        periods = self.parse_periods(original)
        if periods:
            removed.append(_PERIOD_RE.search(folded).span())
            start = datetime.combine(day, periods[0])
            end = datetime.combine(day, periods[1])
        else:
            times = self._find_times(original, folded, context.time_format)
            if not times:
                raise ParsingError(f"No time found in '{text}'")
            start = datetime.combine(day, times[0][0])
            removed.append(times[0][1])
            if len(times) > 1:
                end = datetime.combine(day, times[1][0])
                removed.append(times[1][1])

        if end is None:
            end = start + self.free_text_duration
        elif end <= start:
            raise ParsingError(
                f"End time {end.time():%H:%M} is not after start time {start.time():%H:%M}"
            )

        location = ""
        match = _LOCATION_RE.search(folded) or _ROOM_RE.search(folded)
        if match:
            if match.re is _ROOM_RE:
                location = original[match.start() : match.end()]
            else:
                location = original[match.start(1) : match.end(1)]
            removed.append(match.span())

        participants: list[str] = []
        match = _PARTICIPANTS_RE.search(folded)
        if match:
            participants = _split_list(original[match.start(1) : match.end(1)])
            removed.append(match.span())

        requirements: list[str] = []
        match = _REQUIREMENTS_RE.search(folded)
        if match:
            requirements = _split_list(original[match.start(1) : match.end(1)])
            removed.append(match.span())

        title = _remaining_words(original, folded, removed)
        if not title:
            raise ParsingError(f"No event title found in '{text}'")

        priority, category = self.infer_priority_and_category(original)
        logger.debug(f"Parsed free text '{text}' -> {title} at {start.isoformat()}")

        return ParsedEvent(
            title=title,
            description=original,
            start_datetime=start,
            end_datetime=end,
            location=location.strip(),
            priority=priority,
            category=category,
            participants=participants,
            requirements=requirements,
        )


def _split_list(value: str) -> list[str]:
    parts = re.split(r",|\bvà\b|\band\b", value)
    return [part.strip(" .") for part in parts if part.strip(" .")]


def _remaining_words(
    original: str, folded: str, removed: list[tuple[int, int]]
) -> str:
    """Text left after removing matched spans and filler words."""
    mask = [False] * len(original)
    for start, end in removed:
        for i in range(max(start, 0), min(end, len(mask))):
            mask[i] = True

    kept = "".join(" " if mask[i] else c for i, c in enumerate(original))
    words = [
        match.group()
        for match in re.finditer(r"\S+", kept)
        if folded[match.start() : match.end()].strip(",.;:") not in _FILLER_WORDS
    ]
    return " ".join(words).strip(" ,.;:-")
