"""Conflict and workload checks across the events of one analysis."""

from collections import defaultdict
from datetime import date, timedelta

from .config import BACK_TO_BACK_GAP_MINUTES, MAX_DAILY_SCHEDULED_HOURS
from .models import ParsedEvent


def _label(entry_id: int, event: ParsedEvent) -> str:
    return f"#{entry_id} {event.title} ({event.start_datetime:%d/%m %H:%M}-{event.end_datetime:%H:%M})"


def detect_conflicts(events: dict[int, ParsedEvent]) -> dict[int, list[str]]:
    """
    Find overlapping events.

    Args:
        events: entry id -> parsed event (successful entries only)

    Returns:
        entry id -> conflict descriptions, for entries with at least one conflict
    """
    conflicts: dict[int, list[str]] = defaultdict(list)
    ordered = sorted(events.items(), key=lambda item: item[1].start_datetime)

    for i, (first_id, first) in enumerate(ordered):
        for second_id, second in ordered[i + 1 :]:
            if second.start_datetime >= first.end_datetime:
                break

            same_room = (
                first.location
                and first.location.casefold() == second.location.casefold()
            )
            kind = "Room and time overlap" if same_room else "Time overlap"
            conflicts[first_id].append(f"{kind} with {_label(second_id, second)}")
            conflicts[second_id].append(f"{kind} with {_label(first_id, first)}")

    return dict(conflicts)


def recommend_optimizations(
    events: dict[int, ParsedEvent],
    max_daily_hours: float = MAX_DAILY_SCHEDULED_HOURS,
    back_to_back_gap_minutes: int = BACK_TO_BACK_GAP_MINUTES,
) -> dict[int, list[str]]:
    """
    Suggest schedule improvements.

    Flags back-to-back events in different rooms and days whose scheduled
    time exceeds max_daily_hours.

    Returns:
        entry id -> recommendations
    """
    recommendations: dict[int, list[str]] = defaultdict(list)
    gap = timedelta(minutes=back_to_back_gap_minutes)
    ordered = sorted(events.items(), key=lambda item: item[1].start_datetime)

    for (first_id, first), (second_id, second) in zip(ordered, ordered[1:]):
        if timedelta(0) <= second.start_datetime - first.end_datetime < gap and (
            first.location
            and second.location
            and first.location.casefold() != second.location.casefold()
        ):
            recommendations[second_id].append(
                f"Less than {back_to_back_gap_minutes} minutes to move from "
                f"{first.location} to {second.location} after {first.title}"
            )

    per_day: dict[date, list[int]] = defaultdict(list)
    for entry_id, event in ordered:
        per_day[event.start_datetime.date()].append(entry_id)

    for day, entry_ids in per_day.items():
        total_minutes = sum(events[entry_id].duration_minutes for entry_id in entry_ids)
        if total_minutes > max_daily_hours * 60:
            for entry_id in entry_ids:
                recommendations[entry_id].append(
                    f"{day:%d/%m/%Y} has {total_minutes / 60:.1f} scheduled hours; "
                    "consider moving lower-priority items"
                )

    return dict(recommendations)
