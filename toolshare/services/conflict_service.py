from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from services.reservation_policy import BLOCKING_STATES, normalize_state


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    # Inclusive date ranges; a shared boundary day counts as overlap.
    return a_start <= b_end and a_end >= b_start


def _is_candidate(reservation, tool_id: int, exclude_id: int | None) -> bool:
    if reservation.ToolID != tool_id:
        return False
    if exclude_id is not None and reservation.ReservationID == exclude_id:
        return False
    return normalize_state(reservation.Status) in BLOCKING_STATES


def find_conflicts(
    tool_id: int,
    start_date: date,
    end_date: date,
    existing: Iterable,
    exclude_id: int | None = None,
) -> list:
    return [
        reservation
        for reservation in existing
        if _is_candidate(reservation, tool_id, exclude_id)
        and ranges_overlap(start_date, end_date, reservation.StartDate, reservation.EndDate)
    ]


def has_conflict(
    tool_id: int,
    start_date: date,
    end_date: date,
    existing: Iterable,
    exclude_id: int | None = None,
) -> bool:
    for reservation in existing:
        if not _is_candidate(reservation, tool_id, exclude_id):
            continue
        if ranges_overlap(start_date, end_date, reservation.StartDate, reservation.EndDate):
            return True
    return False
