"""
Serialization of an assembled schedule (CSV for spreadsheets, dicts for JSON).
"""

import csv
import io
from typing import TYPE_CHECKING, Any, Dict

if TYPE_CHECKING:
    from .service import CompleteSchedule

CSV_HEADER = ["Type", "Date", "Start", "End", "Client", "Address", "Status", "Notes"]


def schedule_to_csv(schedule: "CompleteSchedule") -> str:
    """One row per booking, then one row per absence."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)

    for b in schedule.bookings:
        writer.writerow([
            "Booking",
            b.day.isoformat(),
            b.scheduled_start.strftime("%H:%M"),
            b.end.strftime("%H:%M"),
            b.client_name or "",
            b.address,
            b.status.value,
            b.notes or "",
        ])

    for a in schedule.absences:
        writer.writerow([
            "Absence",
            a.start_date.isoformat(),
            "All day",
            a.end_date.isoformat(),
            "-",
            "-",
            a.status.value,
            a.reason,
        ])

    return buffer.getvalue()


def schedule_to_dict(schedule: "CompleteSchedule") -> Dict[str, Any]:
    """JSON-ready view, bookings grouped by date."""
    by_date: Dict[str, list] = {}
    for b in schedule.bookings:
        by_date.setdefault(b.day.isoformat(), []).append(b.model_dump(mode='json'))

    return {
        "provider_id": schedule.provider_id,
        "period": {"start": schedule.period_start.isoformat(), "end": schedule.period_end.isoformat()},
        "availabilities": [a.model_dump(mode='json') for a in schedule.availabilities],
        "bookings": by_date,
        "absences": [a.model_dump(mode='json') for a in schedule.absences],
        "conflicts": [c.to_dict() for c in schedule.conflicts],
    }
