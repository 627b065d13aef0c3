import csv
import io
from datetime import date, time

from models import Absence, Availability
from planning.export import CSV_HEADER, schedule_to_csv, schedule_to_dict
from planning.service import CompleteSchedule

from tests.helpers import MONDAY, at, make_booking


def _schedule():
    return CompleteSchedule(
        provider_id="prov_01",
        period_start=MONDAY,
        period_end=date(2025, 1, 19),
        availabilities=[Availability(id="av_1", provider_id="prov_01", day_of_week=0,
                                     start_time=time(9, 0), end_time=time(12, 0))],
        bookings=[
            make_booking("bk_1", at(MONDAY, 9), address="1 rue A", client_name="Mme Petit", notes="Code 42, 2nd floor"),
            make_booking("bk_2", at(MONDAY, 10, 30), address="2 rue B"),
        ],
        absences=[Absence(id="abs_1", provider_id="prov_01", start_date=date(2025, 1, 16),
                          end_date=date(2025, 1, 17), reason="training")],
        conflicts=[]
    )


def test_csv_rows():
    rows = list(csv.reader(io.StringIO(schedule_to_csv(_schedule()))))
    assert rows[0] == CSV_HEADER
    assert rows[1] == ["Booking", "2025-01-13", "09:00", "10:00", "Mme Petit", "1 rue A", "confirmed", "Code 42, 2nd floor"]
    assert rows[2][4] == ""
    assert rows[3] == ["Absence", "2025-01-16", "All day", "2025-01-17", "-", "-", "active", "training"]
    assert len(rows) == 4


def test_dict_groups_bookings_by_date():
    payload = schedule_to_dict(_schedule())
    assert payload["period"] == {"start": "2025-01-13", "end": "2025-01-19"}
    assert [b["id"] for b in payload["bookings"]["2025-01-13"]] == ["bk_1", "bk_2"]
    assert payload["availabilities"][0]["start_time"] == "09:00:00"
    assert payload["absences"][0]["reason"] == "training"
    assert payload["conflicts"] == []
