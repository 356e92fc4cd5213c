import json

from chime.datamodel import Reminder, ReminderKind
from chime.utils import format_12h, parse_hh_mm


def test_from_row_decodes_json_columns_and_aliases():
    reminder = Reminder.from_row({
        "id": "r1",
        "type": "refresher",
        "recurrence_type": "weekly",
        "recurrence_data": json.dumps({"daysOfWeek": ["Fri"]}),
        "time": "17:45",
        "project_managers": json.dumps(["pm-1", "pm-2"]),
        "message": "Friday wrap-up",
    })
    assert reminder.kind is ReminderKind.REFRESHER
    assert reminder.kind.label == "Daily Refresher"
    assert reminder.recurrence_data == {"daysOfWeek": ["Fri"]}
    assert reminder.is_visible_to("pm-2")
    assert not reminder.is_visible_to("pm-3")
    assert not reminder.is_visible_to(None)


def test_from_row_tolerates_broken_columns():
    reminder = Reminder.from_row({
        "id": 7,
        "kind": "mystery",
        "recurrence_type": None,
        "recurrence_data": "{not json",
        "recipients": None,
        "message": None,
    })
    assert reminder.id == "7"
    assert reminder.kind is ReminderKind.TASK
    assert reminder.recurrence_type == ""
    assert reminder.recurrence_data == {}
    assert reminder.recipients == frozenset()
    assert reminder.time == "09:00"


def test_time_helpers():
    assert parse_hh_mm("9:05") == (9, 5)
    assert parse_hh_mm("24:00") is None
    assert parse_hh_mm("noon") is None
    assert format_12h(0, 0) == "12:00 am"
    assert format_12h(12, 30) == "12:30 pm"
    assert format_12h(9, 5) == "9:05 am"
