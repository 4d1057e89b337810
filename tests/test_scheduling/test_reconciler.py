"""Tests for availability reconciliation."""

import itertools
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from clinic_calendar.diagnostics import EventType
from clinic_calendar.scheduling import AvailabilityReconciler, TimeOffBlock
from tests.conftest import CHICAGO, MONDAY, make_exception, make_rule

CT = ZoneInfo(CHICAGO)


def _local(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=CT)


def _spans(blocks):
    return [(b.start.astimezone(CT).strftime("%H:%M"), b.end.astimezone(CT).strftime("%H:%M")) for b in blocks]


@pytest.fixture
def reconciler(tz, diagnostics):
    return AvailabilityReconciler(tz, diagnostics)


# ------------------------------------------------------------ exception rules

class TestExceptionPrecedence:
    def test_modified_occurrence_replaces_rule(self, reconciler):
        rule = make_rule(start="09:00", end="12:00")
        exc = make_exception(start="10:00", end="11:00")

        blocks = reconciler.reconcile(MONDAY, [rule], [exc], CHICAGO)

        assert len(blocks) == 1
        assert blocks[0].start == _local(MONDAY, 10)
        assert blocks[0].end == _local(MONDAY, 11)
        assert blocks[0].is_exception is True
        assert blocks[0].is_standalone is False
        assert blocks[0].source_ids == ("exc-1",)

    def test_deleted_occurrence_is_empty(self, reconciler):
        rule = make_rule(start="09:00", end="12:00")
        exc = make_exception(is_deleted=True)
        assert reconciler.reconcile(MONDAY, [rule], [exc], CHICAGO) == []

    def test_deleted_exception_with_times_still_suppresses(self, reconciler):
        rule = make_rule(start="09:00", end="12:00")
        exc = make_exception(start="10:00", end="11:00", is_deleted=True)
        assert reconciler.reconcile(MONDAY, [rule], [exc], CHICAGO) == []

    def test_exception_without_times_suppresses_rule(self, reconciler):
        rule = make_rule(start="09:00", end="12:00")
        exc = make_exception()
        assert reconciler.reconcile(MONDAY, [rule], [exc], CHICAGO) == []

    def test_exception_on_other_date_is_ignored(self, reconciler):
        rule = make_rule(start="09:00", end="12:00")
        exc = make_exception(specific_date=date(2025, 6, 16), is_deleted=True)
        blocks = reconciler.reconcile(MONDAY, [rule], [exc], CHICAGO)
        assert _spans(blocks) == [("09:00", "12:00")]

    def test_only_referenced_rule_is_suppressed(self, reconciler):
        morning = make_rule("rule-1", start="09:00", end="10:00")
        afternoon = make_rule("rule-2", start="14:00", end="15:00")
        exc = make_exception(original_availability_id="rule-1", is_deleted=True)

        blocks = reconciler.reconcile(MONDAY, [morning, afternoon], [exc], CHICAGO)

        assert _spans(blocks) == [("14:00", "15:00")]
        assert blocks[0].source_ids == ("rule-2",)

    def test_last_listed_duplicate_wins(self, reconciler):
        rule = make_rule(start="09:00", end="12:00")
        first = make_exception("exc-1", start="10:00", end="11:00")
        second = make_exception("exc-2", is_deleted=True)
        assert reconciler.reconcile(MONDAY, [rule], [first, second], CHICAGO) == []
        assert _spans(reconciler.reconcile(MONDAY, [rule], [second, first], CHICAGO)) == [("10:00", "11:00")]

    def test_standalone_addition(self, reconciler):
        exc = make_exception(original_availability_id=None, start="18:00", end="19:30")
        blocks = reconciler.reconcile(MONDAY, [], [exc], CHICAGO)
        assert _spans(blocks) == [("18:00", "19:30")]
        assert blocks[0].is_standalone is True
        assert blocks[0].is_exception is False

    @pytest.mark.parametrize(
        "exc_kwargs, expected",
        [
            ({"is_deleted": True}, []),
            ({"start": "10:00", "end": "11:00"}, [("10:00", "11:00")]),
            ({}, []),
        ],
    )
    def test_rule_never_survives_its_exception(self, reconciler, exc_kwargs, expected):
        rule = make_rule(start="08:00", end="17:00")
        exc = make_exception(**exc_kwargs)
        blocks = reconciler.reconcile(MONDAY, [rule], [exc], CHICAGO)
        assert _spans(blocks) == expected
        assert all("rule-1" not in b.source_ids for b in blocks)


# ------------------------------------------------------------- rule selection

class TestRuleSelection:
    def test_other_weekday_ignored(self, reconciler):
        rule = make_rule(day="Tuesday")
        assert reconciler.reconcile(MONDAY, [rule], [], CHICAGO) == []

    def test_inactive_rule_ignored(self, reconciler):
        rule = make_rule(active=False)
        assert reconciler.reconcile(MONDAY, [rule], [], CHICAGO) == []

    def test_default_zone_used(self, reconciler):
        blocks = reconciler.reconcile(MONDAY, [make_rule()], [])
        assert blocks[0].start == _local(MONDAY, 9)

    def test_blocks_are_in_requested_zone(self, reconciler):
        blocks = reconciler.reconcile(MONDAY, [make_rule()], [], "Europe/London")
        assert blocks[0].start == datetime(2025, 6, 9, 9, 0, tzinfo=ZoneInfo("Europe/London"))
        assert blocks[0].day == MONDAY


# ------------------------------------------------------------------- merging

class TestMerging:
    def test_adjacent_rules_merge(self, reconciler):
        rules = [make_rule("rule-1", start="09:00", end="10:00"), make_rule("rule-2", start="10:00", end="11:00")]
        blocks = reconciler.reconcile(MONDAY, rules, [], CHICAGO)
        assert _spans(blocks) == [("09:00", "11:00")]
        assert blocks[0].source_ids == ("rule-1", "rule-2")

    def test_gap_is_kept(self, reconciler):
        rules = [make_rule("rule-1", start="09:00", end="10:00"), make_rule("rule-2", start="10:30", end="11:00")]
        assert _spans(reconciler.reconcile(MONDAY, rules, [], CHICAGO)) == [("09:00", "10:00"), ("10:30", "11:00")]

    def test_contained_interval_keeps_outer_end(self, reconciler):
        rules = [make_rule("rule-1", start="09:00", end="17:00"), make_rule("rule-2", start="10:00", end="11:00")]
        blocks = reconciler.reconcile(MONDAY, rules, [], CHICAGO)
        assert _spans(blocks) == [("09:00", "17:00")]
        assert blocks[0].source_ids == ("rule-1", "rule-2")

    def test_flags_are_combined(self, reconciler):
        rule = make_rule("rule-9", start="08:00", end="10:00")
        addition = make_exception("exc-9", original_availability_id=None, start="09:30", end="12:00")
        blocks = reconciler.reconcile(MONDAY, [rule], [addition], CHICAGO)
        assert _spans(blocks) == [("08:00", "12:00")]
        assert blocks[0].is_standalone is True
        assert blocks[0].contains_override is True

    def test_input_order_does_not_matter(self, reconciler):
        rules = [
            make_rule("rule-1", start="09:00", end="10:00"),
            make_rule("rule-2", start="09:30", end="11:00"),
            make_rule("rule-3", start="13:00", end="14:00"),
            make_rule("rule-4", start="09:00", end="10:00"),
        ]
        exceptions = [
            make_exception("exc-1", original_availability_id="rule-3", start="13:30", end="15:00"),
            make_exception("exc-2", original_availability_id=None, start="16:00", end="17:00"),
        ]
        expected = reconciler.reconcile(MONDAY, rules, exceptions, CHICAGO)
        for rule_order in itertools.permutations(rules):
            for exc_order in itertools.permutations(exceptions):
                assert reconciler.reconcile(MONDAY, list(rule_order), list(exc_order), CHICAGO) == expected


# ------------------------------------------------------- clock changes/range

class TestEdgeCases:
    def test_interval_collapsed_by_clock_change_is_reported(self, reconciler, diagnostics):
        # 2025-03-09 is a Sunday; 02:30 does not exist in Chicago and moves to 03:30
        rule = make_rule(day="Sunday", start="02:30", end="03:00")
        assert reconciler.reconcile(date(2025, 3, 9), [rule], [], CHICAGO) == []

        events = diagnostics.of_type(EventType.RECORD_EXCLUDED)
        assert len(events) == 1
        assert events[0].record_id == "rule-1"
        assert events[0].error_type == "ConversionError"

    def test_reconcile_range(self, reconciler):
        rule = make_rule(start="09:00", end="12:00")
        exc = make_exception(is_deleted=True)
        days = [MONDAY, date(2025, 6, 10), date(2025, 6, 16)]

        result = reconciler.reconcile_range(days, [rule], [exc], CHICAGO)

        assert result[MONDAY] == []
        assert result[date(2025, 6, 10)] == []
        assert _spans(result[date(2025, 6, 16)]) == [("09:00", "12:00")]


def _time_off(start, end, active=True):
    return TimeOffBlock(id="off-1", clinician_id="clinician-1", start_date=start, end_date=end, active=active)


class TestTimeOff:
    def test_time_off_clears_the_day(self, reconciler):
        standalone = make_exception(exc_id="extra", original_availability_id=None, start="14:00", end="15:00")
        off = _time_off(MONDAY, MONDAY)

        assert reconciler.reconcile(MONDAY, [make_rule()], [standalone], CHICAGO, [off]) == []

    def test_range_is_inclusive(self, reconciler):
        rules = [make_rule(rule_id=f"rule-{d}", day=d) for d in ("Monday", "Tuesday", "Wednesday", "Thursday")]
        days = [MONDAY + timedelta(days=i) for i in range(4)]
        off = _time_off(date(2025, 6, 10), date(2025, 6, 11))

        result = reconciler.reconcile_range(days, rules, [], CHICAGO, [off])

        assert [day for day in days if result[day]] == [MONDAY, date(2025, 6, 12)]

    def test_inactive_time_off_is_ignored(self, reconciler):
        off = _time_off(MONDAY, MONDAY, active=False)
        result = reconciler.reconcile_range([MONDAY], [make_rule()], [], CHICAGO, [off])
        assert _spans(result[MONDAY]) == [("09:00", "12:00")]
