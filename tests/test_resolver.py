"""Tests for turning conflict groups into merge decisions."""

import pytest

from activity_ledger.conflicts import detect_conflicts
from activity_ledger.models import (
    ActivityRef,
    AdjustmentPlan,
    ConflictResolution,
    MergeDecision,
    MergeStrategy,
    SourceType,
)
from activity_ledger.resolver import (
    adjust_overlaps,
    find_mergeable_groups,
    keep_one,
    resolve,
    resolve_conflict,
)


@pytest.fixture
def group(make_interval):
    early = make_interval(1, (9, 0), (10, 0))
    long_one = make_interval(2, (9, 15), (11, 0), source=SourceType.AUTOMATIC, label="Code")
    late = make_interval(3, (10, 30), (11, 30), source=SourceType.POMODORO, label="Focus")
    (found,) = detect_conflicts([early, long_one, late])
    return found


def test_longest_keeps_its_own_bounds(group, at):
    decision = resolve(group, MergeStrategy.LONGEST)

    assert decision.survivor.ref == ActivityRef(2, SourceType.AUTOMATIC)
    assert (decision.survivor.start, decision.survivor.end) == (at(9, 15), at(11))
    assert decision.widened is False
    assert set(decision.discard) == {
        ActivityRef(1, SourceType.MANUAL),
        ActivityRef(3, SourceType.POMODORO),
    }


def test_earliest_is_stretched_over_the_group(group, at):
    decision = resolve(group, "earliest")

    assert decision.survivor.ref == ActivityRef(1, SourceType.MANUAL)
    assert (decision.survivor.start, decision.survivor.end) == (at(9), at(11, 30))
    assert decision.survivor.recorded_duration == 2.5 * 3600
    assert decision.widened is True


def test_latest_is_stretched_over_the_group(group, at):
    decision = resolve(group, MergeStrategy.LATEST)

    assert decision.survivor.ref == ActivityRef(3, SourceType.POMODORO)
    assert (decision.survivor.start, decision.survivor.end) == (at(9), at(11, 30))


def test_manual_selection_of_a_short_record_widens_it(group, at):
    decision = resolve(
        group,
        MergeStrategy.MANUAL_SELECTION,
        survivor_id=ActivityRef(1, SourceType.MANUAL),
    )

    assert decision.survivor.ref == ActivityRef(1, SourceType.MANUAL)
    assert (decision.survivor.start, decision.survivor.end) == (at(9), at(11, 30))
    assert ActivityRef(1, SourceType.MANUAL) not in decision.discard


def test_manual_selection_of_the_longest_record_keeps_bounds(group, at):
    decision = resolve(
        group,
        MergeStrategy.MANUAL_SELECTION,
        survivor_id=ActivityRef(2, SourceType.AUTOMATIC),
    )

    assert (decision.survivor.start, decision.survivor.end) == (at(9, 15), at(11))
    assert decision.widened is False


def test_manual_selection_requires_a_member(group):
    with pytest.raises(ValueError):
        resolve(group, MergeStrategy.MANUAL_SELECTION)
    with pytest.raises(ValueError):
        resolve(
            group,
            MergeStrategy.MANUAL_SELECTION,
            survivor_id=ActivityRef(99, SourceType.MANUAL),
        )


def test_widen_forces_the_group_span(group, at):
    decision = resolve(group, MergeStrategy.LONGEST, widen=True)

    assert decision.survivor.ref == ActivityRef(2, SourceType.AUTOMATIC)
    assert (decision.survivor.start, decision.survivor.end) == (at(9), at(11, 30))
    assert decision.widened is True


@pytest.mark.parametrize("strategy", list(MergeStrategy))
def test_survivor_never_shrinks_coverage(group, strategy):
    longest = max(member.duration_seconds for member in group.members)

    decision = resolve(group, strategy, survivor_id=ActivityRef(3, SourceType.POMODORO))

    assert decision.survivor.duration_seconds >= longest
    assert len(decision.discard) == len(group.members) - 1
    assert decision.survivor.ref not in decision.discard


def test_survivor_metadata_is_carried_over(make_interval):
    first = make_interval(1, (9, 0), (10, 0), references={"category_id": 4})
    second = make_interval(2, (9, 30), (10, 30))
    (group,) = detect_conflicts([first, second])

    decision = resolve(group, MergeStrategy.EARLIEST)

    assert decision.survivor.references == {"category_id": 4}
    assert first.end.hour == 10


def test_longest_tie_goes_to_the_earlier_record(make_interval):
    first = make_interval(1, (9, 0), (10, 0))
    second = make_interval(2, (9, 30), (10, 30))
    (group,) = detect_conflicts([second, first])

    assert resolve(group, MergeStrategy.LONGEST).survivor.id == 1


def test_unknown_strategy_is_rejected(group):
    with pytest.raises(ValueError):
        resolve(group, "shortest")


def test_keep_one_defaults_to_the_first_record(group):
    decision = keep_one(group)

    assert decision.survivor.ref == ActivityRef(1, SourceType.MANUAL)
    assert decision.resolution is ConflictResolution.DELETE_ONE
    assert decision.widened is False
    assert len(decision.discard) == 2


def test_keep_one_rejects_outsiders(group):
    with pytest.raises(ValueError):
        keep_one(group, ActivityRef(9, SourceType.MANUAL))


def test_adjust_overlaps_trims_each_end_to_the_next_start(group, at):
    plan = adjust_overlaps(group)

    assert [(item.id, item.start, item.end) for item in plan.updates] == [
        (1, at(9), at(9, 15)),
        (2, at(9, 15), at(10, 30)),
    ]
    assert plan.updates[1].recorded_duration == 75 * 60
    assert plan.discard == ()
    assert detect_conflicts([*plan.updates, group.members[2]]) == []


def test_adjust_overlaps_discards_records_that_would_collapse(make_interval):
    first = make_interval(1, (9, 0), (10, 0))
    second = make_interval(2, (9, 0), (10, 30))
    (found,) = detect_conflicts([first, second])

    plan = adjust_overlaps(found)

    assert plan.updates == ()
    assert plan.discard == (ActivityRef(1, SourceType.MANUAL),)


@pytest.mark.parametrize(
    "resolution, expected",
    [
        ("merge", MergeDecision),
        ("delete_one", MergeDecision),
        ("adjust_time", AdjustmentPlan),
    ],
)
def test_resolve_conflict_dispatches_on_resolution(group, resolution, expected):
    plan = resolve_conflict(group, resolution)

    assert isinstance(plan, expected)
    assert plan.resolution is ConflictResolution(resolution)


def test_mergeable_groups_stay_within_one_source(make_interval):
    intervals = [
        make_interval(1, (9, 0), (9, 30)),
        make_interval(2, (9, 34), (10, 0)),
        make_interval(3, (10, 20), (11, 0)),
        make_interval(4, (9, 31), (9, 33), source=SourceType.AUTOMATIC),
        make_interval(5, (9, 36), (9, 50), source=SourceType.AUTOMATIC),
    ]

    groups = find_mergeable_groups(intervals)

    assert [[ref.id for ref in found.refs] for found in groups] == [[1, 2], [4, 5]]
    assert [found.source_type for found in groups] == [SourceType.MANUAL, SourceType.AUTOMATIC]
    assert [ref.id for ref in find_mergeable_groups(intervals, 1200)[0].refs] == [1, 2, 3]


def test_mergeable_groups_skip_open_records(make_interval):
    intervals = [
        make_interval(1, (9, 0), (9, 30)),
        make_interval(2, (9, 31), None, completed=False),
    ]

    assert find_mergeable_groups(intervals) == []
    with pytest.raises(ValueError):
        find_mergeable_groups(intervals, -1)
