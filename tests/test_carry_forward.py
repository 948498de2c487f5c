from datetime import date

from conftest import make_record

from app.metrics import CumulativeSeed, carry_forward, cumulative_before


def _rfd(record_date, shift, rfd, dispatched=0, part="Lay shaft assy"):
    return make_record(
        record_date,
        part,
        shift,
        dispatch__rfd__cumulative=rfd,
        dispatch__dispatch__cumulative=dispatched,
    )


def test_no_prior_record_returns_zero_seed():
    records = [_rfd("2024-06-10", "A", 50), _rfd("2024-06-09", "A", 70, part="Input shaft")]

    seed = cumulative_before(records, "Lay shaft assy", "2024-06-10", "A")

    assert seed == CumulativeSeed(0, 0)


def test_earlier_day_uses_latest_shift_of_that_day():
    records = [
        _rfd("2024-06-09", "A", 20, 5),
        _rfd("2024-06-09", "B", 35, 12),
        _rfd("2024-06-08", "B", 10, 1),
    ]

    seed = cumulative_before(records, "Lay shaft assy", date(2024, 6, 10), "A")

    assert seed == CumulativeSeed(cumulative_rfd=35, cumulative_dispatch=12)


def test_shift_b_inherits_from_shift_a_of_same_day():
    records = [_rfd("2024-06-10", "A", 40, 8)]

    assert cumulative_before(records, "Lay shaft assy", "2024-06-10", "B") == CumulativeSeed(40, 8)


def test_shift_a_never_inherits_from_shift_b_of_same_day():
    records = [_rfd("2024-06-10", "B", 40, 8), _rfd("2024-06-09", "B", 25, 3)]

    assert cumulative_before(records, "Lay shaft assy", "2024-06-10", "A") == CumulativeSeed(25, 3)


def test_other_parts_are_ignored():
    records = [_rfd("2024-06-09", "B", 99, part="Input shaft"), _rfd("2024-06-08", "A", 7)]

    assert cumulative_before(records, "Lay shaft assy", "2024-06-10", "A").cumulative_rfd == 7


def test_inserting_between_records_leaves_outside_seeds_unchanged():
    records = [_rfd("2024-06-01", "A", 10), _rfd("2024-06-20", "A", 80)]
    before_early = cumulative_before(records, "Lay shaft assy", "2024-06-02", "A")
    after_late = cumulative_before(records, "Lay shaft assy", "2024-06-25", "A")

    records.append(_rfd("2024-06-10", "B", 45))

    assert cumulative_before(records, "Lay shaft assy", "2024-06-02", "A") == before_early
    assert cumulative_before(records, "Lay shaft assy", "2024-06-25", "A") == after_late
    assert cumulative_before(records, "Lay shaft assy", "2024-06-11", "A").cumulative_rfd == 45


def test_carry_forward_adds_todays_quantities():
    records = [_rfd("2024-06-09", "B", 30, 10)]

    totals = carry_forward(records, "Lay shaft assy", "2024-06-10", "A", rfd_today=12, dispatch_today=4)

    assert totals == CumulativeSeed(cumulative_rfd=42, cumulative_dispatch=14)


def test_unparseable_target_date_returns_zero_seed():
    assert cumulative_before([_rfd("2024-06-09", "A", 30)], "Lay shaft assy", "soon", "A") == CumulativeSeed()
