from datetime import datetime, timedelta, timezone

import pytest

from mneme.application.scheduling.scheduler import (
    ButtonScaleStrategy,
    QualityScaleStrategy,
    compute_next_state,
    get_strategy,
    normalize_state,
    round_half_up,
)
from mneme.domain.errors import ValidationError
from mneme.domain.scheduling.models import CardScheduleState, Rating, RatingScale

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def state(interval=0, ease=250, reps=0):
    return CardScheduleState(interval=interval, ease_factor=ease, repetitions=reps)


# --- Quality scale (0-5) ---


def test_quality_first_perfect_review():
    result = compute_next_state(5, state(), now=NOW)
    assert result.interval == 1
    assert result.repetitions == 1
    assert result.ease_factor == 260
    assert result.next_review_at == NOW + timedelta(days=1)


def test_quality_first_barely_passing_review():
    result = compute_next_state(3, state(), now=NOW)
    assert (result.interval, result.repetitions, result.ease_factor) == (1, 1, 236)


def test_quality_second_review_is_six_days():
    result = compute_next_state(4, state(1, 250, 1), now=NOW)
    assert result.interval == 6
    assert result.repetitions == 2
    assert result.ease_factor == 250


def test_quality_third_review_multiplies_by_ease():
    result = compute_next_state(5, state(6, 250, 2), now=NOW)
    assert result.interval == 15
    assert result.repetitions == 3
    assert result.next_review_at == NOW + timedelta(days=15)


def test_quality_lapse_resets_and_lowers_ease():
    result = compute_next_state(2, state(15, 260, 3), now=NOW)
    assert result.interval == 0
    assert result.repetitions == 0
    assert result.ease_factor == 228
    # Lapsed cards come back the next day
    assert result.next_review_at == NOW + timedelta(days=1)


@pytest.mark.parametrize("quality", [0, 1, 2])
def test_quality_every_failing_grade_is_a_lapse(quality):
    result = compute_next_state(quality, state(40, 250, 7), now=NOW)
    assert result.interval == 0
    assert result.repetitions == 0


def test_ease_never_drops_below_floor():
    current = state(0, 130, 0)
    for _ in range(5):
        current = compute_next_state(0, current, now=NOW)
        assert current.ease_factor == 130


def test_ease_floor_applies_to_success_too():
    result = compute_next_state(3, state(6, 135, 2), now=NOW)
    assert result.ease_factor == 130


def test_sustained_perfect_reviews_grow_interval():
    current = state()
    intervals = []
    for _ in range(6):
        current = compute_next_state(5, current, now=NOW)
        intervals.append(current.interval)
    assert intervals[:2] == [1, 6]
    assert all(b > a for a, b in zip(intervals, intervals[1:]))
    assert current.repetitions == 6


def test_higher_quality_never_gives_shorter_interval():
    for reps, interval in [(0, 0), (1, 1), (2, 6), (5, 40)]:
        results = [
            compute_next_state(q, state(interval, 250, reps), now=NOW).interval
            for q in range(3, 6)
        ]
        assert results == sorted(results)


def test_new_card_defaults_when_state_missing():
    assert compute_next_state(5, None, now=NOW) == compute_next_state(5, state(), now=NOW)


def test_negative_and_missing_fields_use_defaults():
    assert normalize_state(-3, None, -1) == state(0, 250, 0)
    assert normalize_state(None, 0, None) == state(0, 250, 0)


def test_computation_is_deterministic():
    a = compute_next_state(4, state(6, 245, 2), now=NOW)
    b = compute_next_state(4, state(6, 245, 2), now=NOW)
    assert a == b


@pytest.mark.parametrize("bad", [-1, 6, 100])
def test_quality_out_of_range_rejected(bad):
    with pytest.raises(ValidationError) as exc:
        compute_next_state(bad, state(), now=NOW)
    assert exc.value.field == "rating"


@pytest.mark.parametrize("bad", [True, 3.0, "4", None])
def test_quality_non_integer_rejected(bad):
    with pytest.raises(ValidationError):
        compute_next_state(bad, state(), now=NOW)


# --- Button scale (1-4) ---


def test_button_again_is_due_now_and_keeps_ease():
    result = compute_next_state(1, state(10, 240, 4), scale="button", now=NOW)
    assert result.interval == 0
    assert result.repetitions == 0
    assert result.ease_factor == 240
    assert result.next_review_at == NOW


@pytest.mark.parametrize(
    "rating, expected_interval, expected_ease",
    [(2, 1, 236), (3, 1, 250), (4, 4, 260)],
)
def test_button_first_review_table(rating, expected_interval, expected_ease):
    result = compute_next_state(rating, state(), scale=RatingScale.BUTTON, now=NOW)
    assert result.interval == expected_interval
    assert result.ease_factor == expected_ease
    assert result.repetitions == 1


@pytest.mark.parametrize("rating, expected_interval", [(2, 3), (3, 6), (4, 10)])
def test_button_second_review_table(rating, expected_interval):
    result = compute_next_state(rating, state(1, 250, 1), scale="button", now=NOW)
    assert result.interval == expected_interval
    assert result.repetitions == 2


def test_button_mature_review_uses_ease():
    result = compute_next_state(3, state(10, 250, 2), scale="button", now=NOW)
    assert result.interval == 25
    assert result.next_review_at == NOW + timedelta(days=25)


@pytest.mark.parametrize("bad", [0, 5])
def test_button_out_of_range_rejected(bad):
    with pytest.raises(ValidationError):
        compute_next_state(bad, state(), scale="button", now=NOW)


def test_weak_recall_threshold():
    button = ButtonScaleStrategy()
    quality = QualityScaleStrategy()
    assert [button.is_weak(r) for r in (1, 2, 3, 4)] == [True, True, False, False]
    assert [quality.is_weak(q) for q in (3, 4, 5)] == [True, False, False]


def test_button_maps_onto_quality_scale():
    assert [Rating(RatingScale.BUTTON, v).quality for v in (1, 2, 3, 4)] == [2, 3, 4, 5]


def test_unknown_scale_rejected():
    with pytest.raises(ValidationError) as exc:
        get_strategy("stars")
    assert exc.value.field == "scale"


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(14.5) == 15
    assert round_half_up(14.49) == 14
    assert round_half_up(-13.6) == -14
