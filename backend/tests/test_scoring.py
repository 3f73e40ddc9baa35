import pytest
from backend.worksphere.models import LatLng, Preferences, Venue
from backend.worksphere.pipeline.scoring import (
    NEUTRAL_SCORE,
    WEIGHTS,
    explain,
    score_breakdown,
    score_distance,
    score_noise,
    score_outlets,
    score_venues,
    summarize,
)


def build_venue(**overrides):
    base = dict(
        id="1",
        place_id="osm-1",
        name="Demo Cafe",
        position=LatLng(lat=37.775, lng=-122.419),
        category="cafe",
    )
    base.update(overrides)
    return Venue(**base)


@pytest.mark.parametrize("work_type", list(WEIGHTS))
def test_weight_rows_sum_to_one(work_type):
    assert WEIGHTS[work_type].total == pytest.approx(1.0)


@pytest.mark.parametrize("work_type", [*WEIGHTS, None])
def test_best_possible_venue_scores_exactly_ten(work_type):
    venue = build_venue(
        wifi_quality=5, has_outlets=True, noise_level="quiet", rating=5.0, distance=100
    )
    result = score_venues([venue], Preferences(work_type=work_type, amenities=["outlets"]))
    assert result.ranked_venues[0].score == 10.0


@pytest.mark.parametrize("work_type", [*WEIGHTS, None])
def test_unknown_amenities_score_neutral(work_type):
    breakdown = score_breakdown(build_venue(), Preferences(work_type=work_type))
    assert breakdown.wifi == NEUTRAL_SCORE
    assert breakdown.noise == NEUTRAL_SCORE
    assert breakdown.outlets == NEUTRAL_SCORE
    assert breakdown.rating == NEUTRAL_SCORE
    assert breakdown.distance == NEUTRAL_SCORE


def test_distance_score_never_increases_with_distance():
    distances = [0, 250, 499, 500, 999, 1000, 1999, 2000, 5000, 50_000]
    scores = [score_distance(d) for d in distances]
    assert scores == sorted(scores, reverse=True)
    assert score_distance(300) == 10
    assert score_distance(2500) == 4


def test_noise_adjusts_for_work_type():
    assert score_noise("loud", "focus") == 1
    assert score_noise("loud", "calls") == 1
    assert score_noise("loud", "collaboration") == 3
    assert score_noise("quiet", "casual") == 10  # bonus is clamped
    assert score_noise("moderate", "focus") == 6


def test_missing_outlets_only_penalized_when_requested():
    assert score_outlets(False, required=True) == 2
    assert score_outlets(False, required=False) == NEUTRAL_SCORE
    assert score_outlets(None, required=True) == NEUTRAL_SCORE


def test_ranking_is_descending_and_stable_for_ties():
    venues = [
        build_venue(id="a", name="First tie", wifi_quality=3),
        build_venue(id="b", name="Winner", wifi_quality=5, noise_level="quiet"),
        build_venue(id="c", name="Second tie", wifi_quality=3),
    ]
    result = score_venues(venues, Preferences(work_type="focus"))

    assert [v.id for v in result.ranked_venues] == ["b", "a", "c"]
    scores = [v.score for v in result.ranked_venues]
    assert scores == sorted(scores, reverse=True)


def test_empty_input_returns_no_results_summary():
    result = score_venues([], Preferences(work_type="calls"))
    assert result.ranked_venues == []
    assert result.summary == "No suitable workspaces found"
    assert result.recommendations


def test_reasoning_falls_back_to_decent_option():
    breakdown = score_breakdown(build_venue(), Preferences(work_type="casual"))
    assert explain(breakdown, "casual") == "Decent option for casual."


def test_reasoning_lists_strengths_and_weaknesses():
    venue = build_venue(wifi_quality=5, noise_level="loud", distance=200)
    result = score_venues([venue], Preferences(work_type="focus"))
    reasoning = result.ranked_venues[0].reasoning
    assert reasoning.startswith("Great for focus - excellent WiFi, very close.")
    assert "Note: noisy environment." in reasoning


def test_summary_names_top_pick():
    venue = build_venue(wifi_quality=5, has_outlets=True, noise_level="quiet", rating=4.5, distance=300)
    result = score_venues([venue], Preferences(work_type="focus"))
    assert summarize(result.ranked_venues).startswith("Found 1 workspace. Top pick: Demo Cafe")


def test_recommendations_flag_close_alternative():
    venues = [
        build_venue(id="a", name="Alpha", wifi_quality=5),
        build_venue(id="b", name="Beta", wifi_quality=5),
    ]
    result = score_venues(venues, Preferences(work_type="focus"))
    assert result.recommendations[0].startswith("Best overall: Alpha")
    assert result.recommendations[1].startswith("Very close alternative: Beta")
