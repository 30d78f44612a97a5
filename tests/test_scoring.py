import pytest

from qbank_attempts.models.orm import QuestionType
from qbank_attempts.services.scoring import (
    CORRECT,
    INCORRECT,
    ScoringResult,
    calculate_total_score,
    score_image_map,
    score_mc_multi,
    score_question,
    score_slider,
)

REGIONS = {
    "regions": [
        {"id": "lv", "type": "circle", "cx": 100, "cy": 100, "r": 10},
        {"id": "ra", "type": "rect", "x": 10, "y": 20, "width": 30, "height": 40},
    ]
}


@pytest.mark.parametrize("response,expected", [
    ({"option_id": "a"}, CORRECT),
    ({"option_id": "b"}, INCORRECT),
    ({"option_id": ""}, INCORRECT),
    ({}, INCORRECT),
    ("a", INCORRECT),
])
def test_mc_single(response, expected):
    assert score_question(QuestionType.MC_SINGLE, response, {"option_id": "a"}) == expected


@pytest.mark.parametrize("picks,score", [
    (["a", "c"], 1.0),
    (["a"], 0.5),
    (["a", "b"], 0.0),
    (["a", "c", "b"], 0.5),
    (["b", "d"], 0.0),
    ([], 0.0),
    (["a", "a", "c"], 1.0),
])
def test_mc_multi_partial_credit(picks, score):
    result = score_mc_multi({"option_ids": picks}, {"option_ids": ["a", "c"]})
    assert result.score == pytest.approx(score)
    assert result.is_correct is (score == 1.0)


def test_mc_multi_empty_answer_key_scores_zero():
    assert score_mc_multi({"option_ids": ["a"]}, {"option_ids": []}) == INCORRECT


@pytest.mark.parametrize("value,expected", [(True, CORRECT), (False, INCORRECT), ("true", INCORRECT), (1, INCORRECT)])
def test_true_false_requires_boolean(value, expected):
    assert score_question(QuestionType.TRUE_FALSE, {"value": value}, {"value": True}) == expected


def test_drag_order_is_all_or_nothing():
    key = {"ordered_ids": ["x", "y", "z"]}
    assert score_question(QuestionType.DRAG_ORDER, {"ordered_ids": ["x", "y", "z"]}, key) == CORRECT
    assert score_question(QuestionType.DRAG_ORDER, {"ordered_ids": ["x", "z", "y"]}, key) == INCORRECT
    assert score_question(QuestionType.DRAG_ORDER, {"ordered_ids": ["x", "y"]}, key) == INCORRECT


@pytest.mark.parametrize("point,region,hit", [
    ((100, 100), "lv", True),
    ((110, 100), "lv", True),  # on the circle edge
    ((108, 108), "lv", False),
    ((10, 20), "ra", True),  # rect corner
    ((40, 60), "ra", True),
    ((41, 60), "ra", False),
    ((100, 100), "missing", False),
])
def test_image_map_regions(point, region, hit):
    x, y = point
    result = score_image_map({"x": x, "y": y}, {"region_id": region}, REGIONS)
    assert result.is_correct is hit


def test_image_map_rejects_non_numeric_clicks():
    assert score_image_map({"x": "100", "y": 100}, {"region_id": "lv"}, REGIONS) == INCORRECT
    assert score_image_map({"x": True, "y": 100}, {"region_id": "lv"}, REGIONS) == INCORRECT
    assert score_image_map({"x": 100, "y": 100}, {"region_id": "lv"}, None) == INCORRECT


@pytest.mark.parametrize("value,hit", [(70, True), (75, True), (65, True), (75.5, False), (60, False)])
def test_slider_tolerance_is_inclusive(value, hit):
    assert score_slider({"value": value}, {"value": 70, "tolerance": 5}).is_correct is hit


def test_slider_without_tolerance_needs_exact_value():
    assert score_slider({"value": 70}, {"value": 70}) == CORRECT
    assert score_slider({"value": 70.1}, {"value": 70}) == INCORRECT


def test_missing_response_scores_zero_for_every_type():
    for question_type in QuestionType:
        assert score_question(question_type, None, {"option_id": "a"}) == INCORRECT


def test_total_score_rounds_percentage_and_applies_pass_mark():
    results = [CORRECT, CORRECT, ScoringResult(0.5, False)]
    total = calculate_total_score(results, passing_score=80)
    assert total.score == 2.5
    assert total.max_score == 3
    assert total.percentage == 83.33
    assert total.passed is True

    assert calculate_total_score(results, passing_score=90).passed is False


def test_total_score_pass_mark_is_inclusive():
    total = calculate_total_score([CORRECT, CORRECT, CORRECT, INCORRECT], passing_score=75)
    assert total.percentage == 75.0
    assert total.passed is True


def test_total_score_of_nothing_is_zero():
    total = calculate_total_score([], passing_score=0)
    assert total.max_score == 0
    assert total.percentage == 0.0


@pytest.mark.parametrize("picks", [[["a"]], [{"id": "a"}], ["a", 1], [None]])
def test_mc_multi_non_string_picks_score_zero(picks):
    assert score_question(QuestionType.MC_MULTI, {"option_ids": picks}, {"option_ids": ["a", "c"]}) == INCORRECT


@pytest.mark.parametrize("click", [
    {"x": 10**400, "y": 100},
    {"x": 100, "y": -10**400},
    {"x": float("inf"), "y": 100},
    {"x": float("nan"), "y": 100},
])
def test_image_map_out_of_range_clicks_score_zero(click):
    assert score_question(QuestionType.IMAGE_MAP, click, {"region_id": "lv"}, REGIONS) == INCORRECT


def test_slider_out_of_range_value_scores_zero():
    assert score_question(QuestionType.SLIDER, {"value": 10**400}, {"value": 70.0, "tolerance": 5}) == INCORRECT
    assert score_question(QuestionType.SLIDER, {"value": float("nan")}, {"value": 70, "tolerance": 5}) == INCORRECT


def test_percentage_is_rounded_half_up():
    total = calculate_total_score([CORRECT, INCORRECT, INCORRECT], passing_score=0)
    assert total.percentage == 33.33
    total = calculate_total_score([CORRECT, CORRECT, INCORRECT], passing_score=0)
    assert total.percentage == 66.67
