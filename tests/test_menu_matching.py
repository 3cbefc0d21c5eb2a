import pytest

from prompts.menu_matching import (
    HOSPITAL_NAMES,
    MIN_HOSPITAL_SCORE,
    MIN_TREATMENT_SCORE,
    TREATMENT_NAMES,
    match_hospital_name,
    match_treatment_name,
    normalize,
    similarity_score,
)


def test_reference_lists_are_immutable_tuples():
    assert isinstance(HOSPITAL_NAMES, tuple)
    assert isinstance(TREATMENT_NAMES, tuple)
    assert len(HOSPITAL_NAMES) == 14
    assert len(set(TREATMENT_NAMES)) == len(TREATMENT_NAMES)


def test_normalize_expands_abbreviations_and_strips_punctuation():
    assert normalize("Int'l. Centre") == "internationalcenter"
    assert normalize("Bumrungrad Intl") == normalize("Bumrungrad International")
    assert normalize("Medical") == "medical"
    assert normalize("  ") == ""


def test_similarity_score_bounds():
    assert similarity_score("Rhinoplasty", "rhinoplasty!") == 1.0
    assert similarity_score("abc", "") == 0.0
    assert 0.0 <= similarity_score("abc", "xyz") < 0.5


def test_hospital_long_form_matches_abbreviated_entry():
    result = match_hospital_name("Bumrungrad International")
    assert result.value == "Bumrungrad Intl"
    assert result.score >= MIN_HOSPITAL_SCORE


def test_unrelated_hospital_is_rejected_but_reports_score():
    result = match_hospital_name("Totally Unrelated Clinic XYZ")
    assert result.value is None
    assert 0.0 <= result.score < MIN_HOSPITAL_SCORE


@pytest.mark.parametrize("raw", ["", "   ", None, "!!!"])
def test_blank_input_short_circuits(raw):
    result = match_hospital_name(raw)
    assert result.value is None
    assert result.score == 0.0


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Rhinoplasty", "Rhinoplasty"),
        ("Rhinoplasti", "Rhinoplasty"),
        ("mri scan", "MRI Scan"),
        ("Hip and Knee Replacement", "Hip & Knee Replacement"),
    ],
)
def test_treatment_fuzzy_matches(raw, expected):
    result = match_treatment_name(raw)
    assert result.value == expected
    assert result.score >= MIN_TREATMENT_SCORE


def test_treatment_below_threshold():
    result = match_treatment_name("Hydration Drip")
    assert result.value is None
    assert result.score < MIN_TREATMENT_SCORE
