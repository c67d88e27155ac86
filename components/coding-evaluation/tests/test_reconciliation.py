import json

import pytest

from coding_evaluation.normalizer import normalize_coding_result
from coding_evaluation.reconciliation import (
    average_accuracy,
    compare_codes,
    compare_scalar,
    reconcile,
    round_percentage,
)
from coding_shared.models import CodingResult, FieldScore, build_coding_result


class TestVacuousAgreement:
    def test_empty_results_score_100(self) -> None:
        report = reconcile(CodingResult(), CodingResult())

        assert report.percentage == 100.0
        assert report.total_fields == 0
        assert report.correct_fields == 0

    def test_empty_scalar_fields_report_no_match(self) -> None:
        report = reconcile(CodingResult(), CodingResult())

        assert report.field_details["admit_dx"].match is False
        assert report.field_details["pdx"].match is False
        assert report.field_details["modifier"].match is False


class TestExactMatch:
    def test_identical_results_score_100(self) -> None:
        result = build_coding_result()

        report = reconcile(result, result)

        assert report.percentage == 100.0
        assert report.correct_fields == report.total_fields == 7

    def test_single_field_identical_scores_100(self) -> None:
        result = CodingResult(procedure_codes=("45378",))

        assert reconcile(result, result).percentage == 100.0


class TestScalarFields:
    def test_singleton_disagreement_scores_0(self) -> None:
        report = reconcile(
            CodingResult(admit_diagnosis="A"), CodingResult(admit_diagnosis="B")
        )

        assert report.percentage == 0.0
        assert report.total_fields == 1
        assert report.field_scores["admit_dx"] == FieldScore(correct=0, total=1)

    def test_one_side_absent_counts_as_mismatch(self) -> None:
        comparison, score = compare_scalar("PT", "")

        assert comparison.match is False
        assert score == FieldScore(correct=0, total=1)

    def test_both_absent_is_excluded_from_denominator(self) -> None:
        ai = CodingResult(
            admit_diagnosis="D50.9",
            principal_diagnosis="K44.9",
            secondary_diagnoses=("I10",),
            procedure_codes=("45378",),
        )
        user = CodingResult(
            admit_diagnosis="D64.9",
            principal_diagnosis="K21.9",
            secondary_diagnoses=("E78.5",),
            procedure_codes=("43235",),
        )

        report = reconcile(ai, user)

        assert report.field_scores["modifier"] == FieldScore(correct=0, total=0)
        assert report.field_scores["admit_dx"].total == 1
        assert report.field_scores["pdx"].total == 1
        assert report.field_scores["sdx"].total == 2
        assert report.field_scores["cpt"].total == 2
        assert report.total_fields == 6
        assert report.percentage == 0.0

    def test_codes_are_compared_case_sensitively(self) -> None:
        comparison, _ = compare_scalar("k44.9", "K44.9")

        assert comparison.match is False

    def test_numeric_model_modifier_matches_reviewer_text(self) -> None:
        report = reconcile(
            normalize_coding_result({"modifier": 59}),
            normalize_coding_result({"modifier": "59"}),
        )

        assert report.field_scores["modifier"] == FieldScore(correct=1, total=1)
        assert report.percentage == 100.0


class TestSetFields:
    def test_set_reconciliation_example(self) -> None:
        comparison, score = compare_codes(["I10", "E78.5"], ["E78.5", "Z79.01"])

        assert comparison.matches == ("E78.5",)
        assert comparison.removals == ("I10",)
        assert comparison.additions == ("Z79.01",)
        assert score == FieldScore(correct=1, total=3)

    def test_duplicates_collapse_in_every_set_operation(self) -> None:
        comparison, score = compare_codes(
            ["I10", "I10", "E78.5", "K92.1", "K92.1"],
            ["E78.5", "E78.5", "Z79.01", "Z79.01"],
        )

        assert comparison.ai == ("I10", "I10", "E78.5", "K92.1", "K92.1")
        assert comparison.matches == ("E78.5",)
        assert comparison.removals == ("I10", "K92.1")
        assert comparison.additions == ("Z79.01",)
        assert score == FieldScore(correct=1, total=4)

    def test_order_is_taken_from_each_side(self) -> None:
        comparison, _ = compare_codes(["C", "B", "A"], ["Z", "A", "Y", "C"])

        assert comparison.matches == ("C", "A")
        assert comparison.additions == ("Z", "Y")
        assert comparison.removals == ("B",)

    def test_empty_sets_contribute_nothing(self) -> None:
        _, score = compare_codes([], [])

        assert score == FieldScore(correct=0, total=0)


class TestPercentage:
    def test_rounds_to_two_decimals(self) -> None:
        assert round_percentage(1, 3) == 33.33
        assert round_percentage(2, 3) == 66.67

    def test_rounding_is_half_up(self) -> None:
        assert round_percentage(1, 8) == 12.5
        assert round_percentage(1, 16) == 6.25
        assert round_percentage(1, 1600) == 0.06

    def test_zero_total_raises(self) -> None:
        with pytest.raises(ValueError):
            round_percentage(0, 0)

    def test_mixed_report(self) -> None:
        ai = normalize_coding_result(
            {
                "admit_dx": "D50.9",
                "pdx": "K44.9",
                "sdx": ["I10", "E78.5"],
                "cpt": ["45378", "43235"],
                "modifier": "PT",
            }
        )
        user = normalize_coding_result(
            {
                "admit_dx": "D50.9",
                "pdx": "K21.9",
                "sdx": ["E78.5", "Z79.01"],
                "cpt": ["45378", "43235"],
                "modifier": "",
            }
        )

        report = reconcile(ai, user)

        # admit 1/1, pdx 0/1, sdx 1/3, cpt 2/2, modifier 0/1
        assert report.correct_fields == 4
        assert report.total_fields == 8
        assert report.percentage == 50.0


class TestIdempotence:
    def test_repeated_calls_serialize_identically(self) -> None:
        ai = build_coding_result()
        user = build_coding_result(
            principal_diagnosis="K21.9", secondary_diagnoses=["E78.5", "Z79.01"]
        )

        first = json.dumps(reconcile(ai, user).to_dict())
        second = json.dumps(reconcile(ai, user).to_dict())

        assert first == second

    def test_inputs_are_not_mutated(self) -> None:
        ai = build_coding_result()
        user = build_coding_result(procedure_codes=["45378"])
        before = (ai.to_dict(), user.to_dict())

        reconcile(ai, user)

        assert (ai.to_dict(), user.to_dict()) == before


class TestAverageAccuracy:
    def test_average_of_percentages(self) -> None:
        assert average_accuracy([100.0, 50.0, 33.33]) == 61.11

    def test_missing_values_count_as_zero(self) -> None:
        assert average_accuracy([100.0, None]) == 50.0

    def test_empty_returns_zero(self) -> None:
        assert average_accuracy([]) == 0.0
