"""
Consolidation Engine Tests

Golden numbers for the reference run, empty consolidation, malformed
input and metamorphic relations (idempotence, order independence).
"""

import json

import pytest

from audit_config import EngineSettings
from audit_models import Disposition
from consolidation_engine import (
    ConsolidationEngine,
    DispositionTally,
    consolidate_workbooks,
    create_empty_consolidation,
)
from workbook_builder import update_cell
from workbook_progress import submit_workbook

from conftest import complete_and_submit, complete_workbook


REFERENCE_OVERRIDES = {
    # AUD001
    ("ATTR001", "C001"): {"disposition": Disposition.FAIL_REGULATORY, "observation": "Name mismatch",
                          "evidence_reference": "File 12"},
    ("ATTR004", "C003"): {"disposition": Disposition.NOT_APPLICABLE},
    ("ATTR005", "C001"): {"disposition": Disposition.QUESTION_TO_LOB, "observation": "Clarify source of wealth"},
    # AUD002
    ("ATTR002", "C002"): {"disposition": Disposition.FAIL_PROCEDURAL, "observation": "Stale utility bill"},
    ("ATTR002", "C006"): {"disposition": Disposition.PASS_WITH_OBSERVATION, "observation": "PO box address"},
}


@pytest.fixture
def submitted(workbooks):
    for wb in workbooks:
        complete_and_submit(wb, overrides=REFERENCE_OVERRIDES)
    return workbooks


@pytest.fixture
def result(submitted):
    return ConsolidationEngine().consolidate(submitted, "RUN-TEST")


# ═══════════════════════════════════════════════════════════════════════════════
# EMPTY CONSOLIDATION
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.mark.golden
class TestEmptyConsolidation:

    def test_no_workbooks(self):
        result = consolidate_workbooks([], "RUN-EMPTY")
        assert result.is_empty
        assert result.metrics.total_tests == 0
        assert result.metrics.pass_rate == 0
        assert result.exceptions == []
        assert result.findings_by_category == []

    def test_drafts_only(self, workbooks):
        complete_workbook(workbooks[0])
        result = consolidate_workbooks(workbooks, "RUN-TEST")

        assert result.is_empty
        assert result.metrics.total_tests == 0
        assert result.to_dict() == create_empty_consolidation("RUN-TEST").to_dict()


# ═══════════════════════════════════════════════════════════════════════════════
# REFERENCE RUN
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.mark.golden
class TestReferenceRun:

    def test_overall_metrics(self, result):
        m = result.metrics
        assert m.total_tests == 26
        assert m.tally.pass_count == 21
        assert m.tally.pass_with_observation_count == 1
        assert m.tally.fail_regulatory_count == 1
        assert m.tally.fail_procedural_count == 1
        assert m.tally.question_to_lob_count == 1
        assert m.tally.na_count == 1
        assert m.tally.fail_count == 2
        # N/A excluded from tested: 22 / 25 and 2 / 25
        assert m.pass_rate == 88.0
        assert m.fail_rate == 8.0
        assert m.exceptions_count == 3
        assert m.unique_entities_tested == 6
        assert m.unique_attributes_tested == 5
        assert m.workbooks_submitted == 2

    def test_raw_data(self, result, submitted):
        assert result.total_rows == 26
        assert result.workbook_ids == [wb.id for wb in submitted]
        assert result.audit_run_id == "RUN-TEST"

    def test_category_breakdown_sorted_by_fail_rate(self, result):
        categories = result.findings_by_category
        assert [c.key for c in categories] == ["Entity Profile", "Ownership", "AML", "EDD"]
        entity_profile = categories[0]
        assert entity_profile.tally.total_tests == 12
        assert entity_profile.tally.fail_rate == 16.67
        assert entity_profile.attribute_count == 2

    def test_jurisdiction_breakdown_with_fallback_bucket(self, result):
        jurisdictions = result.findings_by_jurisdiction
        assert [j.key for j in jurisdictions] == ["US", "UK", "HK", "Unknown"]
        assert [j.tally.total_tests for j in jurisdictions] == [9, 8, 5, 4]
        assert [j.entity_count for j in jurisdictions] == [2, 2, 1, 1]

    def test_auditor_breakdown(self, result):
        auditors = result.findings_by_auditor
        assert [a.key for a in auditors] == ["AUD001", "AUD002"]
        assert [a.name for a in auditors] == ["John Smith", "Sarah Johnson"]
        assert [a.completion_rate for a in auditors] == [100.0, 100.0]
        assert [a.entity_count for a in auditors] == [3, 3]

    def test_risk_tier_breakdown_in_tier_order(self, result):
        tiers = result.findings_by_risk_tier
        # C001 High, C006 "3" High; C003 Medium; C002, C004, C005 Low
        assert [t.key for t in tiers] == ["High", "Medium", "Low"]
        assert [t.tally.total_tests for t in tiers] == [9, 4, 13]
        assert [t.entity_count for t in tiers] == [2, 1, 3]

    def test_attribute_findings(self, result):
        attributes = result.findings_by_attribute
        assert [a.attribute_id for a in attributes[:2]] == ["ATTR001", "ATTR002"]
        assert attributes[0].observations == ["Name mismatch"]
        assert attributes[1].observations == ["Stale utility bill"]
        assert attributes[0].tally.fail_rate == 16.67

    def test_exceptions_in_stream_order(self, result):
        exceptions = result.exceptions
        assert [e.id for e in exceptions] == ["EXC-0001", "EXC-0002", "EXC-0003"]
        assert [(e.attribute_id, e.customer_id) for e in exceptions] == [
            ("ATTR001", "C001"), ("ATTR005", "C001"), ("ATTR002", "C002"),
        ]
        first = exceptions[0]
        assert first.disposition == "Fail 1 - Regulatory"
        assert first.observation == "Name mismatch"
        assert first.evidence_reference == "File 12"
        assert first.auditor_id == "AUD001"
        assert first.category == "Entity Profile"
        assert first.customer_name == "Acme Holdings Ltd"

    def test_customer_findings_worst_first(self, result):
        customers = result.customer_findings
        assert [c.customer_id for c in customers] == ["C001", "C002", "C006", "C003", "C005", "C004"]
        assert [c.overall_result for c in customers[:3]] == ["Fail", "Fail", "Pass w/Observation"]

        c001 = customers[0]
        assert [f.text for f in c001.failures] == ["Name mismatch"]
        assert c001.failures[0].failure_type == "Regulatory"
        assert [q.text for q in c001.questions_to_lob] == ["Clarify source of wealth"]

    def test_to_dict_is_json_serializable(self, result):
        data = json.loads(json.dumps(result.to_dict()))
        assert data["metrics"]["total_tests"] == 26
        assert data["raw_data"]["total_rows"] == 26
        assert data["consolidation_id"].startswith("CONSOL-")
        assert "completion_rate" in data["findings_by_auditor"][0]
        assert "completion_rate" not in data["findings_by_category"][0]


# ═══════════════════════════════════════════════════════════════════════════════
# FILTERING & MALFORMED INPUT
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.mark.unit
class TestFilteringAndMalformedInput:

    def test_only_submitted_workbooks_count(self, workbooks):
        complete_and_submit(workbooks[0])
        complete_workbook(workbooks[1])

        result = consolidate_workbooks(workbooks)
        assert result.metrics.workbooks_submitted == 1
        assert result.metrics.total_tests == 13
        assert result.audit_run_id == "RUN-TEST"

    def test_duplicate_workbook_counted_once(self, submitted):
        result = consolidate_workbooks(submitted + [submitted[0]])
        assert result.metrics.total_tests == 26
        assert result.metrics.workbooks_submitted == 2

    def test_unrecognized_disposition_counts_as_other(self, workbooks):
        complete_and_submit(workbooks[0], overrides={
            ("ATTR001", "C001"): {"disposition": "Escalated"},
        })
        result = consolidate_workbooks(workbooks)

        assert result.metrics.tally.other_count == 1
        assert result.metrics.total_tests == 13
        assert result.exceptions == []
        # Other is not tested: 12 passes out of 12
        assert result.metrics.pass_rate == 100.0

    def test_empty_cells_in_forced_submission(self, workbooks):
        update_cell(workbooks[1], "ATTR001", "C002", disposition="Pass")
        submit_workbook(workbooks[1], force=True)

        result = consolidate_workbooks(workbooks)
        assert result.metrics.tally.empty_count == 12
        assert result.metrics.tally.tested_count == 1
        assert result.findings_by_auditor[0].completion_rate == 8.0

    def test_customer_with_only_na_is_not_tested(self, workbooks):
        complete_and_submit(workbooks[0], disposition=Disposition.NOT_APPLICABLE)
        result = consolidate_workbooks(workbooks)
        assert {c.overall_result for c in result.customer_findings} == {"Not Tested"}

    def test_fails_are_exceptions_even_when_not_configured(self, submitted):
        engine = ConsolidationEngine(EngineSettings(exception_dispositions=()))
        result = engine.consolidate(submitted)
        assert [e.disposition for e in result.exceptions] == ["Fail 1 - Regulatory", "Fail 2 - Procedure"]
        assert result.metrics.exceptions_count == 2

    def test_consolidation_does_not_mutate_workbooks(self, submitted):
        before = [wb.to_dict() for wb in submitted]
        consolidate_workbooks(submitted)
        assert [wb.to_dict() for wb in submitted] == before

    def test_generated_at_is_caller_supplied(self, submitted):
        result = consolidate_workbooks(submitted, generated_at="2026-01-31T00:00:00+00:00")
        assert result.to_dict()["generated_at"] == "2026-01-31T00:00:00+00:00"


@pytest.mark.unit
class TestDispositionTally:

    def test_rates_exclude_na_and_empty(self):
        tally = DispositionTally()
        for kind in [Disposition.PASS, Disposition.FAIL_REGULATORY, Disposition.NOT_APPLICABLE,
                     Disposition.EMPTY, None]:
            tally.add(kind)
        assert tally.total_tests == 5
        assert tally.tested_count == 2
        assert tally.pass_rate == 50.0
        assert tally.fail_rate == 50.0

    def test_no_tested_rows_is_zero_rate(self):
        tally = DispositionTally()
        tally.add(Disposition.NOT_APPLICABLE)
        assert tally.pass_rate == 0.0
        assert tally.fail_rate == 0.0


# ═══════════════════════════════════════════════════════════════════════════════
# METAMORPHIC RELATIONS
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.mark.metamorphic
class TestMetamorphic:

    def test_rerun_is_identical(self, submitted):
        first = consolidate_workbooks(submitted, "RUN-TEST")
        second = consolidate_workbooks(submitted, "RUN-TEST")
        assert json.dumps(first.to_dict(), sort_keys=True) == json.dumps(second.to_dict(), sort_keys=True)

    def test_workbook_order_does_not_change_counts(self, submitted):
        forward = consolidate_workbooks(submitted)
        backward = consolidate_workbooks(list(reversed(submitted)))

        assert forward.metrics.to_dict() == backward.metrics.to_dict()
        assert {c.key: c.tally.to_dict() for c in forward.findings_by_category} == \
            {c.key: c.tally.to_dict() for c in backward.findings_by_category}
        assert len(forward.exceptions) == len(backward.exceptions)

    def test_changing_a_cell_changes_identity(self, workbooks):
        for wb in workbooks:
            complete_and_submit(wb)
        baseline = consolidate_workbooks(workbooks).consolidation_id

        workbooks[0].get_cell("ATTR001", "C001").disposition = "N/A"
        assert consolidate_workbooks(workbooks).consolidation_id != baseline

    @pytest.mark.parametrize("field", ["evidence_reference", "auditor_notes", "selected_document"])
    def test_changing_cell_detail_changes_identity(self, workbooks, field):
        for wb in workbooks:
            complete_and_submit(wb, Disposition.FAIL_REGULATORY)
        baseline = consolidate_workbooks(workbooks).consolidation_id

        setattr(workbooks[0].get_cell("ATTR001", "C001"), field, "DOC-2")
        assert consolidate_workbooks(workbooks).consolidation_id != baseline

    def test_touching_updated_at_keeps_identity(self, workbooks):
        for wb in workbooks:
            complete_and_submit(wb)
        baseline = consolidate_workbooks(workbooks).consolidation_id

        workbooks[0].get_cell("ATTR001", "C001").updated_at = "2030-01-01T00:00:00+00:00"
        assert consolidate_workbooks(workbooks).consolidation_id == baseline

    def test_adding_a_submission_only_adds(self, workbooks):
        complete_and_submit(workbooks[0], overrides=REFERENCE_OVERRIDES)
        partial = consolidate_workbooks(workbooks)
        complete_and_submit(workbooks[1], overrides=REFERENCE_OVERRIDES)
        full = consolidate_workbooks(workbooks)

        assert full.metrics.total_tests == partial.metrics.total_tests + 13
        assert [e.id for e in full.exceptions[:len(partial.exceptions)]] == \
            [e.id for e in partial.exceptions]
