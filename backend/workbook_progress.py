"""
Workbook Progress Tracker

Pure recomputation of a workbook's progress counters from its cells,
plus the submission gate built on top of them.

Conservation: pass + pass_w_obs + fail_1 + fail_2 + question + na
              + other + empty == total_cells, always.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional
import logging

from audit_config import get_settings
from audit_errors import SubmissionBlockedError, WorkbookLockedError
from audit_models import (
    Disposition, FAILING_DISPOSITIONS, PivotedWorkbook, ResultCell,
    WorkbookStatus, WorkbookSummary, utc_now_iso
)

logger = logging.getLogger(__name__)


_COUNTER_FIELDS = {
    Disposition.PASS: "pass_count",
    Disposition.PASS_WITH_OBSERVATION: "pass_with_observation_count",
    Disposition.FAIL_REGULATORY: "fail_regulatory_count",
    Disposition.FAIL_PROCEDURAL: "fail_procedural_count",
    Disposition.QUESTION_TO_LOB: "question_to_lob_count",
    Disposition.NOT_APPLICABLE: "na_count",
    Disposition.EMPTY: "empty_count",
}


def percentage(part: int, whole: int) -> int:
    """Whole-number percentage, rounding halves up. Zero when whole is zero."""
    if whole <= 0:
        return 0
    value = Decimal(part) * 100 / Decimal(whole)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def summarize_cells(cells: Iterable[ResultCell]) -> WorkbookSummary:
    summary = WorkbookSummary()
    for cell in cells:
        summary.total_cells += 1
        kind = Disposition.parse(cell.disposition)
        if kind is None:
            summary.other_count += 1
        else:
            name = _COUNTER_FIELDS[kind]
            setattr(summary, name, getattr(summary, name) + 1)

    summary.completed_cells = summary.total_cells - summary.empty_count
    summary.completion_percentage = percentage(summary.completed_cells, summary.total_cells)
    return summary


def calculate_workbook_summary(workbook: PivotedWorkbook) -> WorkbookSummary:
    """Recompute the summary for `workbook` without modifying it."""
    return summarize_cells(cell for _, cell in workbook.iter_cells())


def refresh_summary(workbook: PivotedWorkbook) -> WorkbookSummary:
    """Recompute and store the summary. Call after every cell mutation."""
    workbook.summary = calculate_workbook_summary(workbook)
    return workbook.summary


# ═══════════════════════════════════════════════════════════════════════════════
# SUBMISSION GATE
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class SubmissionReadiness:
    """Outcome of the submission gate for one workbook."""
    workbook_id: str
    ready: bool
    completion_percentage: int
    threshold: float
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workbook_id": self.workbook_id,
            "ready": self.ready,
            "completion_percentage": self.completion_percentage,
            "threshold": self.threshold,
            "errors": self.errors,
        }


def check_submission_readiness(
    workbook: PivotedWorkbook,
    threshold: Optional[float] = None
) -> SubmissionReadiness:
    """
    Evaluate the submission gate.

    Checks:
    1. Completion percentage meets the threshold
    2. Every failing cell carries an observation
    3. Every required attribute has no untested cells

    Args:
        workbook: Workbook to evaluate
        threshold: Minimum completion percentage (defaults to settings)
    """
    if threshold is None:
        threshold = get_settings().submission_threshold

    summary = calculate_workbook_summary(workbook)
    errors: List[str] = []

    if summary.completion_percentage < threshold:
        errors.append(
            f"Completion is {summary.completion_percentage}% (minimum {threshold:g}% required)"
        )

    fails_without_observation = 0
    required_untested = 0
    for row, cell in workbook.iter_cells():
        kind = Disposition.parse(cell.disposition)
        if kind in FAILING_DISPOSITIONS and not cell.observation.strip():
            fails_without_observation += 1
        if row.is_required and kind == Disposition.EMPTY:
            required_untested += 1

    if fails_without_observation:
        errors.append(f"{fails_without_observation} failure(s) missing observations")
    if required_untested:
        errors.append(f"{required_untested} required attribute test(s) not completed")

    return SubmissionReadiness(
        workbook_id=workbook.id,
        ready=not errors,
        completion_percentage=summary.completion_percentage,
        threshold=threshold,
        errors=errors,
    )


def submit_workbook(
    workbook: PivotedWorkbook,
    threshold: Optional[float] = None,
    force: bool = False
) -> PivotedWorkbook:
    """
    Transition a workbook to submitted.

    Args:
        workbook: Workbook to submit
        threshold: Minimum completion percentage (defaults to settings)
        force: If True, bypass the gate

    Raises:
        WorkbookLockedError: If the workbook is already submitted
        SubmissionBlockedError: If the gate fails and force=False
    """
    if workbook.is_submitted:
        raise WorkbookLockedError(f"Workbook {workbook.id} is already submitted")

    readiness = check_submission_readiness(workbook, threshold)
    if not readiness.ready:
        if not force:
            raise SubmissionBlockedError(workbook.id, readiness.errors)
        logger.warning(f"Workbook {workbook.id} submitted with gate override: {readiness.errors}")

    refresh_summary(workbook)
    now = utc_now_iso()
    workbook.status = WorkbookStatus.SUBMITTED
    workbook.submitted_at = now
    workbook.updated_at = now

    logger.info(
        f"Workbook {workbook.id} submitted by {workbook.auditor_id} "
        f"at {workbook.summary.completion_percentage}% completion"
    )
    return workbook
