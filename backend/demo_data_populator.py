"""
Demo Data Populator

Fills workbooks with plausible test results for demonstrations and
seed data. Never used on the real aggregation path.

Dispositions are drawn from a rate table turned into a cumulative
distribution: one uniform draw per cell, located with searchsorted.
Callers may pass a fixed disposition sequence instead of a generator.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence
import logging

import numpy as np

from audit_config import get_settings
from audit_models import Disposition, PivotedRow, PivotedWorkbook
from workbook_builder import update_cell

logger = logging.getLogger(__name__)


# Draw order; must line up with PopulationConfig.rates()
DRAW_ORDER = (
    Disposition.PASS,
    Disposition.PASS_WITH_OBSERVATION,
    Disposition.FAIL_REGULATORY,
    Disposition.FAIL_PROCEDURAL,
    Disposition.QUESTION_TO_LOB,
    Disposition.NOT_APPLICABLE,
)

STANDARD_OBSERVATIONS = (
    "Adverse media screening has expired as 1 year has passed since last clearing",
    "Documentary evidence not retained on file, CIP clearance based on non-documentary method only",
    "Onboarding checklist incomplete - missing several required fields",
    "Risk rating calculation contains an error but result still within acceptable range",
    "Delayed verification - CIP completed more than 30 days after account opening",
    "Address verification document dated more than 90 days prior to onboarding",
    "Beneficial ownership percentage calculation unclear in supporting documentation",
    "PEP screening completed but no disposition documented for close associate match",
)

REGULATORY_FAILURES = (
    "Customer identity not verified within reasonable time after account opening",
    "Beneficial owner not identified despite 25%+ ownership stake",
    "OFAC screening not performed at account opening",
    "Documentary verification missing - no government-issued ID on file",
    "CIP information incomplete - missing required data element",
    "No risk rating assigned at onboarding",
)

PROCEDURAL_FAILURES = (
    "Address verification document exceeds 90-day requirement",
    "W-9 not signed or dated",
    "Ownership chart missing from file",
    "Second form of non-documentary verification not obtained",
    "EDD checklist not completed for high-risk customer",
    "Senior management approval not documented for EDD customer",
)

LOB_QUESTIONS = (
    "Unclear if customer is considered high-risk under procedures - awaiting clarification",
    "Conflicting information between formation docs and ownership certification",
    "Unable to locate supporting documentation referenced in case notes",
    "System shows different risk rating than documented in file",
)

OBSERVATION_POOLS = {
    Disposition.PASS_WITH_OBSERVATION: STANDARD_OBSERVATIONS,
    Disposition.FAIL_REGULATORY: REGULATORY_FAILURES,
    Disposition.FAIL_PROCEDURAL: PROCEDURAL_FAILURES,
    Disposition.QUESTION_TO_LOB: LOB_QUESTIONS,
}

NOT_APPLICABLE_NOTE = "Not applicable to this customer type"


@dataclass(frozen=True)
class PopulationConfig:
    """Relative disposition rates. Normalized before drawing."""
    pass_rate: float = 0.65
    pass_with_observation_rate: float = 0.08
    fail_regulatory_rate: float = 0.08
    fail_procedural_rate: float = 0.10
    question_to_lob_rate: float = 0.04
    na_rate: float = 0.05

    def rates(self) -> np.ndarray:
        return np.array([
            self.pass_rate,
            self.pass_with_observation_rate,
            self.fail_regulatory_rate,
            self.fail_procedural_rate,
            self.question_to_lob_rate,
            self.na_rate,
        ], dtype=float)

    def cumulative(self) -> np.ndarray:
        """
        Cumulative distribution over DRAW_ORDER, ending at exactly 1.0.

        Raises:
            ValueError: If a rate is negative or all rates are zero
        """
        rates = self.rates()
        if (rates < 0).any():
            raise ValueError(f"Population rates must be non-negative, got {rates.tolist()}")
        total = rates.sum()
        if total <= 0:
            raise ValueError("Population rates must not all be zero")
        cdf = np.cumsum(rates / total)
        cdf[-1] = 1.0
        return cdf

    def to_dict(self) -> Dict[str, float]:
        return {
            "pass_rate": self.pass_rate,
            "pass_with_observation_rate": self.pass_with_observation_rate,
            "fail_regulatory_rate": self.fail_regulatory_rate,
            "fail_procedural_rate": self.fail_procedural_rate,
            "question_to_lob_rate": self.question_to_lob_rate,
            "na_rate": self.na_rate,
        }


DEFAULT_POPULATION_CONFIG = PopulationConfig()


def default_rng() -> np.random.Generator:
    """Generator seeded from AUDIT_DEMO_SEED (unseeded when unset)."""
    return np.random.default_rng(get_settings().demo_seed)


def draw_dispositions(
    count: int,
    config: PopulationConfig = DEFAULT_POPULATION_CONFIG,
    rng: Optional[np.random.Generator] = None
) -> List[Disposition]:
    """Draw `count` dispositions from the configured distribution."""
    if count <= 0:
        return []
    rng = rng or default_rng()
    cdf = config.cumulative()
    draws = rng.random(count)
    # side="right": a draw equal to a boundary belongs to the next bucket
    indices = np.searchsorted(cdf, draws, side="right")
    indices = np.minimum(indices, len(DRAW_ORDER) - 1)
    return [DRAW_ORDER[i] for i in indices]


def _pick(pool: Sequence[str], rng: np.random.Generator) -> str:
    return pool[int(rng.integers(len(pool)))]


def _document_for(row: PivotedRow, disposition: Disposition, rng: np.random.Generator) -> str:
    """A dropdown label that implies `disposition`; attribute documents first for passes."""
    if disposition == Disposition.PASS or disposition == Disposition.PASS_WITH_OBSERVATION:
        documents = [o.label for o in row.document_options if not o.is_system]
        if documents:
            return _pick(documents, rng)
    for option in row.document_options:
        if option.is_system and option.disposition == disposition:
            return option.label
    return ""


def _cell_changes(row: PivotedRow, disposition: Disposition, rng: np.random.Generator) -> Dict[str, Any]:
    document = _document_for(row, disposition, rng)
    pool = OBSERVATION_POOLS.get(disposition)
    observation = _pick(pool, rng) if pool else ""
    if disposition == Disposition.NOT_APPLICABLE:
        observation = NOT_APPLICABLE_NOTE

    if disposition in (Disposition.PASS, Disposition.PASS_WITH_OBSERVATION) and document:
        evidence = f"Doc: {document} - verified on file"
    elif disposition in (Disposition.FAIL_REGULATORY, Disposition.FAIL_PROCEDURAL):
        evidence = "See observation for details"
    else:
        evidence = ""

    return {
        "disposition": disposition,
        "selected_document": document,
        "observation": observation,
        "evidence_reference": evidence,
    }


def populate_workbook(
    workbook: PivotedWorkbook,
    config: PopulationConfig = DEFAULT_POPULATION_CONFIG,
    rng: Optional[np.random.Generator] = None,
    dispositions: Optional[Iterable[Any]] = None,
    overwrite: bool = False
) -> PivotedWorkbook:
    """
    Fill a workbook's cells with demo results.

    Args:
        workbook: Workbook to fill in place (must not be submitted)
        config: Rate table for random draws
        rng: numpy Generator (defaults to one seeded from settings)
        dispositions: Fixed sequence used instead of random draws, consumed
            in cell order; cells beyond its end are left untouched
        overwrite: If True, also replace cells that already hold a result

    Returns:
        The same workbook, with its summary refreshed

    Raises:
        WorkbookLockedError: If the workbook is submitted
    """
    rng = rng or default_rng()
    targets = [
        (row, cell) for row, cell in workbook.iter_cells()
        if overwrite or cell.is_empty
    ]

    if dispositions is not None:
        fixed = [Disposition.parse(d) for d in dispositions]
        drawn = [d if d is not None else Disposition.EMPTY for d in fixed[:len(targets)]]
    else:
        drawn = draw_dispositions(len(targets), config, rng)

    for (row, cell), disposition in zip(targets, drawn):
        update_cell(
            workbook, row.attribute_id, cell.customer_id,
            **_cell_changes(row, disposition, rng)
        )

    logger.info(
        f"Populated {len(drawn)} of {workbook.summary.total_cells} cells in workbook {workbook.id} "
        f"({workbook.summary.completion_percentage}% complete)"
    )
    return workbook


def populate_workbooks(
    workbooks: Iterable[PivotedWorkbook],
    config: PopulationConfig = DEFAULT_POPULATION_CONFIG,
    rng: Optional[np.random.Generator] = None
) -> List[PivotedWorkbook]:
    """Populate every workbook from one shared generator."""
    rng = rng or default_rng()
    return [populate_workbook(wb, config, rng) for wb in workbooks]
