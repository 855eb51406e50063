"""
Consolidation Engine

Aggregates the result cells of all submitted workbooks of an audit run
into one consolidated report.

Output:
1. Overall metrics: per-disposition counts, pass/fail rates, coverage
2. Breakdowns by category, attribute, jurisdiction, auditor and risk tier
3. Exceptions: one entry per failing cell, in stream order
4. Customer findings: every observation, question and failure per customer

Key invariants:
- Only submitted workbooks contribute; none submitted yields the empty
  consolidation, never an error
- Each cell is counted exactly once (duplicate workbooks are ignored)
- Same submitted set = same output, field for field
- Blank grouping values land in an explicit fallback bucket
- Unrecognized dispositions are counted under "other", never raised
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple
import hashlib
import json
import logging
import time

from audit_config import EngineSettings, get_settings
from audit_models import (
    Disposition, FAILING_DISPOSITIONS, PivotedWorkbook,
    RiskTier, WorkbookStatus
)
from risk_scope_service import RISK_TIER_ORDER, risk_tier_for

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
UNKNOWN = "Unknown"


# ═══════════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class ResultRow:
    """One result cell with its attribute, customer and auditor context."""
    workbook_id: str
    auditor_id: str
    auditor_name: str
    attribute_id: str
    attribute_name: str
    category: str
    customer_id: str
    customer_name: str
    jurisdiction: str
    party_type: str
    irr: str
    risk_tier: str
    disposition: str
    selected_document: str = ""
    observation: str = ""
    evidence_reference: str = ""
    auditor_notes: str = ""

    @property
    def kind(self) -> Optional[Disposition]:
        return Disposition.parse(self.disposition)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workbook_id": self.workbook_id,
            "auditor_id": self.auditor_id,
            "auditor_name": self.auditor_name,
            "attribute_id": self.attribute_id,
            "attribute_name": self.attribute_name,
            "category": self.category,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "jurisdiction": self.jurisdiction,
            "party_type": self.party_type,
            "irr": self.irr,
            "risk_tier": self.risk_tier,
            "disposition": self.disposition,
            "selected_document": self.selected_document,
            "observation": self.observation,
            "evidence_reference": self.evidence_reference,
            "auditor_notes": self.auditor_notes,
        }


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0.0


@dataclass
class DispositionTally:
    """
    Per-disposition counters for a set of result rows.

    tested excludes N/A, empty and unrecognized values.
    """
    total_tests: int = 0
    pass_count: int = 0
    pass_with_observation_count: int = 0
    fail_regulatory_count: int = 0
    fail_procedural_count: int = 0
    question_to_lob_count: int = 0
    na_count: int = 0
    empty_count: int = 0
    other_count: int = 0

    def add(self, kind: Optional[Disposition]) -> None:
        self.total_tests += 1
        if kind == Disposition.PASS:
            self.pass_count += 1
        elif kind == Disposition.PASS_WITH_OBSERVATION:
            self.pass_with_observation_count += 1
        elif kind == Disposition.FAIL_REGULATORY:
            self.fail_regulatory_count += 1
        elif kind == Disposition.FAIL_PROCEDURAL:
            self.fail_procedural_count += 1
        elif kind == Disposition.QUESTION_TO_LOB:
            self.question_to_lob_count += 1
        elif kind == Disposition.NOT_APPLICABLE:
            self.na_count += 1
        elif kind == Disposition.EMPTY:
            self.empty_count += 1
        else:
            self.other_count += 1

    @property
    def passed_count(self) -> int:
        return self.pass_count + self.pass_with_observation_count

    @property
    def fail_count(self) -> int:
        return self.fail_regulatory_count + self.fail_procedural_count

    @property
    def tested_count(self) -> int:
        return self.passed_count + self.fail_count + self.question_to_lob_count

    @property
    def pass_rate(self) -> float:
        return _rate(self.passed_count, self.tested_count)

    @property
    def fail_rate(self) -> float:
        return _rate(self.fail_count, self.tested_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tests": self.total_tests,
            "pass_count": self.pass_count,
            "pass_with_observation_count": self.pass_with_observation_count,
            "fail_count": self.fail_count,
            "fail_regulatory_count": self.fail_regulatory_count,
            "fail_procedural_count": self.fail_procedural_count,
            "question_to_lob_count": self.question_to_lob_count,
            "na_count": self.na_count,
            "empty_count": self.empty_count,
            "other_count": self.other_count,
            "tested_count": self.tested_count,
            "pass_rate": self.pass_rate,
            "fail_rate": self.fail_rate,
        }


@dataclass
class ConsolidatedMetrics:
    """Run-wide totals."""
    tally: DispositionTally = field(default_factory=DispositionTally)
    exceptions_count: int = 0
    unique_entities_tested: int = 0
    unique_attributes_tested: int = 0
    workbooks_submitted: int = 0

    @property
    def total_tests(self) -> int:
        return self.tally.total_tests

    @property
    def pass_rate(self) -> float:
        return self.tally.pass_rate

    @property
    def fail_rate(self) -> float:
        return self.tally.fail_rate

    def to_dict(self) -> Dict[str, Any]:
        result = self.tally.to_dict()
        result.update({
            "exceptions_count": self.exceptions_count,
            "unique_entities_tested": self.unique_entities_tested,
            "unique_attributes_tested": self.unique_attributes_tested,
            "workbooks_submitted": self.workbooks_submitted,
        })
        return result


@dataclass
class GroupFindings:
    """Stats for one group of a breakdown (a category, jurisdiction, ...)."""
    key: str
    name: str
    tally: DispositionTally = field(default_factory=DispositionTally)
    entity_count: int = 0
    attribute_count: int = 0
    completion_rate: Optional[float] = None  # Auditor breakdown only

    def to_dict(self) -> Dict[str, Any]:
        result = {"key": self.key, "name": self.name}
        result.update(self.tally.to_dict())
        result["entity_count"] = self.entity_count
        result["attribute_count"] = self.attribute_count
        if self.completion_rate is not None:
            result["completion_rate"] = self.completion_rate
        return result


@dataclass
class AttributeFindings:
    """Stats for one attribute, with the distinct failure observations."""
    attribute_id: str
    attribute_name: str
    category: str
    tally: DispositionTally = field(default_factory=DispositionTally)
    observations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "attribute_id": self.attribute_id,
            "attribute_name": self.attribute_name,
            "category": self.category,
        }
        result.update(self.tally.to_dict())
        result["observations"] = list(self.observations)
        return result


@dataclass
class ExceptionDetail:
    """A failing cell, with enough context to drive a findings report."""
    id: str
    workbook_id: str
    customer_id: str
    customer_name: str
    jurisdiction: str
    party_type: str
    risk_tier: str
    attribute_id: str
    attribute_name: str
    category: str
    disposition: str
    selected_document: str
    observation: str
    evidence_reference: str
    auditor_notes: str
    auditor_id: str
    auditor_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workbook_id": self.workbook_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "jurisdiction": self.jurisdiction,
            "party_type": self.party_type,
            "risk_tier": self.risk_tier,
            "attribute_id": self.attribute_id,
            "attribute_name": self.attribute_name,
            "category": self.category,
            "disposition": self.disposition,
            "selected_document": self.selected_document,
            "observation": self.observation,
            "evidence_reference": self.evidence_reference,
            "auditor_notes": self.auditor_notes,
            "auditor_id": self.auditor_id,
            "auditor_name": self.auditor_name,
        }


@dataclass
class CustomerFindingItem:
    """An observation, question or failure recorded against a customer."""
    kind: str  # "observation", "question", "failure"
    attribute_id: str
    attribute_name: str
    category: str
    text: str
    auditor_id: str
    auditor_name: str
    failure_type: Optional[str] = None  # "Regulatory" or "Procedure"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "attribute_id": self.attribute_id,
            "attribute_name": self.attribute_name,
            "category": self.category,
            "text": self.text,
            "auditor_id": self.auditor_id,
            "auditor_name": self.auditor_name,
            "failure_type": self.failure_type,
        }


# Worst outcome first
CUSTOMER_RESULT_ORDER = ("Fail", "Question", "Pass w/Observation", "Pass", "Not Tested")


@dataclass
class ConsolidatedCustomer:
    """All findings for one customer across every auditor."""
    customer_id: str
    customer_name: str
    jurisdiction: str
    party_type: str
    risk_tier: str
    tally: DispositionTally = field(default_factory=DispositionTally)
    observations: List[CustomerFindingItem] = field(default_factory=list)
    questions_to_lob: List[CustomerFindingItem] = field(default_factory=list)
    failures: List[CustomerFindingItem] = field(default_factory=list)

    @property
    def findings_count(self) -> int:
        return len(self.observations) + len(self.questions_to_lob) + len(self.failures)

    @property
    def overall_result(self) -> str:
        if self.tally.fail_count:
            return "Fail"
        if self.tally.question_to_lob_count:
            return "Question"
        if self.tally.pass_with_observation_count:
            return "Pass w/Observation"
        if self.tally.pass_count:
            return "Pass"
        return "Not Tested"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "jurisdiction": self.jurisdiction,
            "party_type": self.party_type,
            "risk_tier": self.risk_tier,
            "overall_result": self.overall_result,
            "tally": self.tally.to_dict(),
            "observations": [o.to_dict() for o in self.observations],
            "questions_to_lob": [q.to_dict() for q in self.questions_to_lob],
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass
class ConsolidationResult:
    """Read model for dashboards, exception tables and report generation."""
    consolidation_id: str
    audit_run_id: str
    metrics: ConsolidatedMetrics
    findings_by_category: List[GroupFindings] = field(default_factory=list)
    findings_by_attribute: List[AttributeFindings] = field(default_factory=list)
    findings_by_jurisdiction: List[GroupFindings] = field(default_factory=list)
    findings_by_auditor: List[GroupFindings] = field(default_factory=list)
    findings_by_risk_tier: List[GroupFindings] = field(default_factory=list)
    exceptions: List[ExceptionDetail] = field(default_factory=list)
    customer_findings: List[ConsolidatedCustomer] = field(default_factory=list)
    workbook_ids: List[str] = field(default_factory=list)
    total_rows: int = 0
    generated_at: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.metrics.workbooks_submitted == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consolidation_id": self.consolidation_id,
            "audit_run_id": self.audit_run_id,
            "generated_at": self.generated_at,
            "metrics": self.metrics.to_dict(),
            "findings_by_category": [g.to_dict() for g in self.findings_by_category],
            "findings_by_attribute": [a.to_dict() for a in self.findings_by_attribute],
            "findings_by_jurisdiction": [g.to_dict() for g in self.findings_by_jurisdiction],
            "findings_by_auditor": [g.to_dict() for g in self.findings_by_auditor],
            "findings_by_risk_tier": [g.to_dict() for g in self.findings_by_risk_tier],
            "exceptions": [e.to_dict() for e in self.exceptions],
            "customer_findings": [c.to_dict() for c in self.customer_findings],
            "raw_data": {
                "workbook_ids": list(self.workbook_ids),
                "total_rows": self.total_rows,
            },
        }


def _digest(payload: Any) -> str:
    encoded = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(encoded.encode()).hexdigest()


def create_empty_consolidation(audit_run_id: str = "", generated_at: Optional[str] = None) -> ConsolidationResult:
    """The "not ready yet" result: all counts zero, all lists empty."""
    return ConsolidationResult(
        consolidation_id=f"CONSOL-{_digest({'audit_run_id': audit_run_id, 'workbooks': []})[:16]}",
        audit_run_id=audit_run_id,
        metrics=ConsolidatedMetrics(),
        generated_at=generated_at,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# CONSOLIDATION ENGINE
# ═══════════════════════════════════════════════════════════════════════════════

class ConsolidationEngine:
    """
    Read-only aggregation over submitted workbooks.

    Never mutates its inputs. Safe to run repeatedly and from several
    readers at once.
    """

    def __init__(self, settings: Optional[EngineSettings] = None):
        self.settings = settings or get_settings()
        configured = {Disposition.parse(d) for d in self.settings.exception_dispositions}
        configured.discard(None)
        configured.discard(Disposition.EMPTY)
        self.exception_kinds = frozenset(FAILING_DISPOSITIONS | configured)

    def consolidate(
        self,
        workbooks: Iterable[PivotedWorkbook],
        audit_run_id: str = "",
        generated_at: Optional[str] = None
    ) -> ConsolidationResult:
        """
        Consolidate every submitted workbook.

        Args:
            workbooks: All workbooks of the run, any lifecycle status
            audit_run_id: Owning audit run (falls back to the workbooks' own)
            generated_at: Timestamp to stamp on the result. Left to the
                caller so reruns stay identical.

        Returns:
            ConsolidationResult (the empty consolidation if none submitted)
        """
        start_time = time.time()

        submitted = self.submitted_workbooks(workbooks)
        if not audit_run_id and submitted:
            audit_run_id = submitted[0].audit_run_id

        if not submitted:
            logger.info(f"No submitted workbooks for run {audit_run_id or '-'}; returning empty consolidation")
            return create_empty_consolidation(audit_run_id, generated_at)

        rows = self.flatten(submitted)

        metrics = self._calculate_metrics(rows, len(submitted))
        result = ConsolidationResult(
            consolidation_id=self._consolidation_id(audit_run_id, submitted),
            audit_run_id=audit_run_id,
            metrics=metrics,
            findings_by_category=self._findings_by_category(rows),
            findings_by_attribute=self._findings_by_attribute(rows),
            findings_by_jurisdiction=self._findings_by_jurisdiction(rows),
            findings_by_auditor=self._findings_by_auditor(rows, submitted),
            findings_by_risk_tier=self._findings_by_risk_tier(rows),
            exceptions=self._extract_exceptions(rows),
            customer_findings=self._consolidate_by_customer(rows),
            workbook_ids=[wb.id for wb in submitted],
            total_rows=len(rows),
            generated_at=generated_at,
        )

        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Consolidated run {audit_run_id or '-'}: {len(submitted)} workbooks, "
            f"{len(rows)} results, {len(result.exceptions)} exceptions in {elapsed_ms:.1f}ms"
        )
        return result

    # ═══════════════════════════════════════════════════════════════════════════
    # FLATTENING
    # ═══════════════════════════════════════════════════════════════════════════

    def submitted_workbooks(self, workbooks: Iterable[PivotedWorkbook]) -> List[PivotedWorkbook]:
        """Submitted workbooks in input order, each id taken once."""
        seen: Set[str] = set()
        submitted: List[PivotedWorkbook] = []
        for wb in workbooks:
            if wb.status != WorkbookStatus.SUBMITTED:
                continue
            if wb.id in seen:
                logger.warning(f"Workbook {wb.id} supplied more than once; counting it once")
                continue
            seen.add(wb.id)
            submitted.append(wb)
        return submitted

    def flatten(self, workbooks: Sequence[PivotedWorkbook]) -> List[ResultRow]:
        """One ResultRow per cell, in workbook, row, then customer order."""
        rows: List[ResultRow] = []
        for wb in workbooks:
            customers = wb.customers_by_id
            for pivot_row, cell in wb.iter_cells():
                customer = customers.get(cell.customer_id)
                if customer is None:
                    logger.debug(
                        f"Workbook {wb.id} has a cell for unassigned customer {cell.customer_id}"
                    )
                irr = customer.irr if customer else ""
                kind = Disposition.parse(cell.disposition)
                if kind is None:
                    logger.warning(
                        f"Unrecognized disposition {cell.disposition!r} in workbook {wb.id} "
                        f"({pivot_row.attribute_id}/{cell.customer_id}); counting as other"
                    )
                rows.append(ResultRow(
                    workbook_id=wb.id,
                    auditor_id=wb.auditor_id or UNKNOWN,
                    auditor_name=wb.auditor_name or wb.auditor_id or UNKNOWN,
                    attribute_id=pivot_row.attribute_id,
                    attribute_name=pivot_row.attribute_name,
                    category=pivot_row.category or UNCATEGORIZED,
                    customer_id=cell.customer_id,
                    customer_name=(customer.display_name if customer else "") or cell.customer_name,
                    jurisdiction=(customer.jurisdiction if customer else "") or UNKNOWN,
                    party_type=(customer.party_type if customer else "") or UNKNOWN,
                    irr=irr,
                    risk_tier=risk_tier_for(irr).value,
                    disposition=kind.value if kind is not None else str(cell.disposition),
                    selected_document=cell.selected_document,
                    observation=cell.observation,
                    evidence_reference=cell.evidence_reference,
                    auditor_notes=cell.auditor_notes,
                ))
        return rows

    def _consolidation_id(self, audit_run_id: str, workbooks: Sequence[PivotedWorkbook]) -> str:
        payload = {
            "audit_run_id": audit_run_id,
            "workbooks": [
                {
                    "id": wb.id,
                    "cells": [
                        {k: v for k, v in cell.to_dict().items() if k != "updated_at"}
                        for _, cell in wb.iter_cells()
                    ],
                }
                for wb in workbooks
            ],
        }
        return f"CONSOL-{_digest(payload)[:16]}"

    # ═══════════════════════════════════════════════════════════════════════════
    # METRICS
    # ═══════════════════════════════════════════════════════════════════════════

    def _calculate_metrics(self, rows: List[ResultRow], workbook_count: int) -> ConsolidatedMetrics:
        tally = DispositionTally()
        exceptions_count = 0
        for row in rows:
            kind = row.kind
            tally.add(kind)
            if kind in self.exception_kinds:
                exceptions_count += 1

        return ConsolidatedMetrics(
            tally=tally,
            exceptions_count=exceptions_count,
            unique_entities_tested=len({r.customer_id for r in rows}),
            unique_attributes_tested=len({r.attribute_id for r in rows}),
            workbooks_submitted=workbook_count,
        )

    def _group(self, rows: List[ResultRow], key_of, name_of=None) -> Dict[str, Tuple[GroupFindings, Set[str], Set[str]]]:
        """Tally rows per group key, tracking distinct customers and attributes."""
        groups: Dict[str, Tuple[GroupFindings, Set[str], Set[str]]] = {}
        for row in rows:
            key = key_of(row) or UNKNOWN
            if key not in groups:
                name = name_of(row) if name_of else key
                groups[key] = (GroupFindings(key=key, name=name or key), set(), set())
            finding, entities, attributes = groups[key]
            finding.tally.add(row.kind)
            entities.add(row.customer_id)
            attributes.add(row.attribute_id)

        for finding, entities, attributes in groups.values():
            finding.entity_count = len(entities)
            finding.attribute_count = len(attributes)
        return groups

    def _findings_by_category(self, rows: List[ResultRow]) -> List[GroupFindings]:
        groups = self._group(rows, lambda r: r.category or UNCATEGORIZED)
        findings = [g[0] for g in groups.values()]
        # Most problematic category first; ties keep first-seen order
        return sorted(findings, key=lambda f: -f.tally.fail_rate)

    def _findings_by_attribute(self, rows: List[ResultRow]) -> List[AttributeFindings]:
        attributes: Dict[str, AttributeFindings] = {}
        for row in rows:
            finding = attributes.get(row.attribute_id)
            if finding is None:
                finding = AttributeFindings(
                    attribute_id=row.attribute_id,
                    attribute_name=row.attribute_name,
                    category=row.category,
                )
                attributes[row.attribute_id] = finding
            kind = row.kind
            finding.tally.add(kind)
            if kind in FAILING_DISPOSITIONS and row.observation and row.observation not in finding.observations:
                finding.observations.append(row.observation)
        return sorted(attributes.values(), key=lambda f: -f.tally.fail_rate)

    def _findings_by_jurisdiction(self, rows: List[ResultRow]) -> List[GroupFindings]:
        groups = self._group(rows, lambda r: r.jurisdiction)
        return sorted((g[0] for g in groups.values()), key=lambda f: -f.tally.total_tests)

    def _findings_by_auditor(
        self,
        rows: List[ResultRow],
        workbooks: Sequence[PivotedWorkbook]
    ) -> List[GroupFindings]:
        groups = self._group(rows, lambda r: r.auditor_id, lambda r: r.auditor_name)

        # Completion comes from the workbook summaries, weighted by cell count
        weighted: Dict[str, List[int]] = {}
        for wb in workbooks:
            key = wb.auditor_id or UNKNOWN
            totals = weighted.setdefault(key, [0, 0])
            totals[0] += wb.summary.completion_percentage * wb.summary.total_cells
            totals[1] += wb.summary.total_cells

        findings = []
        for key, (finding, _, _) in groups.items():
            weight_sum, cell_sum = weighted.get(key, (0, 0))
            finding.completion_rate = round(weight_sum / cell_sum, 2) if cell_sum else 0.0
            findings.append(finding)
        return sorted(findings, key=lambda f: -f.tally.total_tests)

    def _findings_by_risk_tier(self, rows: List[ResultRow]) -> List[GroupFindings]:
        groups = self._group(rows, lambda r: r.risk_tier or RiskTier.UNCATEGORIZED.value)
        order = {tier.value: index for index, tier in enumerate(RISK_TIER_ORDER)}
        return sorted(
            (g[0] for g in groups.values()),
            key=lambda f: order.get(f.key, len(order))
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # EXCEPTIONS & CUSTOMER FINDINGS
    # ═══════════════════════════════════════════════════════════════════════════

    def _extract_exceptions(self, rows: List[ResultRow]) -> List[ExceptionDetail]:
        exceptions: List[ExceptionDetail] = []
        for row in rows:
            if row.kind not in self.exception_kinds:
                continue
            exceptions.append(ExceptionDetail(
                id=f"EXC-{len(exceptions) + 1:04d}",
                workbook_id=row.workbook_id,
                customer_id=row.customer_id,
                customer_name=row.customer_name,
                jurisdiction=row.jurisdiction,
                party_type=row.party_type,
                risk_tier=row.risk_tier,
                attribute_id=row.attribute_id,
                attribute_name=row.attribute_name,
                category=row.category,
                disposition=row.disposition,
                selected_document=row.selected_document,
                observation=row.observation,
                evidence_reference=row.evidence_reference,
                auditor_notes=row.auditor_notes,
                auditor_id=row.auditor_id,
                auditor_name=row.auditor_name,
            ))
        return exceptions

    def _consolidate_by_customer(self, rows: List[ResultRow]) -> List[ConsolidatedCustomer]:
        customers: Dict[str, ConsolidatedCustomer] = {}
        for row in rows:
            customer = customers.get(row.customer_id)
            if customer is None:
                customer = ConsolidatedCustomer(
                    customer_id=row.customer_id,
                    customer_name=row.customer_name,
                    jurisdiction=row.jurisdiction,
                    party_type=row.party_type,
                    risk_tier=row.risk_tier,
                )
                customers[row.customer_id] = customer

            kind = row.kind
            customer.tally.add(kind)
            if not row.observation:
                continue

            item = CustomerFindingItem(
                kind="observation",
                attribute_id=row.attribute_id,
                attribute_name=row.attribute_name,
                category=row.category,
                text=row.observation,
                auditor_id=row.auditor_id,
                auditor_name=row.auditor_name,
            )
            if kind == Disposition.PASS_WITH_OBSERVATION:
                customer.observations.append(item)
            elif kind == Disposition.QUESTION_TO_LOB:
                item.kind = "question"
                customer.questions_to_lob.append(item)
            elif kind in FAILING_DISPOSITIONS:
                item.kind = "failure"
                item.failure_type = "Regulatory" if kind == Disposition.FAIL_REGULATORY else "Procedure"
                customer.failures.append(item)

        rank = {result: index for index, result in enumerate(CUSTOMER_RESULT_ORDER)}
        return sorted(
            customers.values(),
            key=lambda c: (rank[c.overall_result], -c.findings_count)
        )


def consolidate_workbooks(
    workbooks: Iterable[PivotedWorkbook],
    audit_run_id: str = "",
    settings: Optional[EngineSettings] = None,
    generated_at: Optional[str] = None
) -> ConsolidationResult:
    """Convenience wrapper around ConsolidationEngine.consolidate."""
    return ConsolidationEngine(settings).consolidate(workbooks, audit_run_id, generated_at)
