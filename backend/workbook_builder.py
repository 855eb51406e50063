"""
Workbook Builder

Turns a sampled population, an attribute catalog and an auditor roster
into one pivoted testing workbook per auditor.

Pipeline: normalize samples -> distribute across auditors -> pivot.

Pivot rules:
- One row per catalog attribute, in catalog order
- A row holds an empty cell for each assigned customer the attribute
  applies to (see risk_scope_service)
- Rows with no applicable customer are not emitted
- Each row carries its acceptable-document dropdown: the attribute's own
  documents (all map to Pass) followed by the fixed system options
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
import logging
import random
import time
import uuid

from audit_config import get_settings
from audit_errors import CellNotFoundError, WorkbookLockedError
from audit_models import (
    AcceptableDocument, AssignmentStrategy, AttributeDefinition, Auditor,
    CustomerRecord, Disposition, DocumentOption, PivotedRow, PivotedWorkbook,
    ResultCell, WorkbookStatus, utc_now_iso
)
from risk_scope_service import is_attribute_applicable
from sample_distributor import partition_samples
from workbook_progress import refresh_summary

logger = logging.getLogger(__name__)


# Identical for every attribute, always listed after attribute documents
SYSTEM_DOCUMENT_OPTIONS = (
    DocumentOption("Document Not Found", Disposition.FAIL_REGULATORY, is_system=True),
    DocumentOption("Document Expired", Disposition.FAIL_PROCEDURAL, is_system=True),
    DocumentOption("Other Issue", Disposition.PASS_WITH_OBSERVATION, is_system=True),
    DocumentOption("Question to LOB", Disposition.QUESTION_TO_LOB, is_system=True),
    DocumentOption("N/A", Disposition.NOT_APPLICABLE, is_system=True),
)

EDITABLE_CELL_FIELDS = (
    "disposition",
    "selected_document",
    "observation",
    "evidence_reference",
    "auditor_notes",
)


# ═══════════════════════════════════════════════════════════════════════════════
# INGESTION
# ═══════════════════════════════════════════════════════════════════════════════

def normalize_samples(samples: Iterable[Any]) -> List[CustomerRecord]:
    """
    Normalize raw sample mappings into CustomerRecords, numbering from 1.

    A repeated customer id is suffixed with the record's position so every
    sampled record keeps its own cells.
    """
    records: List[CustomerRecord] = []
    seen = set()
    for position, raw in enumerate(samples, start=1):
        record = CustomerRecord.from_raw(raw, position)
        if record.customer_id in seen:
            renamed = f"{record.customer_id}-{record.position}"
            logger.warning(
                f"Duplicate customer id {record.customer_id!r} at position {position}; using {renamed!r}"
            )
            record = record.model_copy(update={"customer_id": renamed})
        seen.add(record.customer_id)
        records.append(record)
    return records


def _as_models(items: Iterable[Any], model) -> List[Any]:
    return [item if isinstance(item, model) else model.model_validate(item) for item in items]


def group_documents_by_attribute(
    acceptable_docs: Iterable[Union[AcceptableDocument, Dict[str, Any]]]
) -> Dict[str, List[AcceptableDocument]]:
    grouped: Dict[str, List[AcceptableDocument]] = {}
    for doc in _as_models(acceptable_docs, AcceptableDocument):
        grouped.setdefault(doc.attribute_id, []).append(doc)
    return grouped


# ═══════════════════════════════════════════════════════════════════════════════
# DOCUMENT DROPDOWN
# ═══════════════════════════════════════════════════════════════════════════════

def build_document_options(documents: Iterable[AcceptableDocument]) -> List[DocumentOption]:
    """Attribute documents (each yields Pass) followed by the system options."""
    options: List[DocumentOption] = []
    seen = {option.label for option in SYSTEM_DOCUMENT_OPTIONS}
    for doc in documents:
        if not doc.document_name or doc.document_name in seen:
            continue
        seen.add(doc.document_name)
        options.append(DocumentOption(doc.document_name, Disposition.PASS))
    options.extend(SYSTEM_DOCUMENT_OPTIONS)
    return options


def disposition_for_document(row: PivotedRow, label: str) -> Optional[Disposition]:
    """The disposition a dropdown selection implies, or None if not offered."""
    for option in row.document_options:
        if option.label == label:
            return option.disposition
    return None


# ═══════════════════════════════════════════════════════════════════════════════
# PIVOT
# ═══════════════════════════════════════════════════════════════════════════════

def build_pivoted_rows(
    customers: Sequence[CustomerRecord],
    attributes: Sequence[AttributeDefinition],
    documents_by_attribute: Dict[str, List[AcceptableDocument]]
) -> List[PivotedRow]:
    rows: List[PivotedRow] = []
    for attr in attributes:
        cells: Dict[str, ResultCell] = {}
        for customer in customers:
            if not is_attribute_applicable(attr, customer):
                continue
            cells[customer.customer_id] = ResultCell(
                attribute_id=attr.attribute_id,
                customer_id=customer.customer_id,
                customer_name=customer.display_name,
            )

        if not cells:
            logger.debug(f"Skipping attribute {attr.attribute_id}: no assigned customer requires it")
            continue

        rows.append(PivotedRow(
            id=str(uuid.uuid4()),
            attribute_id=attr.attribute_id,
            attribute_name=attr.attribute_name,
            category=attr.category,
            question_text=attr.question_text,
            risk_scope=attr.risk_scope,
            is_required=attr.is_required,
            group=attr.group,
            source_file=attr.source_file,
            source=attr.source,
            source_page=attr.source_page,
            document_options=build_document_options(documents_by_attribute.get(attr.attribute_id, [])),
            cells=cells,
        ))
    return rows


def build_pivoted_workbook(
    auditor: Auditor,
    customers: Sequence[CustomerRecord],
    attributes: Sequence[AttributeDefinition],
    acceptable_docs: Iterable[Union[AcceptableDocument, Dict[str, Any]]] = (),
    audit_run_id: str = ""
) -> PivotedWorkbook:
    """
    Build one auditor's draft workbook.

    Args:
        auditor: Workbook owner
        customers: The auditor's assigned customers
        attributes: Full attribute catalog, in display order
        acceptable_docs: Acceptable documents for any attributes
        audit_run_id: Owning audit run

    Returns:
        Draft workbook with every cell empty and a fresh summary
    """
    documents_by_attribute = group_documents_by_attribute(acceptable_docs)
    rows = build_pivoted_rows(customers, attributes, documents_by_attribute)
    now = utc_now_iso()

    workbook = PivotedWorkbook(
        id=str(uuid.uuid4()),
        auditor_id=auditor.id,
        auditor_name=auditor.name,
        auditor_email=auditor.email,
        audit_run_id=audit_run_id,
        assigned_customers=list(customers),
        rows=rows,
        attributes=list(attributes),
        status=WorkbookStatus.DRAFT,
        created_at=now,
        updated_at=now,
    )
    refresh_summary(workbook)
    return workbook


def build_auditor_workbooks(
    samples: Iterable[Any],
    attributes: Iterable[Union[AttributeDefinition, Dict[str, Any]]],
    auditors: Iterable[Union[Auditor, Dict[str, Any]]],
    acceptable_docs: Iterable[Union[AcceptableDocument, Dict[str, Any]]] = (),
    strategy: Union[AssignmentStrategy, str, None] = None,
    audit_run_id: str = "",
    rng: Optional[random.Random] = None
) -> List[PivotedWorkbook]:
    """
    Build every auditor's workbook for an audit run.

    Args:
        samples: Sampled customer records (any supported key spelling)
        attributes: Attribute catalog
        auditors: Auditor roster; one workbook per entry, in order
        acceptable_docs: Acceptable documents table
        strategy: Distribution strategy (defaults to settings)
        audit_run_id: Owning audit run
        rng: Random source for the random strategy

    Returns:
        One draft workbook per auditor. Auditors left without customers
        still get an (empty) workbook.
    """
    start_time = time.time()

    customers = normalize_samples(samples)
    attributes = _as_models(attributes, AttributeDefinition)
    auditors = _as_models(auditors, Auditor)
    acceptable_docs = _as_models(acceptable_docs, AcceptableDocument)
    strategy = AssignmentStrategy.parse(strategy or get_settings().default_strategy)

    buckets = partition_samples(customers, len(auditors), strategy, rng)
    workbooks = [
        build_pivoted_workbook(auditor, bucket, attributes, acceptable_docs, audit_run_id)
        for auditor, bucket in zip(auditors, buckets)
    ]

    elapsed_ms = (time.time() - start_time) * 1000
    logger.info(
        f"Built {len(workbooks)} workbooks for run {audit_run_id or '-'} "
        f"({len(customers)} samples, {len(attributes)} attributes, {strategy.value}) "
        f"bucket sizes {[len(b) for b in buckets]}, "
        f"{sum(wb.summary.total_cells for wb in workbooks)} cells in {elapsed_ms:.1f}ms"
    )
    return workbooks


def assignment_summary(workbooks: Sequence[PivotedWorkbook]) -> Dict[str, Any]:
    """Per-auditor sample and cell counts across a run."""
    breakdown = [
        {
            "auditor_id": wb.auditor_id,
            "auditor_name": wb.auditor_name,
            "sample_count": len(wb.assigned_customers),
            "row_count": len(wb.rows),
            "cell_count": wb.summary.total_cells,
        }
        for wb in workbooks
    ]
    return {
        "total_samples": sum(a["sample_count"] for a in breakdown),
        "total_cells": sum(a["cell_count"] for a in breakdown),
        "auditor_breakdown": breakdown,
    }


# ═══════════════════════════════════════════════════════════════════════════════
# CELL UPDATES
# ═══════════════════════════════════════════════════════════════════════════════

def update_cell(
    workbook: PivotedWorkbook,
    attribute_id: str,
    customer_id: str,
    **changes: Any
) -> ResultCell:
    """
    Apply an auditor's edit to one cell and refresh the workbook summary.

    Selecting a document without an explicit disposition derives the
    disposition from the row's dropdown. The first edit moves a draft
    workbook to in_progress.

    Raises:
        WorkbookLockedError: If the workbook is submitted
        CellNotFoundError: If the pair is not in the sparse matrix
        TypeError: If an unknown field is passed
    """
    unknown = set(changes) - set(EDITABLE_CELL_FIELDS)
    if unknown:
        raise TypeError(f"Unknown cell field(s): {', '.join(sorted(unknown))}")

    if workbook.is_submitted:
        raise WorkbookLockedError(
            f"Cannot modify submitted workbook {workbook.id}. "
            f"Submitted results are read-only."
        )

    row = workbook.get_row(attribute_id)
    cell = row.cells.get(customer_id) if row is not None else None
    if cell is None:
        raise CellNotFoundError(workbook.id, attribute_id, customer_id)

    if "selected_document" in changes and "disposition" not in changes:
        derived = disposition_for_document(row, changes["selected_document"] or "")
        if derived is not None:
            changes["disposition"] = derived

    for name, value in changes.items():
        if isinstance(value, Disposition):
            value = value.value
        setattr(cell, name, "" if value is None else value)

    now = utc_now_iso()
    cell.updated_at = now
    workbook.updated_at = now
    if workbook.status == WorkbookStatus.DRAFT:
        workbook.status = WorkbookStatus.IN_PROGRESS

    refresh_summary(workbook)
    return cell
