"""
Audit Testing Models

Ingestion records (customers, attributes, acceptable documents, auditors)
and the pivoted workbook structures built from them.

Ingestion records are immutable pydantic models that normalize the
alternate key spellings callers hand us (e.g. `Legal_Name`, `legalName`,
`"Legal Name"`) once, at the boundary. Workbook structures are plain
dataclasses: they are mutated cell by cell during testing.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple
import enum
import logging
import math

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from audit_errors import InvalidStrategyError

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class Disposition(str, enum.Enum):
    """Outcome of a single test cell."""
    PASS = "Pass"
    PASS_WITH_OBSERVATION = "Pass w/Observation"
    FAIL_REGULATORY = "Fail 1 - Regulatory"
    FAIL_PROCEDURAL = "Fail 2 - Procedure"
    QUESTION_TO_LOB = "Question to LOB"
    NOT_APPLICABLE = "N/A"
    EMPTY = ""  # Untested

    @classmethod
    def parse(cls, value: Any) -> Optional["Disposition"]:
        """
        Map a raw cell value onto a Disposition.

        Returns None for values outside the known set so callers can count
        them under an "other" bucket instead of failing.
        """
        if value is None:
            return cls.EMPTY
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        return _DISPOSITION_LOOKUP.get(text.lower())


_DISPOSITION_LOOKUP = {d.value.lower(): d for d in Disposition}

FAILING_DISPOSITIONS = frozenset({Disposition.FAIL_REGULATORY, Disposition.FAIL_PROCEDURAL})


class RiskScope(str, enum.Enum):
    """Which customers an attribute must be tested for."""
    BASE = "Base"  # Every customer
    EDD = "EDD"    # High-risk customers only
    BOTH = "Both"  # Every customer


class WorkbookStatus(str, enum.Enum):
    """Lifecycle of an auditor workbook."""
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"


class AssignmentStrategy(str, enum.Enum):
    """How sampled customers are spread across auditors."""
    ROUND_ROBIN = "round-robin"
    RANDOM = "random"
    BALANCED = "balanced"

    @classmethod
    def parse(cls, value: Any) -> "AssignmentStrategy":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower().replace("_", "-")
        for strategy in cls:
            if strategy.value == text:
                return strategy
        raise InvalidStrategyError(
            f"Unknown assignment strategy {value!r}. "
            f"Expected one of: {', '.join(s.value for s in cls)}"
        )


class RiskTier(str, enum.Enum):
    """Reporting band derived from a customer's IRR."""
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    UNCATEGORIZED = "Uncategorized"


# ═══════════════════════════════════════════════════════════════════════════════
# INGESTION RECORDS
# ═══════════════════════════════════════════════════════════════════════════════

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def _as_text(value: Any) -> str:
    if _is_blank(value):
        return ""
    return str(value).strip()


class IngestedRecord(BaseModel):
    """Base for records supplied by upstream stages."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_blank_values(cls, data: Any) -> Any:
        # A blank value under one spelling must not shadow a filled-in
        # value under another spelling of the same field.
        if isinstance(data, Mapping):
            return {k: v for k, v in data.items() if not _is_blank(v)}
        return data


class CustomerRecord(IngestedRecord):
    """A sampled customer. Immutable once sampled."""
    customer_id: str = Field(
        "", validation_alias=AliasChoices("customer_id", "GCI", "Case_ID", "caseId", "customerId", "Customer_ID")
    )
    legal_name: str = Field(
        "", validation_alias=AliasChoices("legal_name", "Legal_Name", "legalName", "Legal Name", "customerName")
    )
    jurisdiction: str = Field(
        "", validation_alias=AliasChoices("jurisdiction", "Jurisdiction", "jurisdictionId")
    )
    irr: str = Field("", validation_alias=AliasChoices("irr", "IRR"))
    drr: str = Field("", validation_alias=AliasChoices("drr", "DRR"))
    party_type: str = Field(
        "", validation_alias=AliasChoices("party_type", "Party_Type", "partyType", "Party Type")
    )
    kyc_date: str = Field(
        "", validation_alias=AliasChoices("kyc_date", "KYC_Date", "kycDate", "KYC Date")
    )
    primary_unit: str = Field(
        "", validation_alias=AliasChoices("primary_unit", "Primary_FLU", "primaryFlu", "Primary FLU")
    )
    # 1-based position in the original sample
    position: int = Field(0, ge=0, validation_alias=AliasChoices("position", "samplingIndex"))

    @field_validator(
        "customer_id", "legal_name", "jurisdiction", "irr", "drr",
        "party_type", "kyc_date", "primary_unit",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @classmethod
    def from_raw(cls, raw: Any, position: int) -> "CustomerRecord":
        """
        Normalize one sampled record.

        Args:
            raw: Mapping with any supported key spelling, or a CustomerRecord
            position: 1-based index in the original sample order
        """
        if isinstance(raw, CustomerRecord):
            record = raw if raw.position else raw.model_copy(update={"position": position})
        else:
            data = dict(raw)
            data["position"] = position
            record = cls.model_validate(data)
        if not record.customer_id:
            record = record.model_copy(update={"customer_id": f"CASE-{record.position}"})
        return record

    @property
    def display_name(self) -> str:
        return self.legal_name or self.customer_id

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


class AttributeDefinition(IngestedRecord):
    """A catalog entry describing one thing to test."""
    attribute_id: str = Field(validation_alias=AliasChoices("attribute_id", "Attribute_ID", "attributeId", "id"))
    attribute_name: str = Field(
        "", validation_alias=AliasChoices("attribute_name", "Attribute_Name", "attributeName", "name")
    )
    category: str = Field("", validation_alias=AliasChoices("category", "Category", "attributeCategory"))
    question_text: str = Field(
        "", validation_alias=AliasChoices("question_text", "Question_Text", "questionText")
    )
    risk_scope: RiskScope = Field(
        RiskScope.BASE, validation_alias=AliasChoices("risk_scope", "RiskScope", "riskScope")
    )
    is_required: bool = Field(True, validation_alias=AliasChoices("is_required", "IsRequired", "isRequired"))
    group: str = Field("", validation_alias=AliasChoices("group", "Group"))
    source_file: str = Field("", validation_alias=AliasChoices("source_file", "Source_File", "sourceFile"))
    source: str = Field("", validation_alias=AliasChoices("source", "Source"))
    source_page: str = Field("", validation_alias=AliasChoices("source_page", "Source_Page", "sourcePage"))

    @field_validator(
        "attribute_id", "attribute_name", "category", "question_text",
        "group", "source_file", "source", "source_page",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("risk_scope", mode="before")
    @classmethod
    def _parse_risk_scope(cls, value: Any) -> RiskScope:
        if isinstance(value, RiskScope):
            return value
        text = _as_text(value).lower()
        for scope in RiskScope:
            if scope.value.lower() == text:
                return scope
        logger.warning(f"Unrecognized risk scope {value!r}, treating attribute as Base scope")
        return RiskScope.BASE

    @field_validator("is_required", mode="before")
    @classmethod
    def _parse_required_flag(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        return _as_text(value).lower() in ("y", "yes", "true", "1")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class AcceptableDocument(IngestedRecord):
    """A document that satisfies an attribute when found on file."""
    attribute_id: str = Field(validation_alias=AliasChoices("attribute_id", "Attribute_ID", "attributeId"))
    document_name: str = Field(
        validation_alias=AliasChoices("document_name", "Document_Name", "documentName", "name")
    )
    evidence_description: str = Field(
        "", validation_alias=AliasChoices("evidence_description", "Evidence_Description", "evidenceDescription")
    )

    @field_validator("attribute_id", "document_name", "evidence_description", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)


class Auditor(IngestedRecord):
    """A member of the testing pool."""
    id: str = Field(validation_alias=AliasChoices("id", "auditor_id", "auditorId"))
    name: str = Field("", validation_alias=AliasChoices("name", "auditor_name", "auditorName"))
    email: str = Field("", validation_alias=AliasChoices("email", "auditor_email", "auditorEmail"))

    @field_validator("id", "name", "email", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)


# ═══════════════════════════════════════════════════════════════════════════════
# WORKBOOK STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DocumentOption:
    """One entry in a row's acceptable-document dropdown."""
    label: str
    disposition: Disposition
    is_system: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "disposition": self.disposition.value,
            "is_system": self.is_system,
        }


@dataclass
class ResultCell:
    """The unit of testing work: one attribute for one customer."""
    attribute_id: str
    customer_id: str
    customer_name: str = ""
    disposition: str = ""
    selected_document: str = ""
    observation: str = ""
    evidence_reference: str = ""
    auditor_notes: str = ""
    updated_at: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return Disposition.parse(self.disposition) == Disposition.EMPTY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute_id": self.attribute_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "disposition": self.disposition,
            "selected_document": self.selected_document,
            "observation": self.observation,
            "evidence_reference": self.evidence_reference,
            "auditor_notes": self.auditor_notes,
            "updated_at": self.updated_at,
        }


@dataclass
class PivotedRow:
    """One attribute and its cells, keyed by customer id."""
    id: str
    attribute_id: str
    attribute_name: str
    category: str
    question_text: str
    risk_scope: RiskScope
    is_required: bool = True
    group: str = ""
    source_file: str = ""
    source: str = ""
    source_page: str = ""
    document_options: List[DocumentOption] = field(default_factory=list)
    cells: Dict[str, ResultCell] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "attribute_id": self.attribute_id,
            "attribute_name": self.attribute_name,
            "category": self.category,
            "question_text": self.question_text,
            "risk_scope": self.risk_scope.value,
            "is_required": self.is_required,
            "group": self.group,
            "source_file": self.source_file,
            "source": self.source,
            "source_page": self.source_page,
            "document_options": [o.to_dict() for o in self.document_options],
            "cells": {cid: c.to_dict() for cid, c in self.cells.items()},
        }


@dataclass
class WorkbookSummary:
    """Progress counters for one workbook. Always derived from cell state."""
    total_cells: int = 0
    completed_cells: int = 0
    pass_count: int = 0
    pass_with_observation_count: int = 0
    fail_regulatory_count: int = 0
    fail_procedural_count: int = 0
    question_to_lob_count: int = 0
    na_count: int = 0
    other_count: int = 0  # Unrecognized dispositions
    empty_count: int = 0
    completion_percentage: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_cells": self.total_cells,
            "completed_cells": self.completed_cells,
            "pass_count": self.pass_count,
            "pass_with_observation_count": self.pass_with_observation_count,
            "fail_regulatory_count": self.fail_regulatory_count,
            "fail_procedural_count": self.fail_procedural_count,
            "question_to_lob_count": self.question_to_lob_count,
            "na_count": self.na_count,
            "other_count": self.other_count,
            "empty_count": self.empty_count,
            "completion_percentage": self.completion_percentage,
        }


@dataclass
class PivotedWorkbook:
    """
    A testing matrix owned by exactly one auditor.

    Rows are attributes, columns are the auditor's assigned customers.
    A row only holds cells for customers the attribute applies to.
    """
    id: str
    auditor_id: str
    auditor_name: str
    auditor_email: str = ""
    audit_run_id: str = ""
    assigned_customers: List[CustomerRecord] = field(default_factory=list)
    rows: List[PivotedRow] = field(default_factory=list)
    attributes: List[AttributeDefinition] = field(default_factory=list)
    status: WorkbookStatus = WorkbookStatus.DRAFT
    summary: WorkbookSummary = field(default_factory=WorkbookSummary)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    submitted_at: Optional[str] = None

    @property
    def is_submitted(self) -> bool:
        return self.status == WorkbookStatus.SUBMITTED

    @property
    def customers_by_id(self) -> Dict[str, CustomerRecord]:
        return {c.customer_id: c for c in self.assigned_customers}

    def get_row(self, attribute_id: str) -> Optional[PivotedRow]:
        for row in self.rows:
            if row.attribute_id == attribute_id:
                return row
        return None

    def get_cell(self, attribute_id: str, customer_id: str) -> Optional[ResultCell]:
        row = self.get_row(attribute_id)
        if row is None:
            return None
        return row.cells.get(customer_id)

    def iter_cells(self) -> Iterator[Tuple[PivotedRow, ResultCell]]:
        """Yield (row, cell) in row order, then customer insertion order."""
        for row in self.rows:
            for cell in row.cells.values():
                yield row, cell

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "auditor_id": self.auditor_id,
            "auditor_name": self.auditor_name,
            "auditor_email": self.auditor_email,
            "audit_run_id": self.audit_run_id,
            "assigned_customers": [c.to_dict() for c in self.assigned_customers],
            "rows": [r.to_dict() for r in self.rows],
            "attributes": [a.to_dict() for a in self.attributes],
            "status": self.status.value,
            "summary": self.summary.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "submitted_at": self.submitted_at,
        }
