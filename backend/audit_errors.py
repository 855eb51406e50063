"""
Audit Engine Errors

Raised for caller-side misuse only. Degenerate or malformed data flowing
through distribution, pivoting, progress tracking and consolidation never
raises; it lands in explicit fallback buckets instead.
"""

from typing import List, Optional


class AuditEngineError(Exception):
    """Base class for all audit engine errors"""
    pass


class InvalidStrategyError(AuditEngineError, ValueError):
    """Raised when a distribution strategy tag is not recognized"""
    pass


class CellNotFoundError(AuditEngineError, KeyError):
    """Raised when updating an (attribute, customer) pair absent from a workbook"""

    def __init__(self, workbook_id: str, attribute_id: str, customer_id: str):
        self.workbook_id = workbook_id
        self.attribute_id = attribute_id
        self.customer_id = customer_id
        super().__init__(
            f"Workbook {workbook_id} has no cell for attribute {attribute_id} "
            f"and customer {customer_id}. The attribute may not apply to this customer "
            f"or the customer is assigned to another auditor."
        )

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.args[0]


class WorkbookLockedError(AuditEngineError):
    """Raised when attempting to modify a submitted workbook"""
    pass


class SubmissionBlockedError(AuditEngineError):
    """Raised when a workbook fails its submission gate"""

    def __init__(self, workbook_id: str, errors: Optional[List[str]] = None):
        self.workbook_id = workbook_id
        self.errors = list(errors or [])
        detail = "; ".join(self.errors) if self.errors else "submission gate failed"
        super().__init__(f"Cannot submit workbook {workbook_id}: {detail}")
