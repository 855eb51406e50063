"""
Risk Scope Service

Decides which catalog attributes must be tested for which customers,
and bands customers into reporting risk tiers.

Rule:
- Base and Both scoped attributes apply to every customer
- EDD scoped attributes apply only when the customer's IRR or DRR
  contains a "high" or "enhanced" marker (case-insensitive)

Missing risk fields mean "not proven high-risk": EDD attributes are skipped.
"""

from typing import Iterable, List, Optional, Set, Tuple

from audit_models import AttributeDefinition, CustomerRecord, RiskScope, RiskTier


HIGH_RISK_MARKERS = ("high", "enhanced")

# Display / sort order for tier breakdowns
RISK_TIER_ORDER = (
    RiskTier.CRITICAL,
    RiskTier.HIGH,
    RiskTier.MEDIUM,
    RiskTier.LOW,
    RiskTier.UNCATEGORIZED,
)


def is_high_risk(irr: Optional[str], drr: Optional[str] = None) -> bool:
    """True when either rating carries a high-risk marker."""
    for rating in (irr, drr):
        text = (rating or "").lower()
        if any(marker in text for marker in HIGH_RISK_MARKERS):
            return True
    return False


def is_scope_applicable(risk_scope: RiskScope, irr: Optional[str], drr: Optional[str] = None) -> bool:
    if risk_scope in (RiskScope.BASE, RiskScope.BOTH):
        return True
    if risk_scope == RiskScope.EDD:
        return is_high_risk(irr, drr)
    return False


def is_attribute_applicable(attribute: AttributeDefinition, customer: CustomerRecord) -> bool:
    """Whether `attribute` must be tested for `customer`."""
    return is_scope_applicable(attribute.risk_scope, customer.irr, customer.drr)


def applicable_attributes(
    customer: CustomerRecord,
    attributes: Iterable[AttributeDefinition]
) -> List[AttributeDefinition]:
    return [a for a in attributes if is_attribute_applicable(a, customer)]


def applicable_pairs(
    customers: Iterable[CustomerRecord],
    attributes: Iterable[AttributeDefinition]
) -> Set[Tuple[str, str]]:
    """
    Every (attribute_id, customer_id) pair that must be tested.

    This is the coverage target for the union of all workbooks of a run.
    """
    attributes = list(attributes)
    return {
        (attr.attribute_id, customer.customer_id)
        for customer in customers
        for attr in attributes
        if is_attribute_applicable(attr, customer)
    }


def risk_tier_for(irr: Optional[str]) -> RiskTier:
    """
    Band an IRR value into a reporting tier.

    Numeric ratings: >=4 Critical, >=3 High, >=2 Medium, else Low.
    Text ratings are matched on keywords. Blank or unreadable ratings
    fall into the Uncategorized bucket.
    """
    text = (irr or "").strip().lower()
    if not text:
        return RiskTier.UNCATEGORIZED

    try:
        score = float(text)
    except ValueError:
        score = None

    if score is not None:
        if score != score:  # NaN
            return RiskTier.UNCATEGORIZED
        if score >= 4:
            return RiskTier.CRITICAL
        if score >= 3:
            return RiskTier.HIGH
        if score >= 2:
            return RiskTier.MEDIUM
        return RiskTier.LOW

    if "critical" in text:
        return RiskTier.CRITICAL
    if any(marker in text for marker in HIGH_RISK_MARKERS):
        return RiskTier.HIGH
    if "medium" in text or "moderate" in text:
        return RiskTier.MEDIUM
    if "low" in text:
        return RiskTier.LOW
    return RiskTier.UNCATEGORIZED
