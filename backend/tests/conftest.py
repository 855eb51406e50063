"""
Pytest configuration and fixtures for the audit engine test suite

Markers:
    - unit: Fast unit tests
    - property: Property-based tests (Hypothesis)
    - metamorphic: Metamorphic relation tests
    - golden: Worked-example regression tests
"""

import pytest
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from audit_config import get_settings
from audit_models import Disposition
from workbook_builder import build_auditor_workbooks, update_cell
from workbook_progress import submit_workbook


# ═══════════════════════════════════════════════════════════════════════════════
# PYTEST CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "property: Property-based tests (Hypothesis)")
    config.addinivalue_line("markers", "metamorphic: Metamorphic relation tests")
    config.addinivalue_line("markers", "golden: Worked-example regression tests")


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached per process; re-read them around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ═══════════════════════════════════════════════════════════════════════════════
# REFERENCE DATA
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def attribute_catalog():
    """Four Base attributes across three categories plus one EDD attribute."""
    return [
        {"Attribute_ID": "ATTR001", "Attribute_Name": "Legal Name Verification",
         "Category": "Entity Profile", "Question_Text": "Is the legal name verified?",
         "RiskScope": "Base", "IsRequired": "Y"},
        {"Attribute_ID": "ATTR002", "Attribute_Name": "Address Verification",
         "Category": "Entity Profile", "Question_Text": "Is the address verified?",
         "RiskScope": "Base", "IsRequired": "Y"},
        {"Attribute_ID": "ATTR003", "Attribute_Name": "Beneficial Owner Identification",
         "Category": "Ownership", "Question_Text": "Are beneficial owners identified?",
         "RiskScope": "Both", "IsRequired": "Y"},
        {"Attribute_ID": "ATTR004", "Attribute_Name": "Sanctions Screening",
         "Category": "AML", "Question_Text": "Was sanctions screening performed?",
         "RiskScope": "Base", "IsRequired": "N"},
        {"Attribute_ID": "ATTR005", "Attribute_Name": "Source of Wealth",
         "Category": "EDD", "Question_Text": "Is source of wealth documented?",
         "RiskScope": "EDD", "IsRequired": "Y"},
    ]


@pytest.fixture
def acceptable_docs():
    return [
        {"Attribute_ID": "ATTR001", "Document_Name": "Certificate of Incorporation"},
        {"Attribute_ID": "ATTR001", "Document_Name": "Business Registry Extract"},
        {"Attribute_ID": "ATTR002", "Document_Name": "Utility Bill"},
        {"Attribute_ID": "ATTR005", "Document_Name": "Wealth Questionnaire"},
    ]


@pytest.fixture
def sample_customers():
    """Six sampled customers; two high risk, mixed key spellings."""
    return [
        {"GCI": "C001", "Legal_Name": "Acme Holdings Ltd", "Jurisdiction": "US", "IRR": "High"},
        {"GCI": "C002", "legalName": "Birch Capital LLC", "jurisdiction": "UK", "IRR": "Low"},
        {"GCI": "C003", "Legal Name": "Cobalt Trading Co", "Jurisdiction": "US", "IRR": "Medium"},
        {"caseId": "C004", "customerName": "Delta Ventures", "jurisdictionId": "HK",
         "IRR": "Low", "DRR": "Enhanced Due Diligence"},
        {"GCI": "C005", "Legal_Name": "Ember Partners", "Jurisdiction": "", "IRR": "Low"},
        {"Customer_ID": "C006", "Legal_Name": "Fjord Shipping AS", "Jurisdiction": "UK", "IRR": "3"},
    ]


@pytest.fixture
def auditors():
    return [
        {"id": "AUD001", "name": "John Smith", "email": "john.smith@example.com"},
        {"id": "AUD002", "name": "Sarah Johnson", "email": "sarah.johnson@example.com"},
    ]


@pytest.fixture
def workbooks(sample_customers, attribute_catalog, auditors, acceptable_docs):
    """Draft workbooks for the reference data, round-robin."""
    return build_auditor_workbooks(
        sample_customers, attribute_catalog, auditors, acceptable_docs,
        strategy="round-robin", audit_run_id="RUN-TEST"
    )


def complete_workbook(workbook, disposition=Disposition.PASS, overrides=None):
    """
    Set every cell to `disposition`, except (attribute_id, customer_id)
    pairs found in `overrides`, which map to dicts of cell changes.
    """
    overrides = overrides or {}
    for row, cell in list(workbook.iter_cells()):
        changes = overrides.get((row.attribute_id, cell.customer_id), {"disposition": disposition})
        update_cell(workbook, row.attribute_id, cell.customer_id, **changes)
    return workbook


def complete_and_submit(workbook, disposition=Disposition.PASS, overrides=None):
    complete_workbook(workbook, disposition, overrides)
    return submit_workbook(workbook, force=True)
