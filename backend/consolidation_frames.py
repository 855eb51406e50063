"""
Tabular views over workbooks and consolidation results.

Report generators and analysts work on DataFrames; these helpers build
them from the engine's objects without changing any numbers.
"""

from dataclasses import fields
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from audit_models import PivotedWorkbook
from consolidation_engine import ConsolidationEngine, ConsolidationResult, ResultRow


BREAKDOWN_DIMENSIONS = ("category", "attribute", "jurisdiction", "auditor", "risk_tier")


def workbook_to_frame(workbook: PivotedWorkbook) -> pd.DataFrame:
    """
    The workbook as an attribute x customer grid of dispositions.

    Pairs outside the sparse matrix are NaN. Empty (untested) cells are "".
    """
    customer_ids = [c.customer_id for c in workbook.assigned_customers]
    attribute_ids = [row.attribute_id for row in workbook.rows]

    frame = pd.DataFrame(np.nan, index=attribute_ids, columns=customer_ids, dtype=object)
    for row, cell in workbook.iter_cells():
        if cell.customer_id not in frame.columns:
            frame[cell.customer_id] = np.nan
        frame.at[row.attribute_id, cell.customer_id] = cell.disposition

    frame.index.name = "attribute_id"
    frame.columns.name = "customer_id"
    return frame


def result_stream_frame(
    workbooks: Iterable[PivotedWorkbook],
    engine: Optional[ConsolidationEngine] = None
) -> pd.DataFrame:
    """One row per result cell of the submitted workbooks, in stream order."""
    engine = engine or ConsolidationEngine()
    rows = engine.flatten(engine.submitted_workbooks(workbooks))
    columns = [f.name for f in fields(ResultRow)]
    return pd.DataFrame.from_records([r.to_dict() for r in rows], columns=columns)


def exceptions_frame(result: ConsolidationResult) -> pd.DataFrame:
    """The exception list as a table indexed by exception id."""
    records = [e.to_dict() for e in result.exceptions]
    if not records:
        return pd.DataFrame(columns=["customer_id", "attribute_id", "disposition"]).rename_axis("id")
    return pd.DataFrame.from_records(records).set_index("id")


def breakdown_frame(result: ConsolidationResult, dimension: str) -> pd.DataFrame:
    """
    One breakdown list as a table, in the engine's sort order.

    Args:
        result: Consolidation result
        dimension: One of "category", "attribute", "jurisdiction",
            "auditor", "risk_tier"

    Raises:
        ValueError: If the dimension is not recognized
    """
    if dimension not in BREAKDOWN_DIMENSIONS:
        raise ValueError(
            f"Unknown breakdown dimension {dimension!r}. "
            f"Expected one of: {', '.join(BREAKDOWN_DIMENSIONS)}"
        )

    entries: List = getattr(result, f"findings_by_{dimension}")
    records = [e.to_dict() for e in entries]
    if dimension == "attribute":
        for record in records:
            record["observations"] = "; ".join(record["observations"])
        index = "attribute_id"
    else:
        index = "key"

    if not records:
        return pd.DataFrame(columns=["total_tests", "pass_rate", "fail_rate"]).rename_axis(index)
    return pd.DataFrame.from_records(records).set_index(index)
