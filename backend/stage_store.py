"""
Stage Store

Key/value storage for stage data handed between audit-run stages.
Engine functions never read or write a store; callers inject one and
move collections in and out explicitly.
"""

from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Dict, List, Optional
import logging

from audit_models import PivotedWorkbook

logger = logging.getLogger(__name__)


class StageStore(ABC):
    """Storage backend contract."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Stored value for `key`, or None if absent."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove `key`. Returns True if something was removed."""

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class InMemoryStageStore(StageStore):
    """
    Process-local store.

    Values are deep-copied on the way in and out, so callers never share
    mutable state through the store.
    """

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        if key not in self._data:
            return None
        return deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = deepcopy(value)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> List[str]:
        return sorted(self._data)


def workbooks_key(audit_run_id: str) -> str:
    return f"{audit_run_id}:workbooks"


def save_workbooks(store: StageStore, audit_run_id: str, workbooks: List[PivotedWorkbook]) -> None:
    store.set(workbooks_key(audit_run_id), list(workbooks))
    logger.debug(f"Saved {len(workbooks)} workbooks for run {audit_run_id}")


def load_workbooks(store: StageStore, audit_run_id: str) -> List[PivotedWorkbook]:
    """Workbooks saved for the run, or an empty list."""
    return store.get(workbooks_key(audit_run_id)) or []
