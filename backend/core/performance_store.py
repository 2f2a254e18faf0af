"""
Refinement Performance Store
============================
Load/save hooks for the StrategyRefinementEngine's performance metrics.
The metrics travel as one JSON-compatible dict (camelCase keys), so any
backend only has to persist an opaque document.

  InMemoryPerformanceStore  - process-local, used by tests and REFINEMENT_STORE=memory
  SqlPerformanceStore       - one row in the refinement_data table via core.database
"""
import copy
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import StoreError

logger = logging.getLogger("PerformanceStore")


class PerformanceStore(ABC):

    @abstractmethod
    def load(self) -> Optional[Dict[str, Any]]:
        """Previously saved metrics, or None when nothing has been stored."""

    @abstractmethod
    def save(self, metrics: Dict[str, Any]) -> None:
        """Persist metrics; raises StoreError on failure."""


class InMemoryPerformanceStore(PerformanceStore):

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data = copy.deepcopy(initial) if initial is not None else None

    def load(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._data) if self._data is not None else None

    def save(self, metrics: Dict[str, Any]) -> None:
        self._data = copy.deepcopy(metrics)


class SqlPerformanceStore(PerformanceStore):

    def __init__(self, name: str = "strategy_refinement", session_factory=None):
        if session_factory is None:
            from core.database import SessionLocal
            session_factory = SessionLocal
        self.name = name
        self.session_factory = session_factory

    def load(self) -> Optional[Dict[str, Any]]:
        from core.database import StoredRefinementData

        db = self.session_factory()
        try:
            row = db.query(StoredRefinementData).filter_by(name=self.name).first()
            if row is None:
                return None
            return json.loads(row.payload)
        except (SQLAlchemyError, ValueError) as e:
            raise StoreError(f"Failed to load refinement data '{self.name}': {e}") from e
        finally:
            db.close()

    def save(self, metrics: Dict[str, Any]) -> None:
        from core.database import StoredRefinementData

        db = self.session_factory()
        try:
            payload = json.dumps(metrics, default=str)
            row = db.query(StoredRefinementData).filter_by(name=self.name).first()
            if row is None:
                db.add(StoredRefinementData(name=self.name, payload=payload))
            else:
                row.payload = payload
            db.commit()
        except (SQLAlchemyError, TypeError, ValueError) as e:
            db.rollback()
            raise StoreError(f"Failed to save refinement data '{self.name}': {e}") from e
        finally:
            db.close()


def build_performance_store(kind: str) -> PerformanceStore:
    """Store for REFINEMENT_STORE: 'memory' or anything else for SQL."""
    if (kind or "").lower() == "memory":
        logger.info("Refinement metrics kept in memory")
        return InMemoryPerformanceStore()
    logger.info("Refinement metrics persisted to the database")
    return SqlPerformanceStore()
