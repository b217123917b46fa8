from abc import ABC, abstractmethod
from typing import Any, List, Optional
from arovia.domain.entities import AnalysisOptions, AnalysisOutcome


class IAnalysisService(ABC):
    """Interface for the sanitize, call, retry and normalize pipeline."""

    @abstractmethod
    async def analyze(
        self,
        user_id: str,
        payload: Any,
        health_databases: Optional[List[str]] = None,
        options: Optional[AnalysisOptions] = None,
    ) -> AnalysisOutcome:
        """Analyze a merged payload and return a current-shape result."""
        pass
