from abc import ABC, abstractmethod
from arovia.domain.entities import PredictionRequest


class IPredictionService(ABC):
    """Interface for the external LLM that generates risk predictions."""

    @abstractmethod
    async def generate(self, request: PredictionRequest) -> str:
        """
        Ask the model for a prediction document.

        Returns the raw model text. Transport failures are raised as
        UpstreamError subclasses carrying the HTTP-like status code.
        """
        pass
