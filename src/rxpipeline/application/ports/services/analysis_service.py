"""
Language-model service interface for prescription analysis.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional


class AnalysisService(ABC):
    """Abstract chat completion service returning JSON text."""

    model_name: Optional[str] = None

    @abstractmethod
    async def complete(self, messages: List[Dict[str, str]]) -> str:
        """
        Run a chat completion that is asked to return a JSON object.

        Args:
            messages: OpenAI-style chat messages

        Returns:
            Raw response content. Callers must validate it; it may be malformed.

        Raises:
            AnalysisServiceError: network failure, API error or timeout (retryable)
        """
        pass
