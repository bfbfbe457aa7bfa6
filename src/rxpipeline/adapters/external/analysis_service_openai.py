"""
OpenAI / Azure OpenAI implementation of the prescription analysis service.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from openai import APIError, APITimeoutError, OpenAIError

from rxpipeline.application.ports.services.analysis_service import AnalysisService
from rxpipeline.core.ai_client import ChatClient, create_chat_client
from rxpipeline.core.config import Settings, get_settings
from rxpipeline.core.exceptions import AnalysisServiceError
from rxpipeline.observability.metrics import record_ai_request

logger = logging.getLogger(__name__)


class OpenAIAnalysisService(AnalysisService):
    """Chat-completion analysis in JSON-object mode."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[ChatClient] = None, model: Optional[str] = None):
        self._settings = settings or get_settings()
        if client is None:
            client, model = create_chat_client(self._settings)
        self._client = client
        self.model_name = model or self._settings.openai.model

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        start_time = time.time()
        timeout = self._settings.analysis.timeout_seconds
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.model_name,
                    messages=messages,
                    temperature=self._settings.openai.temperature,
                    max_tokens=self._settings.openai.max_tokens,
                    response_format={"type": "json_object"},
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, APITimeoutError) as e:
            record_ai_request(self.model_name, (time.time() - start_time) * 1000, success=False)
            raise AnalysisServiceError(f"Request timed out after {timeout}s") from e
        except (APIError, OpenAIError) as e:
            record_ai_request(self.model_name, (time.time() - start_time) * 1000, success=False)
            raise AnalysisServiceError(str(e), {"type": type(e).__name__}) from e

        latency_ms = (time.time() - start_time) * 1000
        record_ai_request(self.model_name, latency_ms, success=True)

        usage = getattr(response, "usage", None)
        logger.info(
            f"AI_CALL: model={self.model_name} prompt_name=prescription_analysis "
            f"tokens={getattr(usage, 'total_tokens', 0)} latency={latency_ms:.0f}ms"
        )

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def close(self) -> None:
        await self._client.close()
