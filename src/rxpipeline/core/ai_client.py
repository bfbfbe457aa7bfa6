"""
AI client factory.

Returns an ``AsyncAzureOpenAI`` client when Azure OpenAI is configured (or
forced with ``ANALYSIS_PROVIDER=azure``), otherwise a plain ``AsyncOpenAI``
client. The second element of the returned tuple is the model (OpenAI) or
deployment (Azure) name to pass as ``model=``.
"""

import logging
from typing import Optional, Tuple, Union

from openai import AsyncAzureOpenAI, AsyncOpenAI

from .config import Settings, get_settings
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ChatClient = Union[AsyncAzureOpenAI, AsyncOpenAI]


def resolve_provider(settings: Settings) -> str:
    provider = settings.analysis.provider
    if provider == "auto":
        return "azure" if settings.azure_openai.is_configured else "openai"
    return provider


def create_chat_client(settings: Optional[Settings] = None) -> Tuple[ChatClient, str]:
    """Build the chat client for the configured provider."""
    settings = settings or get_settings()
    provider = resolve_provider(settings)
    timeout = settings.analysis.timeout_seconds

    if provider == "azure":
        azure = settings.azure_openai
        if not azure.is_configured:
            raise ConfigurationError(
                "Azure OpenAI is selected but AZURE_OPENAI_ENDPOINT / AZURE_OPENAI_API_KEY are not set"
            )
        client = AsyncAzureOpenAI(
            api_key=azure.api_key,
            api_version=azure.api_version,
            azure_endpoint=azure.endpoint.rstrip("/"),
            timeout=timeout,
            max_retries=0,
        )
        logger.info(f"Azure OpenAI client initialized (deployment={azure.deployment_name})")
        return client, azure.deployment_name

    if not settings.openai.api_key:
        raise ConfigurationError("OPENAI_API_KEY is required when Azure OpenAI is not configured")
    client = AsyncOpenAI(api_key=settings.openai.api_key, timeout=timeout, max_retries=0)
    logger.info(f"OpenAI client initialized (model={settings.openai.model})")
    return client, settings.openai.model
