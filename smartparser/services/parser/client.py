"""
Chat-completion transport construction from settings.
"""

import logging

from openai import AsyncAzureOpenAI, AsyncOpenAI

from ...config import SmartParserSettings

logger = logging.getLogger(__name__)


def create_completion_client(settings: SmartParserSettings) -> AsyncOpenAI:
    """
    Create the async OpenAI client described by ``settings``.

    The network timeout and the client's built-in retry on transient failures
    (connection errors, 408/409/429/5xx) both come from settings.
    """
    if settings.provider == "azure":
        logger.info("Creating Azure OpenAI client for %s", settings.openai_endpoint)
        return AsyncAzureOpenAI(
            azure_endpoint=settings.openai_endpoint,
            api_key=settings.openai_credential_key,
            api_version=settings.api_version,
            timeout=float(settings.http_client_network_timeout_seconds),
            max_retries=settings.max_transport_retries,
        )

    logger.info("Creating OpenAI client for %s", settings.openai_endpoint)
    return AsyncOpenAI(
        base_url=settings.openai_endpoint,
        api_key=settings.openai_credential_key,
        timeout=float(settings.http_client_network_timeout_seconds),
        max_retries=settings.max_transport_retries,
    )
