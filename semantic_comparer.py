"""
LLM-backed semantic comparison of ticket pairs.
Supports multiple LLM providers (Gemini, Azure OpenAI) via factory pattern.

The comparer only produces the raw reply text; SimilarityAnalyzer owns
parsing and fallback handling.
"""

import asyncio
import logging

import config
import utils
from collaborators import SemanticComparer
from instrumentation import get_tracer
from llm_provider import LLMProviderFactory
from models import ComparisonContext


class LLMSemanticComparer(SemanticComparer):
    """
    Async semantic comparer with rate limiting, retries and tracing.
    """

    def __init__(self, model_provider: str = config.DEFAULT_MODEL_PROVIDER, llm_client=None):
        """
        Initialize comparer with specified LLM provider.

        Args:
            model_provider: LLM provider name ("gemini" or "azure")
            llm_client: Pre-built client exposing generate_content(); when
                        omitted one is created through LLMProviderFactory

        Raises:
            ValueError: If provider credentials are missing or invalid
        """
        self.logger = logging.getLogger("change_analyzer.semantic_comparer")
        self.model_provider = model_provider

        self.logger.info(f"Initializing semantic comparer with model provider: {model_provider}")
        self.llm_client = llm_client or LLMProviderFactory.get_provider(model_provider)

        # Rate limiting
        self.semaphore = asyncio.Semaphore(config.LLM_MAX_CONCURRENT)

        self.tracer = get_tracer(__name__)

    def format_prompt(self, context: ComparisonContext) -> str:
        """
        Format a ticket pair into the similarity prompt.

        Args:
            context: Both tickets and their shared change category

        Returns:
            Formatted prompt string
        """
        return config.SIMILARITY_PROMPT_TEMPLATE.format(
            category=context.category.value,
            summary_a=context.summary_a or 'No summary',
            description_a=context.description_a or 'No description',
            summary_b=context.summary_b or 'No summary',
            description_b=context.description_b or 'No description'
        )

    @utils.retry_on_failure()
    async def compare(self, context: ComparisonContext) -> str:
        """
        Ask the LLM how similar two tickets are.

        Args:
            context: Both tickets and their shared change category

        Returns:
            Raw reply text in the SCORE / CONFIDENCE / REASONING layout

        Raises:
            LLMAPIError: If the LLM call fails or returns an empty reply
        """
        pair = f"{context.id_a}/{context.id_b}"

        with self.tracer.start_as_current_span(
            "ticket.similarity_comparison",
            attributes={
                "ticket.pair": pair,
                "change.category": context.category.value,
                "operation.type": "similarity_comparison",
                "model.provider": self.model_provider,
            }
        ) as span:
            async with self.semaphore:
                self.logger.debug(f"Comparing tickets {pair}")

                try:
                    prompt = self.format_prompt(context)

                    # Provider SDKs are synchronous; keep the event loop free
                    response = await asyncio.to_thread(
                        self.llm_client.generate_content, prompt
                    )

                    if not response or not response.text:
                        raise utils.LLMAPIError(f"Empty response from LLM for tickets {pair}")

                    span.set_attribute("comparison.success", True)
                    span.set_attribute("response.length", len(response.text))

                    self.logger.info(f"Received similarity judgment for tickets {pair}")

                    if config.LLM_REQUEST_DELAY > 0:
                        await asyncio.sleep(config.LLM_REQUEST_DELAY)

                    return response.text

                except Exception as e:
                    error_msg = f"Failed to compare tickets {pair}: {e}"
                    self.logger.error(error_msg)

                    span.set_attribute("comparison.success", False)
                    span.set_attribute("error.message", str(e))
                    span.record_exception(e)

                    raise utils.LLMAPIError(error_msg)
