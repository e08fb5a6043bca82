"""
LLM Provider Abstraction Layer for the Change Ticket Analyzer.

Implements a factory over the supported LLM providers:
- Google Gemini (google-genai SDK)
- Azure OpenAI (openai SDK)

Both clients expose a synchronous generate_content(prompt) returning an
object with a .text property, so the semantic comparer does not care which
provider is configured.
"""

import logging
from typing import Any
from openai import AzureOpenAI

from google import genai
from google.genai import types

import config
import utils


# ============================================================================
# RESPONSE WRAPPER CLASS (for consistency between providers)
# ============================================================================

class LLMResponse:
    """
    Unified response object that works across both Gemini and Azure OpenAI.

    Gemini returns response.text directly.
    Azure OpenAI returns response.choices[0].message.content.
    """

    def __init__(self, text: str, raw_response: Any = None):
        self.text = text
        self._raw_response = raw_response


# ============================================================================
# AZURE OPENAI CLIENT WRAPPER
# ============================================================================

class AzureOpenAIClient:
    """
    Wrapper for Azure OpenAI API that matches the Gemini client's interface.
    """

    def __init__(self):
        """
        Initialize Azure OpenAI client with credentials from config.

        Raises:
            ValueError: If Azure credentials are missing
        """
        self.logger = logging.getLogger("change_analyzer.llm_provider")

        if not config.AZURE_OPENAI_ENDPOINT:
            raise ValueError(
                "AZURE_OPENAI_ENDPOINT environment variable is not set. "
                "Please add it to your .env file."
            )
        if not config.AZURE_OPENAI_API_KEY:
            raise ValueError(
                "AZURE_OPENAI_API_KEY environment variable is not set. "
                "Please add it to your .env file."
            )
        if not config.AZURE_OPENAI_DEPLOYMENT_NAME:
            raise ValueError(
                "AZURE_OPENAI_DEPLOYMENT_NAME environment variable is not set. "
                "Please add it to your .env file."
            )

        self.logger.info("Initializing Azure OpenAI client")

        self.client = AzureOpenAI(
            azure_endpoint=config.AZURE_OPENAI_ENDPOINT,
            api_key=config.AZURE_OPENAI_API_KEY,
            api_version=config.AZURE_OPENAI_API_VERSION
        )

        self.deployment_name = config.AZURE_OPENAI_DEPLOYMENT_NAME
        self.logger.info(f"Azure OpenAI client initialized with deployment: {self.deployment_name}")

    def generate_content(self, prompt: str) -> LLMResponse:
        """
        Generate content using Azure OpenAI (synchronous).

        Args:
            prompt: The prompt text to send to the LLM

        Returns:
            LLMResponse object with .text property containing generated content

        Raises:
            utils.LLMAPIError: If the API call fails
        """
        try:
            self.logger.debug(f"Calling Azure OpenAI with deployment: {self.deployment_name}")

            response = self.client.chat.completions.create(
                model=self.deployment_name,  # This is the deployment name, not model name
                messages=[
                    {"role": "system", "content": config.LLM_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt}
                ],
                temperature=config.LLM_TEMPERATURE,
                max_tokens=config.LLM_MAX_TOKENS,
                top_p=0.95
            )

            generated_text = response.choices[0].message.content or ""

            self.logger.debug(f"Azure OpenAI response received: {len(generated_text)} characters")

            return LLMResponse(text=generated_text, raw_response=response)

        except Exception as e:
            self.logger.error(f"Azure OpenAI API call failed: {e}")
            raise utils.LLMAPIError(f"Azure OpenAI API call failed: {e}")


# ============================================================================
# GEMINI CLIENT WRAPPER
# ============================================================================

class GeminiClient:
    """
    Wrapper for Google Gemini API using the unified google-genai SDK.
    """

    def __init__(self):
        """
        Initialize Gemini client with API key from config.

        Raises:
            ValueError: If Gemini API key is missing
        """
        self.logger = logging.getLogger("change_analyzer.llm_provider")

        if not config.GEMINI_API_KEY:
            raise ValueError(
                "GEMINI_API_KEY environment variable is not set. "
                "Please add it to your .env file."
            )

        self.logger.info("Initializing Gemini client")

        self.client = genai.Client(api_key=config.GEMINI_API_KEY)
        self.model_name = config.GEMINI_MODEL

        self.logger.info(f"Gemini client initialized with model: {self.model_name}")

    def generate_content(self, prompt: str) -> Any:
        """
        Generate content using Gemini (synchronous).

        Args:
            prompt: The prompt text to send to the LLM

        Returns:
            Gemini response object with .text property

        Raises:
            utils.LLMAPIError: If API call fails
        """
        try:
            self.logger.debug(f"Calling Gemini with model: {self.model_name}")

            response = self.client.models.generate_content(
                model=self.model_name,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=config.LLM_SYSTEM_PROMPT,
                    temperature=config.LLM_TEMPERATURE,
                    max_output_tokens=config.LLM_MAX_TOKENS,
                )
            )

            self.logger.debug(f"Gemini response received: {len(response.text or '')} characters")

            return response

        except Exception as e:
            self.logger.error(f"Gemini API call failed: {e}")
            raise utils.LLMAPIError(f"Gemini API call failed: {e}")


# ============================================================================
# LLM PROVIDER FACTORY
# ============================================================================

class LLMProviderFactory:
    """
    Factory for creating LLM provider instances.

    Supports:
    - "gemini": Google Gemini (default)
    - "azure": Azure OpenAI

    Usage:
        provider = LLMProviderFactory.get_provider("azure")
        response = provider.generate_content("Compare these tickets...")
        print(response.text)
    """

    @staticmethod
    def get_provider(provider_name: str = config.DEFAULT_MODEL_PROVIDER):
        """
        Get LLM provider instance based on name.

        Args:
            provider_name: Provider name ("gemini" or "azure")

        Returns:
            Configured LLM client (GeminiClient or AzureOpenAIClient)

        Raises:
            ValueError: If provider_name is invalid or credentials are missing
        """
        logger = logging.getLogger("change_analyzer.llm_provider")

        provider_name_lower = provider_name.lower().strip()

        if provider_name_lower == "gemini":
            logger.info("Creating Gemini LLM provider")
            return GeminiClient()

        elif provider_name_lower == "azure":
            logger.info("Creating Azure OpenAI LLM provider")
            return AzureOpenAIClient()

        else:
            raise ValueError(
                f"Invalid model provider: '{provider_name}'. "
                f"Supported providers: 'gemini', 'azure'"
            )

    @staticmethod
    def validate_provider_credentials(provider_name: str) -> bool:
        """
        Check that credentials exist for the specified provider.

        Does NOT validate that credentials are correct (only that they exist).

        Args:
            provider_name: Provider name ("gemini" or "azure")

        Returns:
            True if credentials exist, False otherwise
        """
        provider_name_lower = provider_name.lower().strip()

        if provider_name_lower == "gemini":
            return bool(config.GEMINI_API_KEY)

        elif provider_name_lower == "azure":
            return bool(
                config.AZURE_OPENAI_ENDPOINT and
                config.AZURE_OPENAI_API_KEY and
                config.AZURE_OPENAI_DEPLOYMENT_NAME
            )

        return False
