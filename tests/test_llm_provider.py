import pytest
from unittest.mock import MagicMock, patch

from llm_provider import AzureOpenAIClient, GeminiClient, LLMProviderFactory
from utils import LLMAPIError


@pytest.fixture
def azure_settings():
    with patch.multiple(
        "llm_provider.config",
        AZURE_OPENAI_ENDPOINT="https://example.openai.azure.com",
        AZURE_OPENAI_API_KEY="azure-key",
        AZURE_OPENAI_DEPLOYMENT_NAME="gpt-4o-mini",
    ):
        yield


def test_invalid_provider_rejected():
    with pytest.raises(ValueError, match="Invalid model provider"):
        LLMProviderFactory.get_provider("anthropic")


def test_gemini_requires_api_key():
    with patch("llm_provider.config.GEMINI_API_KEY", None):
        with pytest.raises(ValueError, match="GEMINI_API_KEY"):
            LLMProviderFactory.get_provider("gemini")


def test_azure_requires_endpoint():
    with patch("llm_provider.config.AZURE_OPENAI_ENDPOINT", None):
        with pytest.raises(ValueError, match="AZURE_OPENAI_ENDPOINT"):
            AzureOpenAIClient()


def test_validate_provider_credentials(azure_settings):
    with patch("llm_provider.config.GEMINI_API_KEY", None):
        assert LLMProviderFactory.validate_provider_credentials("azure") is True
        assert LLMProviderFactory.validate_provider_credentials(" Azure ") is True
        assert LLMProviderFactory.validate_provider_credentials("gemini") is False
        assert LLMProviderFactory.validate_provider_credentials("other") is False


def test_azure_client_returns_llm_response(azure_settings):
    with patch("llm_provider.AzureOpenAI") as mock_azure:
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content="SCORE: 0.8 | CONFIDENCE: 0.7 | REASONING: ok"))]
        mock_azure.return_value.chat.completions.create.return_value = response

        client = LLMProviderFactory.get_provider("azure")
        result = client.generate_content("Compare these tickets")

    assert isinstance(client, AzureOpenAIClient)
    assert result.text == "SCORE: 0.8 | CONFIDENCE: 0.7 | REASONING: ok"
    kwargs = mock_azure.return_value.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["messages"][1] == {"role": "user", "content": "Compare these tickets"}
    assert kwargs["temperature"] == 0.3
    assert kwargs["max_tokens"] == 500


def test_azure_client_wraps_api_errors(azure_settings):
    with patch("llm_provider.AzureOpenAI") as mock_azure:
        mock_azure.return_value.chat.completions.create.side_effect = RuntimeError("rate limited")
        client = AzureOpenAIClient()

        with pytest.raises(LLMAPIError, match="rate limited"):
            client.generate_content("Compare these tickets")


def test_gemini_client_wraps_api_errors():
    with patch("llm_provider.config.GEMINI_API_KEY", "gemini-key"), \
         patch("llm_provider.genai.Client") as mock_genai:
        mock_genai.return_value.models.generate_content.side_effect = RuntimeError("quota exceeded")
        client = GeminiClient()

        with pytest.raises(LLMAPIError, match="quota exceeded"):
            client.generate_content("Compare these tickets")

    mock_genai.assert_called_once_with(api_key="gemini-key")
