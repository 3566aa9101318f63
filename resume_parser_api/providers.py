"""Provider adapters for the model gateway and the factory that selects one."""

from typing import Any

import httpx
import structlog

from resume_parser_api.ai_parser import AIConfigurationError, AIParser, AIParsingError
from resume_parser_api.config import ProviderConfig, Settings

logger = structlog.get_logger()

SUPPORTED_PROVIDERS = ["google", "openai", "anthropic", "azure"]

PROVIDER_CAPABILITIES: dict[str, dict[str, Any]] = {
    "google": {
        "name": "Google AI (Gemini)",
        "models": ["gemini-2.0-flash", "gemini-1.5-pro", "gemini-1.5-flash"],
        "features": ["custom_structures", "model_fallback", "json_output"],
    },
    "openai": {
        "name": "OpenAI",
        "models": ["gpt-4", "gpt-4-turbo", "gpt-4o", "gpt-3.5-turbo"],
        "features": ["custom_structures", "json_output", "organization_billing"],
    },
    "anthropic": {
        "name": "Anthropic (Claude)",
        "models": ["claude-3-opus-20240229", "claude-3-sonnet-20240229", "claude-3-haiku-20240307"],
        "features": ["custom_structures", "json_output", "long_context"],
    },
    "azure": {
        "name": "Azure OpenAI",
        "models": ["deployment-defined"],
        "features": ["custom_structures", "json_output", "private_endpoints"],
    },
}


class GoogleAIParser(AIParser):
    """Gemini via the Generative Language REST API.

    When the configured model fails outright, the fallback models are tried
    in order. A response that is not JSON does not trigger a fallback.
    """

    provider_name = "Google AI (Gemini)"

    def __init__(
        self,
        config: ProviderConfig,
        fallback_models: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(config, **kwargs)
        self._fallback_models = fallback_models or []

    def _url(self, model: str) -> str:
        model = model.removeprefix("models/")
        return f"{self._config.base_url.rstrip('/')}/models/{model}:generateContent"

    async def _complete(self, prompt: str, model: str) -> str:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self._temperature,
                "maxOutputTokens": self._max_tokens,
            },
        }
        data = await self._post_json(
            self._url(model), payload, headers={"x-goog-api-key": self._config.api_key}
        )

        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback")
            reason = "no candidates"
            if isinstance(feedback, dict):
                reason = feedback.get("blockReason") or reason
            raise AIParsingError(f"{self.provider_name} returned no answer: {reason}")
        if not isinstance(candidates, list) or not isinstance(candidates[0], dict):
            raise _malformed(self.provider_name)

        content = candidates[0].get("content") or {}
        if not isinstance(content, dict):
            raise _malformed(self.provider_name)
        parts = content.get("parts") or []
        if not isinstance(parts, list):
            raise _malformed(self.provider_name)
        return "".join(_text_of(part, self.provider_name) for part in parts)

    async def _generate(self, prompt: str) -> tuple[str, str]:
        try:
            return await self._complete(prompt, self.model), self.model
        except AIParsingError as primary_error:
            logger.warning(
                "Primary model failed, trying fallback models",
                model=self.model,
                error=str(primary_error),
            )
            for fallback in self._fallback_models:
                if fallback.removeprefix("models/") == self.model.removeprefix("models/"):
                    continue
                try:
                    logger.info("Trying fallback model", model=fallback)
                    return await self._complete(prompt, fallback), fallback
                except AIParsingError as fallback_error:
                    logger.warning(
                        "Fallback model failed", model=fallback, error=str(fallback_error)
                    )
            raise primary_error


class OpenAIParser(AIParser):
    """OpenAI chat completions."""

    provider_name = "OpenAI"

    async def _complete(self, prompt: str, model: str) -> str:
        headers = {"Authorization": f"Bearer {self._config.api_key}"}
        if self._config.organization:
            headers["OpenAI-Organization"] = self._config.organization

        payload = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }
        data = await self._post_json(
            f"{self._config.base_url.rstrip('/')}/chat/completions", payload, headers
        )
        return _chat_choice_text(data, self.provider_name)


class AnthropicParser(AIParser):
    """Anthropic Messages API."""

    provider_name = "Anthropic (Claude)"

    async def _complete(self, prompt: str, model: str) -> str:
        headers = {
            "x-api-key": self._config.api_key,
            "anthropic-version": self._config.api_version or "2023-06-01",
        }
        payload = {
            "model": model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        data = await self._post_json(
            f"{self._config.base_url.rstrip('/')}/messages", payload, headers
        )

        blocks = data.get("content") or []
        if not isinstance(blocks, list):
            raise _malformed(self.provider_name)
        return "".join(
            _text_of(block, self.provider_name)
            for block in blocks
            if not isinstance(block, dict) or block.get("type", "text") == "text"
        )


class AzureOpenAIParser(AIParser):
    """Azure OpenAI chat completions against a named deployment."""

    provider_name = "Azure OpenAI"

    def __init__(self, config: ProviderConfig, **kwargs: Any):
        if not config.api_key or not config.endpoint:
            raise AIConfigurationError("Azure OpenAI API key and endpoint are required")
        super().__init__(config, **kwargs)

    @property
    def model(self) -> str:
        return self._config.model or "gpt-4"

    async def _complete(self, prompt: str, model: str) -> str:
        url = (
            f"{self._config.endpoint.rstrip('/')}/openai/deployments/{model}"
            f"/chat/completions?api-version={self._config.api_version}"
        )
        payload = {
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }
        data = await self._post_json(url, payload, headers={"api-key": self._config.api_key})
        return _chat_choice_text(data, self.provider_name)


def _malformed(provider: str) -> AIParsingError:
    return AIParsingError(f"{provider} returned a malformed response body")


def _text_of(part: Any, provider: str) -> str:
    if not isinstance(part, dict):
        raise _malformed(provider)
    text = part.get("text") or ""
    if not isinstance(text, str):
        raise _malformed(provider)
    return text


def _chat_choice_text(data: dict[str, Any], provider: str) -> str:
    choices = data.get("choices") or []
    if not choices:
        return ""
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        raise _malformed(provider)

    message = choices[0].get("message") or {}
    if not isinstance(message, dict):
        raise _malformed(provider)
    content = message.get("content") or ""
    if not isinstance(content, str):
        raise _malformed(provider)
    return content


_ADAPTERS: dict[str, type[AIParser]] = {
    "google": GoogleAIParser,
    "openai": OpenAIParser,
    "anthropic": AnthropicParser,
    "azure": AzureOpenAIParser,
}


def create_ai_parser(
    settings: Settings, http_client: httpx.AsyncClient | None = None
) -> AIParser:
    """Create the adapter selected by ``AI_PROVIDER``.

    Raises:
        AIConfigurationError: For unknown providers or missing credentials.
    """
    provider = settings.ai_provider.strip().lower()
    adapter = _ADAPTERS.get(provider)
    if adapter is None:
        raise AIConfigurationError(
            f"Unsupported AI provider: {settings.ai_provider}. "
            f"Supported providers: {', '.join(SUPPORTED_PROVIDERS)}"
        )

    kwargs: dict[str, Any] = {
        "temperature": settings.llm_temperature,
        "max_tokens": settings.llm_max_tokens,
        "timeout": settings.llm_timeout_seconds,
        "http_client": http_client,
    }
    if adapter is GoogleAIParser:
        kwargs["fallback_models"] = settings.google_fallback_model_list

    parser = adapter(settings.provider_config(provider), **kwargs)
    logger.info("AI parser created", provider=parser.get_provider_name(), model=parser.model)
    return parser
