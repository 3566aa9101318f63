"""Model gateway base: prompts, response cleanup and the provider error taxonomy.

Concrete adapters live in ``providers.py``; each one only knows how to turn a
prompt into completion text for its vendor. Everything else (prompt wording,
JSON extraction, template reconciliation, error classification and call
logging) is shared here.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, NoReturn, cast

import httpx
import structlog

from resume_parser_api.config import ProviderConfig
from resume_parser_api.observability import log_llm_request, log_llm_response
from resume_parser_api.reconciler import JSONValue, reconcile

logger = structlog.get_logger()


class AIParserError(Exception):
    """Base exception for model gateway errors."""

    pass


class AIConfigurationError(AIParserError):
    """Raised when a provider is unknown or missing credentials."""

    pass


class AIParsingError(AIParserError):
    """Raised when a model call fails or its answer cannot be used."""

    pass


class AIProviderAuthError(AIParsingError):
    """Raised when the provider rejects the credential."""

    pass


class AIProviderQuotaError(AIParsingError):
    """Raised when the provider account is out of quota or billing."""

    pass


class AIProviderRateLimitError(AIParsingError):
    """Raised when the provider throttles the request."""

    pass


class AIResponseFormatError(AIParsingError):
    """Raised when the model answer is not valid JSON."""

    pass


CUSTOM_PROMPT = """
You are an expert resume parser. Parse the following resume text and extract structured information.
Return the response as a valid JSON object that EXACTLY matches the structure provided below.

CRITICAL INSTRUCTIONS:
1. Return ONLY valid JSON - no markdown, no explanations, no additional text
2. Follow the EXACT structure provided - do not add, remove, or rename any fields
3. Preserve all field names exactly as given in the template
4. If information is not available, use appropriate defaults:
   - For strings: use empty string "" or null
   - For arrays: use empty array []
   - For objects: use empty object {{}} or fill with null values
   - For numbers: use null or 0
5. Ensure all dates are in YYYY-MM format or "Present" for current positions
6. For fields that are empty strings ("") but should contain arrays, convert to appropriate arrays
7. Respect the data types implied by the template structure
8. Extract ALL relevant information from the resume, even if partially complete

TEMPLATE STRUCTURE TO FOLLOW EXACTLY:
{template}

RESUME CONTENT TO PARSE:
{content}

RESPOND WITH JSON MATCHING THE EXACT TEMPLATE STRUCTURE:"""

DEFAULT_PROMPT = """
You are an expert resume parser. Parse the following resume text and extract structured information.
Return the response as a valid JSON object with a comprehensive structure.

INSTRUCTIONS:
1. Return ONLY valid JSON - no markdown, no explanations, no additional text
2. Extract ALL available information from the resume
3. Use null for missing information, empty arrays [] for missing lists
4. Ensure all dates are in YYYY-MM format or "Present" for current positions
5. Create a comprehensive structure that captures all resume information

RESUME CONTENT TO PARSE:
{content}

RESPOND WITH COMPREHENSIVE JSON STRUCTURE:"""

CONNECTION_TEST_PROMPT = 'Please respond with just: {"status": "ok"}'


def build_prompt(content: str, template: JSONValue | None = None) -> str:
    """Build the template-constrained or open-ended extraction prompt."""
    if template is not None:
        return CUSTOM_PROMPT.format(
            template=json.dumps(template, indent=2, ensure_ascii=False),
            content=content,
        )
    return DEFAULT_PROMPT.format(content=content)


def clean_json_response(text: str) -> str:
    """Strip Markdown code fences and any prose around the outermost object."""
    cleaned = text.replace("```json", "").replace("```", "").strip()

    first_brace = cleaned.find("{")
    last_brace = cleaned.rfind("}")
    if first_brace != -1 and last_brace > first_brace:
        cleaned = cleaned[first_brace : last_brace + 1]

    return cleaned


def classify_provider_error(
    provider: str, status: int | None, detail: str
) -> AIParsingError:
    """Map a failed provider call onto the error taxonomy.

    Status codes are checked first; message substrings cover providers that
    report quota or auth problems with a generic status.
    """
    text = detail.lower()

    if (
        status in (401, 403)
        or "api key" in text
        or "api_key_invalid" in text
        or "authentication" in text
        or "permission_denied" in text
    ):
        return AIProviderAuthError(
            f"Invalid {provider} API key or permissions. Please check your configuration."
        )
    if "quota" in text or "billing" in text:
        return AIProviderQuotaError(f"{provider} quota exceeded. Please check your billing.")
    if status == 429 or "rate limit" in text or "rate_limit_exceeded" in text:
        return AIProviderRateLimitError(
            f"{provider} rate limit exceeded. Please try again later."
        )
    if status == 404:
        return AIParsingError(f"{provider} model not available: {detail}")
    return AIParsingError(f"Failed to parse resume with {provider} service: {detail}")


class AIParser(ABC):
    """Base class for provider adapters.

    Adapters implement ``_complete`` (one HTTP round trip returning the model
    text). The HTTP client is created lazily on first use unless one is
    injected, in which case the caller owns its lifecycle.
    """

    provider_name: str = "AI"

    def __init__(
        self,
        config: ProviderConfig,
        temperature: float = 0.1,
        max_tokens: int = 4000,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        if not config.api_key:
            raise AIConfigurationError(f"{self.provider_name} API key is required")

        self._config = config
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "AIParser":
        """Enter async context."""
        await self.connect()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        """Exit async context."""
        await self.close()

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(self._timeout, connect=10.0),
        )
        logger.info("AI provider client connected", provider=self.provider_name, model=self.model)

    async def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.info("AI provider client closed", provider=self.provider_name)

    @property
    def model(self) -> str:
        return self._config.model

    def is_configured(self) -> bool:
        """Check that a plausible API key is present."""
        return bool(self._config.api_key) and len(self._config.api_key) > 10

    def get_provider_name(self) -> str:
        return self.provider_name

    @abstractmethod
    async def _complete(self, prompt: str, model: str) -> str:
        """Send one completion request and return the model text."""
        raise NotImplementedError

    async def _generate(self, prompt: str) -> tuple[str, str]:
        """Run the prompt and return ``(text, model_that_answered)``."""
        return await self._complete(prompt, self.model), self.model

    async def parse_resume(self, content: str, template: JSONValue | None = None) -> JSONValue:
        """Extract structured data from résumé text.

        Args:
            content: Plain text of the document.
            template: Optional schema-by-example; when given the answer is
                reconciled against it.

        Returns:
            Decoded (and, with a template, reconciled) JSON value.

        Raises:
            AIParsingError: If the call fails or the answer is not JSON.
        """
        if not content or not content.strip():
            raise AIParsingError("Empty content provided for parsing")

        prompt = build_prompt(content, template)
        request_log = log_llm_request(
            provider=self.provider_name,
            model=self.model,
            prompt=prompt,
            has_template=template is not None,
        )

        try:
            text, model_used = await self._generate(prompt)
        except Exception as e:
            log_llm_response(request_log, error=str(e) or type(e).__name__)
            raise

        log_llm_response(request_log, response_chars=len(text), model=model_used)
        return self.process_response(text, template)

    def process_response(self, text: str, template: JSONValue | None = None) -> JSONValue:
        """Decode the model answer and reconcile it against the template."""
        cleaned = clean_json_response(text)
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.warning(
                "Model returned invalid JSON",
                provider=self.provider_name,
                preview=cleaned[:200],
            )
            raise AIResponseFormatError(
                f"Invalid JSON response from {self.provider_name}: {e.msg}"
            ) from e

        if template is not None:
            return reconcile(template, parsed)
        return parsed

    async def test_connection(self) -> bool:
        """Minimal round trip to check credentials and reachability."""
        try:
            text = await self._complete(CONNECTION_TEST_PROMPT, self.model)
        except Exception as e:
            logger.warning(
                "AI connection test failed", provider=self.provider_name, error=str(e)
            )
            return False
        return "ok" in text or "status" in text

    async def _post_json(
        self, url: str, payload: dict[str, Any], headers: dict[str, str]
    ) -> dict[str, Any]:
        """POST a JSON payload and return the decoded JSON envelope."""
        if self._client is None:
            await self.connect()
        client = cast(httpx.AsyncClient, self._client)

        try:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e)
        except httpx.HTTPError as e:
            logger.error("AI provider request failed", provider=self.provider_name, error=str(e))
            raise AIParsingError(f"{self.provider_name} request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise AIParsingError(f"{self.provider_name} returned a malformed response body") from e

        if not isinstance(data, dict):
            raise AIParsingError(f"{self.provider_name} returned a malformed response body")
        return data

    def _handle_http_error(self, error: httpx.HTTPStatusError) -> NoReturn:
        """Handle HTTP errors from the provider API."""
        status = error.response.status_code
        try:
            body = error.response.json()
            detail = body.get("error", {}).get("message", str(error))
        except (ValueError, AttributeError):
            detail = error.response.text or str(error)

        logger.error("AI provider API error", provider=self.provider_name, status=status, detail=detail)
        raise classify_provider_error(self.provider_name, status, detail) from error
