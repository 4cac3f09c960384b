"""LLM call wrapper - Anthropic Messages API over httpx."""
import time
from typing import TYPE_CHECKING, Any, Literal, Protocol

import httpx
from pydantic import BaseModel, Field, ValidationError

from office_engine.config import get_settings
from office_engine.config.settings import FALLBACK_MODEL_PRICING, Settings
from office_engine.observability import get_logger, with_trace_context
from office_engine.runtime.contracts import ActionLogEntry

if TYPE_CHECKING:
    from office_engine.storage.base import ExecutionStore

logger = get_logger(__name__)


class LLMError(Exception):
    """Base error for failed LLM calls."""

    pass


class LLMUnavailableError(LLMError):
    """Provider unreachable, timed out, rate limited or returned 5xx."""

    pass


class LLMRequestError(LLMError):
    """Provider rejected the request (4xx) or returned a malformed response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TextBlock(BaseModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """Tool invocation requested by the model."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class LLMUsage(BaseModel):
    """Token usage information."""

    input_tokens: int = 0
    output_tokens: int = 0


class LLMResponse(BaseModel):
    """Parsed provider response."""

    id: str | None = None
    model: str | None = None
    content: list[TextBlock | ToolUseBlock] = Field(default_factory=list)
    stop_reason: str | None = None
    usage: LLMUsage = Field(default_factory=LLMUsage)

    def text_blocks(self) -> list[str]:
        return [block.text for block in self.content if isinstance(block, TextBlock)]

    def tool_use_blocks(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    def content_params(self) -> list[dict[str, Any]]:
        """Content blocks in the shape the provider expects for an assistant turn."""
        return [block.model_dump() for block in self.content]


class LLMRequest(BaseModel):
    """Parameters of one Messages API call."""

    model: str
    max_tokens: int
    temperature: float | None = None
    system: str | None = None
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] | None = None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": self.messages,
        }
        if self.temperature is not None:
            body["temperature"] = self.temperature
        if self.system:
            body["system"] = self.system
        if self.tools:
            body["tools"] = self.tools
        return body


class LLMCallContext(BaseModel):
    """Who is making the call; used for audit and proxy attribution."""

    project_id: str
    agent_id: str
    session_id: str
    agent_name: str | None = None


class LLMCallMetadata(BaseModel):
    """Usage and cost of one call."""

    input_tokens: int
    output_tokens: int
    total_tokens: int
    cost_usd: float
    duration_ms: int
    model: str
    used_fallback: bool = False


class LLMCallResult(BaseModel):
    """Response plus metadata."""

    response: LLMResponse
    metadata: LLMCallMetadata


class LLMClient(Protocol):
    """Anything that can perform an LLM call for the executors."""

    def call(self, request: LLMRequest, context: LLMCallContext) -> LLMCallResult: ...


def calculate_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    pricing: dict[str, dict[str, float]],
) -> float:
    """Cost in USD from a per-million-token pricing table."""
    model_pricing = pricing.get(model)
    if model_pricing is None:
        logger.warning(f"Unknown model {model!r}, using default pricing")
        model_pricing = FALLBACK_MODEL_PRICING
    return (
        input_tokens * model_pricing["input"] + output_tokens * model_pricing["output"]
    ) / 1_000_000


class AnthropicLLMClient:
    """
    Anthropic Messages API client.

    Routes through the configured proxy when ``llm_proxy_base_url`` is set and
    falls back to the direct API on proxy connection errors, timeouts and 5xx
    responses. Each call is mirrored to the execution store as an
    ``llm_response`` action log; store failures never affect the call result.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: "ExecutionStore | None" = None,
        http_client: httpx.Client | None = None,
    ):
        self._settings = settings or get_settings()
        self._store = store
        self._http_client = http_client

    @property
    def proxy_enabled(self) -> bool:
        return bool(self._settings.llm_proxy_base_url)

    def call(self, request: LLMRequest, context: LLMCallContext) -> LLMCallResult:
        start = time.monotonic()
        extra = with_trace_context(
            logger,
            session_id=context.session_id,
            agent_id=context.agent_id,
            project_id=context.project_id,
            model=request.model,
            max_tokens=request.max_tokens,
        )
        logger.info("llm_call_start", extra=extra)

        used_fallback = False
        try:
            http_response = None
            if self.proxy_enabled:
                try:
                    http_response = self._post(request, context, proxied=True)
                    if http_response.status_code >= 500:
                        fallback_reason = f"proxy returned {http_response.status_code}"
                        http_response = None
                except LLMUnavailableError as exc:
                    fallback_reason = str(exc)

                if http_response is None:
                    logger.warning(
                        "LLM proxy error, falling back to direct API",
                        extra={**extra, "error": fallback_reason},
                    )
                    used_fallback = True

            if http_response is None:
                http_response = self._post(request, context, proxied=False)

            response = self._parse_response(http_response)
        except LLMError as exc:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.error("llm_call_failed", extra={**extra, "error": str(exc)})
            self._log_action(
                ActionLogEntry(
                    project_id=context.project_id,
                    agent_id=context.agent_id,
                    session_id=context.session_id,
                    action_type="llm_response",
                    input=self._audit_input(request),
                    status="failed",
                    error=str(exc),
                    duration_ms=duration_ms,
                )
            )
            raise

        duration_ms = int((time.monotonic() - start) * 1000)
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        total_tokens = input_tokens + output_tokens
        cost_usd = calculate_cost(
            request.model,
            input_tokens,
            output_tokens,
            self._settings.get_llm_pricing(),
        )

        self._log_action(
            ActionLogEntry(
                project_id=context.project_id,
                agent_id=context.agent_id,
                session_id=context.session_id,
                action_type="llm_response",
                input=self._audit_input(request),
                output={
                    "stopReason": response.stop_reason,
                    "contentBlocks": len(response.content),
                    "usedFallback": used_fallback,
                },
                status="completed",
                tokens_used=total_tokens,
                cost_usd=cost_usd,
                duration_ms=duration_ms,
            )
        )

        logger.info(
            "llm_call_end",
            extra={
                **extra,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cost_usd": cost_usd,
                "duration_ms": duration_ms,
                "used_fallback": used_fallback,
            },
        )

        return LLMCallResult(
            response=response,
            metadata=LLMCallMetadata(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=total_tokens,
                cost_usd=cost_usd,
                duration_ms=duration_ms,
                model=request.model,
                used_fallback=used_fallback,
            ),
        )

    def _headers(self, context: LLMCallContext, proxied: bool) -> dict[str, str]:
        settings = self._settings
        if settings.anthropic_api_key is None:
            raise LLMRequestError("Anthropic API key is not configured")

        headers = {
            "x-api-key": settings.anthropic_api_key.get_secret_value(),
            "anthropic-version": settings.anthropic_version,
            "content-type": "application/json",
        }
        if proxied:
            # Helicone-compatible attribution headers
            if settings.llm_proxy_api_key is not None:
                headers["Helicone-Auth"] = (
                    f"Bearer {settings.llm_proxy_api_key.get_secret_value()}"
                )
            headers["Helicone-Property-ProjectId"] = context.project_id
            headers["Helicone-Property-AgentId"] = context.agent_id
            headers["Helicone-Property-SessionId"] = context.session_id
            if context.agent_name:
                headers["Helicone-Property-AgentName"] = context.agent_name
        return headers

    def _post(
        self,
        request: LLMRequest,
        context: LLMCallContext,
        proxied: bool,
    ) -> httpx.Response:
        """
        Send the request to the proxy or the direct API.

        Raises:
            LLMUnavailableError: On connection errors and timeouts
        """
        settings = self._settings
        if proxied:
            base_url = settings.llm_proxy_base_url
            timeout = httpx.Timeout(settings.llm_proxy_timeout_s)
        else:
            base_url = settings.anthropic_base_url
            timeout = httpx.Timeout(
                connect=5.0,
                read=settings.llm_timeout_s,
                write=5.0,
                pool=5.0,
            )

        url = f"{base_url.rstrip('/')}/v1/messages"
        headers = self._headers(context, proxied)
        body = request.to_body()

        try:
            if self._http_client is not None:
                return self._http_client.post(url, json=body, headers=headers, timeout=timeout)
            with httpx.Client(timeout=timeout) as client:
                return client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise LLMUnavailableError(f"LLM request timed out: {e}") from e
        except httpx.TransportError as e:
            raise LLMUnavailableError(f"LLM connection error: {e}") from e

    def _parse_response(self, http_response: httpx.Response) -> LLMResponse:
        status = http_response.status_code
        if status == 429 or status >= 500:
            raise LLMUnavailableError(
                f"Anthropic API error {status}: {http_response.text[:500]}"
            )
        if status >= 400:
            raise LLMRequestError(
                f"Anthropic API error {status}: {http_response.text[:500]}",
                status_code=status,
            )

        try:
            data = http_response.json()
        except ValueError as e:
            raise LLMRequestError(f"Invalid JSON from Anthropic API: {e}") from e
        if not isinstance(data, dict):
            raise LLMRequestError("Malformed Anthropic API response")

        # Block types other than text and tool_use carry nothing the executors use
        blocks = [
            block
            for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type") in ("text", "tool_use")
        ]
        try:
            return LLMResponse.model_validate({**data, "content": blocks})
        except ValidationError as e:
            raise LLMRequestError(f"Malformed Anthropic API response: {e}") from e

    @staticmethod
    def _audit_input(request: LLMRequest) -> dict[str, Any]:
        return {
            "model": request.model,
            "messageCount": len(request.messages),
            "maxTokens": request.max_tokens,
            "temperature": request.temperature,
        }

    def _log_action(self, entry: ActionLogEntry) -> None:
        if self._store is None:
            return
        try:
            self._store.append_action_log(entry)
        except Exception:
            logger.error(
                "Failed to write llm action log",
                extra={"session_id": entry.session_id},
                exc_info=True,
            )
