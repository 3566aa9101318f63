"""Observability utilities: trace IDs, parse metrics, and LLM call logging.

This module provides:
- Trace ID generation and propagation via context vars
- Prometheus metrics for model calls and daily quota decisions
- Structured logging helpers for LLM request/response correlation
"""

import secrets
import time
from contextvars import ContextVar
from dataclasses import dataclass

import structlog
from prometheus_client import Counter, Gauge, Histogram

logger = structlog.get_logger()

# =============================================================================
# Trace ID Context
# =============================================================================

trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")


def generate_trace_id() -> str:
    """Generate cryptographically secure trace ID for request tracking."""
    return secrets.token_hex(16)


def get_trace_id() -> str:
    """Get current trace ID from context, or empty string if not set."""
    return trace_id_ctx.get()


def set_trace_id(trace_id: str) -> None:
    """Set trace ID in context."""
    trace_id_ctx.set(trace_id)


# =============================================================================
# Prometheus Metrics
# =============================================================================

ai_parse_requests_total = Counter(
    "ai_parse_requests_total",
    "Total model calls made to parse documents",
    ["provider", "status"],
)

ai_parse_latency_seconds = Histogram(
    "ai_parse_latency_seconds",
    "Model call latency in seconds",
    ["provider"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

ai_active_requests = Gauge(
    "ai_active_requests",
    "Model calls currently in flight",
    ["provider"],
)

ai_prompt_chars = Histogram(
    "ai_prompt_chars",
    "Characters sent to the model per call",
    ["provider"],
    buckets=[500, 1000, 2000, 5000, 10000, 20000, 50000],
)

daily_quota_decisions_total = Counter(
    "daily_quota_decisions_total",
    "Daily quota decisions",
    ["outcome"],  # values: allowed, rejected, degraded
)


def record_quota_decision(allowed: bool, degraded: bool) -> None:
    """Count one daily quota decision by outcome."""
    if degraded:
        outcome = "degraded"
    elif allowed:
        outcome = "allowed"
    else:
        outcome = "rejected"
    daily_quota_decisions_total.labels(outcome=outcome).inc()


# =============================================================================
# LLM Payload Logging
# =============================================================================


@dataclass
class LLMRequestLog:
    """Structured log data for a model call."""

    trace_id: str
    provider: str
    model: str
    prompt_chars: int
    has_template: bool
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        if self.timestamp == 0.0:
            self.timestamp = time.time()


def log_llm_request(
    provider: str,
    model: str,
    prompt: str,
    has_template: bool,
) -> LLMRequestLog:
    """Log a model call before it is sent.

    Returns LLMRequestLog for correlation with the response.
    """
    log_data = LLMRequestLog(
        trace_id=get_trace_id(),
        provider=provider,
        model=model,
        prompt_chars=len(prompt),
        has_template=has_template,
    )

    logger.info(
        "llm_request",
        trace_id=log_data.trace_id,
        provider=log_data.provider,
        model=log_data.model,
        prompt_chars=log_data.prompt_chars,
        has_template=log_data.has_template,
    )

    ai_active_requests.labels(provider=provider).inc()
    ai_prompt_chars.labels(provider=provider).observe(log_data.prompt_chars)

    return log_data


def log_llm_response(
    request_log: LLMRequestLog,
    response_chars: int = 0,
    model: str | None = None,
    error: str | None = None,
) -> None:
    """Log the outcome of a model call with metrics and correlation.

    ``model`` overrides the requested model when a fallback answered.
    """
    latency_ms = int((time.time() - request_log.timestamp) * 1000)
    answered_by = model or request_log.model

    if error:
        logger.error(
            "llm_response",
            trace_id=request_log.trace_id,
            provider=request_log.provider,
            model=answered_by,
            latency_ms=latency_ms,
            error=error,
        )
        status = "error"
    else:
        logger.info(
            "llm_response",
            trace_id=request_log.trace_id,
            provider=request_log.provider,
            model=answered_by,
            latency_ms=latency_ms,
            response_chars=response_chars,
        )
        status = "success"

    ai_active_requests.labels(provider=request_log.provider).dec()
    ai_parse_requests_total.labels(provider=request_log.provider, status=status).inc()
    ai_parse_latency_seconds.labels(provider=request_log.provider).observe(latency_ms / 1000.0)
