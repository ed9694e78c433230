"""Structured logging for LLM provider calls."""

import logging
from typing import Any

logger = logging.getLogger(__name__)


class StructuredLLMLogger:
    """Structured logger for provider calls."""

    def log_call(
        self,
        provider: str,
        model: str,
        mode: str,
        outcome: str,
        latency_ms: float,
        tokens_in: int = 0,
        tokens_out: int = 0,
        error_reason: str | None = None,
    ) -> None:
        """Log a provider call with structured data."""
        log_data: dict[str, Any] = {
            "provider": provider,
            "model": model,
            "mode": mode,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
            "tokens_in": tokens_in,
            "tokens_out": tokens_out,
        }

        if error_reason:
            log_data["error_reason"] = error_reason

        log_msg = f"LLM call: {provider}/{model} ({mode}) - {outcome}"

        if outcome == "success":
            logger.info(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})
