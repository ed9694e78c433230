"""Prometheus metrics for LLM calls and retrieval."""

from prometheus_client import Counter, Histogram

# LLM call metrics
llm_request_latency_ms = Histogram(
    "llm_request_latency_ms",
    "LLM provider call latency in milliseconds",
    ["provider", "outcome"],
    buckets=[100, 250, 500, 1000, 2000, 4000, 8000, 16000, 32000, 64000, 128000],
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total tokens exchanged with LLM providers",
    ["provider", "direction"],
)

# Retrieval metrics
retrieval_results_total = Counter(
    "retrieval_results_total",
    "Total retrieval results returned, by stage",
    ["stage"],
)

retrieval_fallbacks_total = Counter(
    "retrieval_fallbacks_total",
    "Total fall-throughs from the semantic backend to local search",
    ["reason"],
)


class PrometheusChatMetrics:
    """Prometheus-based LLM call metrics."""

    def record_latency(self, provider: str, outcome: str, latency_ms: float) -> None:
        """Record provider call latency."""
        llm_request_latency_ms.labels(provider=provider, outcome=outcome).observe(latency_ms)

    def add_tokens(self, provider: str, tokens_in: int, tokens_out: int) -> None:
        """Count prompt and completion tokens."""
        if tokens_in:
            llm_tokens_total.labels(provider=provider, direction="in").inc(tokens_in)
        if tokens_out:
            llm_tokens_total.labels(provider=provider, direction="out").inc(tokens_out)


class PrometheusRetrievalMetrics:
    """Prometheus-based retrieval metrics."""

    def inc_results(self, stage: str, count: int) -> None:
        """Count results produced by a stage."""
        if count:
            retrieval_results_total.labels(stage=stage).inc(count)

    def inc_fallback(self, reason: str) -> None:
        """Count a fall-through to the local path."""
        retrieval_fallbacks_total.labels(reason=reason).inc()
