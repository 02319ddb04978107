"""Prometheus metrics for ingestion, embedding and retrieval."""

from prometheus_client import Counter, Histogram

# Ingestion metrics
ingestion_runs_total = Counter(
    "ingestion_runs_total",
    "Total ingestion runs by final outcome",
    ["outcome"],
)

ingestion_stage_latency_ms = Histogram(
    "ingestion_stage_latency_ms",
    "Ingestion stage latency in milliseconds",
    ["stage", "outcome"],
    buckets=[10, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000],
)

# Embedding metrics
embedding_calls_total = Counter(
    "embedding_calls_total",
    "Total embedding calls by outcome",
    ["outcome"],
)

# Retrieval metrics
retrieval_results = Histogram(
    "retrieval_results",
    "Number of chunks returned per search",
    buckets=[0, 1, 2, 3, 5, 10, 20],
)


class PrometheusIngestionMetrics:
    """Prometheus-based ingestion metrics implementation."""

    def record_stage(self, stage: str, outcome: str, latency_ms: float) -> None:
        """Record stage latency."""
        ingestion_stage_latency_ms.labels(stage=stage, outcome=outcome).observe(latency_ms)

    def inc_run(self, outcome: str) -> None:
        """Increment run counter."""
        ingestion_runs_total.labels(outcome=outcome).inc()

    def inc_embedding(self, outcome: str) -> None:
        """Increment embedding call counter."""
        embedding_calls_total.labels(outcome=outcome).inc()

    def observe_results(self, count: int) -> None:
        """Record retrieval result count."""
        retrieval_results.observe(count)


metrics = PrometheusIngestionMetrics()
