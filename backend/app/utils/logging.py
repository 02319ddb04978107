"""Structured logging for the ingestion pipeline."""

import logging
from typing import Any
from uuid import UUID

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once at application start."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


class StructuredIngestionLogger:
    """Structured logger for ingestion stages."""

    def log_stage(
        self,
        document_id: UUID,
        stage: str,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
        **details: Any,
    ) -> None:
        """Log one pipeline stage with structured data."""
        log_data: dict[str, Any] = {
            "document_id": str(document_id),
            "stage": stage,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
            **details,
        }

        if error_reason:
            log_data["error_reason"] = error_reason

        log_msg = f"Ingestion stage: {stage} - {outcome}"

        if outcome == "success":
            logger.info(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})
