"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from crediario_engine.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_reconciliation(
    payment_id: str,
    outcome: str,
    invoice_id: Optional[str],
    new_status: Optional[str],
    duration_ms: float,
    request_id: str = "unknown",
) -> None:
    """Log structured webhook outcome for support and analysis"""
    level = logging.DEBUG if outcome == "stale" else logging.INFO
    logging.getLogger("crediario_engine.reconciler").log(
        level,
        "Webhook reconciled",
        extra={
            "request_id": request_id,
            "payment_id": payment_id,
            "step": "reconcile_complete",
            "outcome": outcome,
            "invoice_id": invoice_id,
            "new_status": new_status,
            "duration_ms": duration_ms,
        },
    )


def log_sale(request_id: str, user_id: str, sale_type: str, total_cents: int, artifact_status: str) -> None:
    """Log structured sale outcome"""
    logging.getLogger("crediario_engine.sales").info(
        "Sale recorded",
        extra={
            "request_id": request_id,
            "user_id": user_id,
            "step": "sale_complete",
            "sale_type": sale_type,
            "total_cents": total_cents,
            "payment_artifact": artifact_status,
        },
    )
