"""Append-only audit trail, best-effort"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crediario_engine.infrastructure.database.models import ActionLog

logger = logging.getLogger(__name__)

SUCCESS = "SUCCESS"
FAILURE = "FAILURE"


def log_action(
    db: Session,
    action_type: str,
    status: str,
    description: str,
    details: Optional[Dict[str, Any]] = None,
    commit: bool = True,
) -> None:
    """
    Append an ActionLog row.

    With commit=True the entry is written in its own short transaction, so
    call it only after the primary operation committed or rolled back. With
    commit=False the entry rides along with the caller's pending transaction.
    A failure to log is reported through `logging` and never propagates.
    """
    try:
        db.add(ActionLog(action_type=action_type, status=status, description=description, details=details))
        if commit:
            db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Action log write failed", extra={"action_type": action_type})
