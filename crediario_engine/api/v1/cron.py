"""POST|GET /v1/cron/sweep - scheduler trigger for the invoice sweep"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from crediario_engine.api.dependencies import get_mailer, get_request_id, verify_cron_secret
from crediario_engine.api.v1.schemas import SweepResponse
from crediario_engine.infrastructure.clients.mailer import Mailer
from crediario_engine.infrastructure.database.session import get_db
from crediario_engine.services.sweeper import run_sweep

router = APIRouter()


@router.api_route("/cron/sweep", methods=["GET", "POST"], response_model=SweepResponse)
async def trigger_sweep(
    request: Request,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    _: None = Depends(verify_cron_secret),
):
    """
    Expire unpaid down payments, cancel unsigned contracts and send reminders.

    Per-row failures are counted in the response; only a failure of the
    run itself yields 500, so the scheduler re-runs it.
    """
    request_id = get_request_id(request)
    try:
        report = await run_sweep(db, mailer)
    except Exception as e:
        logging.error(f"Sweep failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Sweep failed")

    logging.info("Sweep completed", extra={"request_id": request_id, **report.as_dict()})
    return SweepResponse(success=True, **report.as_dict())
