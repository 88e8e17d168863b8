"""GET /v1/settings and PUT /v1/settings/{key} - operator-editable business settings"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from crediario_engine.api.dependencies import get_request_id
from crediario_engine.api.errors import http_error
from crediario_engine.api.v1.schemas import SettingsResponse, SettingValueRequest
from crediario_engine.domain.exceptions import DomainException
from crediario_engine.infrastructure.database.repositories import SettingsRepository
from crediario_engine.infrastructure.database.session import get_db
from crediario_engine.services.action_log import SUCCESS, log_action
from crediario_engine.services.settings import save_setting

router = APIRouter()


@router.get("/settings", response_model=SettingsResponse)
def list_settings(db: Session = Depends(get_db)):
    return SettingsResponse(settings=SettingsRepository(db).all())


@router.put("/settings/{key}", response_model=SettingsResponse)
def update_setting(
    key: str,
    request_body: SettingValueRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Store a setting; numeric keys are percentages and must be >= 0"""
    try:
        save_setting(db, key, request_body.value)
    except DomainException as e:
        db.rollback()
        raise http_error(e, get_request_id(request))

    log_action(db, "SETTING_UPDATED", SUCCESS, f"Setting {key} updated", {"key": key, "value": request_body.value})
    return SettingsResponse(settings=SettingsRepository(db).all())
