"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from crediario_engine.config import settings
from crediario_engine.domain.models import ConfigSnapshot
from crediario_engine.infrastructure.clients.gateway import PaymentGatewayClient
from crediario_engine.infrastructure.clients.mailer import Mailer
from crediario_engine.infrastructure.database.session import get_db
from crediario_engine.services.settings import load_config_snapshot


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_gateway_client() -> PaymentGatewayClient:
    """Provide payment gateway client instance"""
    return PaymentGatewayClient()


def get_mailer() -> Mailer:
    """Provide email relay client instance"""
    return Mailer()


def get_config_snapshot(db: Session = Depends(get_db)) -> ConfigSnapshot:
    """Business parameters read once per request"""
    return load_config_snapshot(db)


def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """Scheduler calls carry 'Bearer <CRON_SECRET>' when a secret is configured"""
    if settings.cron_secret and authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")
