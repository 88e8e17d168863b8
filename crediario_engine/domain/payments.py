"""Mapping of gateway payment states onto ledger invoice states"""

from typing import Optional

from crediario_engine.domain.models import INVOICE_CANCELLED, INVOICE_EXPIRED, INVOICE_PAID


def map_gateway_status(status: Optional[str], status_detail: Optional[str] = None) -> Optional[str]:
    """
    Translate a gateway payment status to the invoice status it settles into.

    approved                      -> Paga
    cancelled (detail 'expired')  -> Expirado
    cancelled (anything else)     -> Cancelado
    pending, in_process, rejected, ... -> None (no ledger change)
    """
    if status == "approved":
        return INVOICE_PAID
    if status == "cancelled":
        return INVOICE_EXPIRED if status_detail == "expired" else INVOICE_CANCELLED
    return None


def is_payment_event(event_type: Optional[str], payment_id: Optional[object]) -> bool:
    """Only 'payment' notifications carrying an id are processed"""
    return event_type == "payment" and payment_id not in (None, "")
