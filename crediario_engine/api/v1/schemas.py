"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Literal, Optional, Union


class PayerSchema(BaseModel):
    """Payer identification forwarded to the gateway"""

    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    identification_number: Optional[str] = None
    zip_code: Optional[str] = None
    street_name: Optional[str] = None
    street_number: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    federal_unit: Optional[str] = None


class SaleRequestSchema(BaseModel):
    """Request body for POST /v1/sales"""

    user_id: str = Field(..., min_length=1, description="Customer identifier")
    product_name: str = Field(..., min_length=1)
    total_amount: Decimal = Field(..., gt=0, description="Cart total in reais")
    installment_count: int = Field(1, ge=1, le=48)
    sale_type: Literal["crediario", "direct"]
    payment_method: str = Field(..., min_length=1, description="pix | boleto | link | cash | credit_card")
    down_payment: Decimal = Field(Decimal("0"), ge=0)
    coupon_code: Optional[str] = None
    coins_used: int = Field(0, ge=0)
    due_day: Optional[int] = Field(None, ge=1, le=31)
    signature: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=128)
    payer: PayerSchema = Field(default_factory=PayerSchema)


class PaymentArtifactSchema(BaseModel):
    status: str
    method: Optional[str] = None
    payment_id: Optional[str] = None
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    boleto_url: Optional[str] = None
    barcode: Optional[str] = None
    redirect_url: Optional[str] = None
    error: Optional[str] = None


class SaleResponse(BaseModel):
    """Response for POST /v1/sales"""

    contract_id: str
    checkout_id: str
    invoice_id: Optional[str] = None
    total_cents: int
    duplicate: bool = False
    payment_artifact: PaymentArtifactSchema


class SignContractRequest(BaseModel):
    signature: str = Field(..., min_length=1)


class ContractResponse(BaseModel):
    contract_id: str
    status: str


class PaymentIntentRequest(BaseModel):
    """Request body for POST /v1/invoices/{invoice_id}/payment-intent"""

    payment_method: Literal["pix", "boleto", "link"]
    payer: PayerSchema = Field(default_factory=PayerSchema)


class WebhookData(BaseModel):
    # The gateway sends numeric payment ids
    id: Optional[Union[int, str]] = None


class WebhookEvent(BaseModel):
    """Gateway notification body: {type: "payment", data: {id}}"""

    type: Optional[str] = None
    action: Optional[str] = None
    data: Optional[WebhookData] = None


class ReconcileResponse(BaseModel):
    outcome: str
    invoice_id: Optional[str] = None
    status: Optional[str] = None
    cashback_points: int = 0
    installments_generated: int = 0


class InvoiceSchema(BaseModel):
    """Ledger invoice view"""

    invoice_id: str
    user_id: str
    checkout_id: Optional[str] = None
    kind: str
    month: str
    due_date: date
    amount_cents: int
    status: str
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None


class InvoiceListResponse(BaseModel):
    invoices: List[InvoiceSchema]


class ActionLogSchema(BaseModel):
    action_type: str
    status: str
    description: Optional[str] = None
    details: Optional[dict] = None
    created_at: str


class ActionLogListResponse(BaseModel):
    entries: List[ActionLogSchema]


class SweepResponse(BaseModel):
    """Response for the scheduled sweep trigger"""

    success: bool
    down_payments_expired: int
    invoices_cancelled: int
    contracts_cancelled: int
    notifications_sent: int
    reminders_sent: int
    emails_sent: int
    failures: int


class CreditSummaryResponse(BaseModel):
    user_id: str
    credit_limit_cents: int
    peak_month: Optional[str] = None
    peak_commitment_cents: int
    available_cents: int
    coins_balance: int


class DueDayRequest(BaseModel):
    due_day: int = Field(..., ge=1, le=31)


class DueDayResponse(BaseModel):
    user_id: str
    preferred_due_day: int
    last_due_date_change: str


class CoinsRequest(BaseModel):
    amount: int = Field(..., ge=0)
    action: Literal["add", "remove", "set"]


class CoinsResponse(BaseModel):
    user_id: str
    coins_balance: int


class QuoteResponse(BaseModel):
    """Financing preview, values rounded for display"""

    price: Decimal
    installment_count: int
    monthly_rate_pct: Decimal
    installment_value: Decimal
    financed_total: Decimal
    required_down_payment: Decimal
    available_monthly_credit: Optional[Decimal] = None


class SettingValueRequest(BaseModel):
    value: str = Field(..., min_length=1)


class SettingsResponse(BaseModel):
    settings: Dict[str, str]
