"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional


# Invoice statuses (stored values are the customer-facing labels)
INVOICE_OPEN = "Em aberto"
INVOICE_BOLETO_GENERATED = "Boleto Gerado"
INVOICE_AWAITING_SIGNATURE = "Aguardando Assinatura"
INVOICE_PAID = "Paga"
INVOICE_EXPIRED = "Expirado"
INVOICE_CANCELLED = "Cancelado"

OPEN_INVOICE_STATUSES = (INVOICE_OPEN, INVOICE_BOLETO_GENERATED, INVOICE_AWAITING_SIGNATURE)
PAYABLE_INVOICE_STATUSES = (INVOICE_OPEN, INVOICE_BOLETO_GENERATED)
SETTLED_INVOICE_STATUSES = (INVOICE_PAID, INVOICE_EXPIRED, INVOICE_CANCELLED)

# Invoice kinds
KIND_DOWN_PAYMENT = "down_payment"
KIND_INSTALLMENT = "installment"
KIND_FULL_PAYMENT = "full_payment"

# Contract statuses
CONTRACT_PENDING_SIGNATURE = "pending_signature"
CONTRACT_SIGNED = "Assinado"
CONTRACT_ACTIVE = "Ativo"
CONTRACT_CANCELLED = "Cancelado"

# Installment plan statuses
PLAN_PENDING = "pending"
PLAN_CONSUMED = "consumed"
PLAN_DISCARDED = "discarded"

SALE_CREDIARIO = "crediario"
SALE_DIRECT = "direct"

GATEWAY_METHODS = ("pix", "boleto", "link")

DOWN_PAYMENT_TAG = "ENTRADA|"


@dataclass(frozen=True)
class ConfigSnapshot:
    """Business parameters captured once per operation"""

    interest_rate_pct: Decimal
    cashback_pct: Decimal
    min_entry_pct: Decimal
    default_due_day: int = 10


@dataclass
class Installment:
    """Single payment in a repayment schedule"""

    due_date: date
    amount_cents: int
    label: str = ""


@dataclass
class PendingInstallmentPlan:
    """Instruction to expand a paid down payment into installments"""

    contract_id: Optional[str]
    remaining_cents: int
    installment_count: int
    due_day: int

    def to_notes(self) -> str:
        """Legacy textual form: ENTRADA|contract|remaining_reais|count|due_day"""
        remaining = (Decimal(self.remaining_cents) / 100).quantize(Decimal("0.01"))
        return f"{DOWN_PAYMENT_TAG}{self.contract_id or 'Direta'}|{remaining}|{self.installment_count}|{self.due_day}"

    @classmethod
    def from_notes(cls, notes: Optional[str]) -> Optional["PendingInstallmentPlan"]:
        """Parse the legacy notes field; None when it carries no usable plan"""
        if not notes or not notes.startswith(DOWN_PAYMENT_TAG):
            return None

        parts = notes.split("|")
        if len(parts) < 5:
            return None

        try:
            remaining_cents = int((Decimal(parts[2]) * 100).to_integral_value())
            count = int(parts[3])
            due_day = int(parts[4])
        except (ArithmeticError, ValueError):
            return None

        contract_id = parts[1] if parts[1] and parts[1] != "Direta" else None
        return cls(
            contract_id=contract_id,
            remaining_cents=remaining_cents,
            installment_count=count,
            due_day=due_day,
        )


@dataclass
class GatewayPayment:
    """Authoritative payment state fetched from the gateway"""

    id: str
    status: str
    status_detail: Optional[str]
    amount_cents: Optional[int]
    external_reference: Optional[str] = None


@dataclass
class PaymentIntent:
    """Payment artifact created by the gateway for an invoice"""

    id: str
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    barcode: Optional[str] = None
    boleto_url: Optional[str] = None
    redirect_url: Optional[str] = None


@dataclass
class PaymentArtifact:
    """What the customer needs to pay the first invoice of a sale"""

    status: str  # created | failed | not_required
    method: Optional[str] = None
    payment_id: Optional[str] = None
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    boleto_url: Optional[str] = None
    barcode: Optional[str] = None
    redirect_url: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PayerInfo:
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


@dataclass
class SaleRequest:
    """Input of the sale creation service"""

    user_id: str
    product_name: str
    total_amount: Decimal
    installment_count: int
    sale_type: str
    payment_method: str
    down_payment: Decimal = Decimal("0")
    coupon_code: Optional[str] = None
    coins_used: int = 0
    due_day: Optional[int] = None
    signature: Optional[str] = None
    idempotency_key: Optional[str] = None
    payer: PayerInfo = field(default_factory=PayerInfo)


@dataclass
class SaleResult:
    """Outcome of a recorded sale"""

    contract_id: str
    checkout_id: str
    invoice_id: Optional[str]
    total_cents: int
    payment_artifact: PaymentArtifact
    duplicate: bool = False


@dataclass
class ReconcileOutcome:
    """What a single webhook event did to the ledger"""

    outcome: str  # ignored | no_op | applied | stale | late_payment | duplicate_payment | invoice_not_found
    invoice_id: Optional[str] = None
    new_status: Optional[str] = None
    cashback_points: int = 0
    installments_generated: int = 0


@dataclass
class SweepReport:
    """Aggregate counters of one sweep run"""

    down_payments_expired: int = 0
    invoices_cancelled: int = 0
    contracts_cancelled: int = 0
    notifications_sent: int = 0
    reminders_sent: int = 0
    emails_sent: int = 0
    failures: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, int]:
        return {
            "down_payments_expired": self.down_payments_expired,
            "invoices_cancelled": self.invoices_cancelled,
            "contracts_cancelled": self.contracts_cancelled,
            "notifications_sent": self.notifications_sent,
            "reminders_sent": self.reminders_sent,
            "emails_sent": self.emails_sent,
            "failures": self.failures,
        }


@dataclass
class CreditSummary:
    """Customer credit position under the peak-month rule"""

    user_id: str
    credit_limit_cents: int
    peak_month: Optional[str]
    peak_commitment_cents: int
    available_cents: int
    coins_balance: int
