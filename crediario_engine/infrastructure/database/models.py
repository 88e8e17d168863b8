"""SQLAlchemy ORM models for the crediário ledger"""

import uuid
from sqlalchemy import Column, BigInteger, Boolean, DateTime, Date, Integer, ForeignKey, Text, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from crediario_engine.domain.models import INVOICE_OPEN, PLAN_PENDING, KIND_INSTALLMENT

Base = declarative_base()


class Profile(Base):
    """Customer credit profile"""

    __tablename__ = "profiles"

    id = Column(Text, primary_key=True)
    first_name = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    credit_limit_cents = Column(BigInteger, nullable=False, default=0)
    credit_score = Column(Integer, nullable=True)
    coins_balance = Column(BigInteger, nullable=False, default=0)
    preferred_due_day = Column(Integer, nullable=True)
    last_due_date_change = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Contract(Base):
    """Credit agreement signed (or pending) at checkout"""

    __tablename__ = "contracts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, ForeignKey("profiles.id"), nullable=False, index=True)
    checkout_id = Column(Text, nullable=True, unique=True)
    title = Column(Text, nullable=True)
    items = Column(Text, nullable=True)
    total_cents = Column(BigInteger, nullable=False)
    installment_count = Column(Integer, nullable=False, default=1)
    status = Column(Text, nullable=False)
    signature_data = Column(Text, nullable=True)
    terms_accepted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    invoices = relationship("Invoice", back_populates="contract")


class Invoice(Base):
    """One payable down payment or installment"""

    __tablename__ = "invoices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, ForeignKey("profiles.id"), nullable=False, index=True)
    checkout_id = Column(Text, nullable=True, index=True)
    contract_id = Column(UUID(as_uuid=True), ForeignKey("contracts.id"), nullable=True)
    kind = Column(Text, nullable=False, default=KIND_INSTALLMENT)
    month = Column(Text, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    amount_cents = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default=INVOICE_OPEN, index=True)
    payment_method = Column(Text, nullable=True)
    payment_id = Column(Text, nullable=True, index=True)
    payment_code = Column(Text, nullable=True)
    boleto_url = Column(Text, nullable=True)
    boleto_barcode = Column(Text, nullable=True)
    payment_url = Column(Text, nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    contract = relationship("Contract", back_populates="invoices")
    plan = relationship("InstallmentPlan", back_populates="down_payment_invoice", uselist=False)


class InstallmentPlan(Base):
    """Pending expansion of a down payment into installments, consumed once"""

    __tablename__ = "installment_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    down_payment_invoice_id = Column(
        UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    contract_id = Column(UUID(as_uuid=True), ForeignKey("contracts.id"), nullable=True)
    remaining_cents = Column(BigInteger, nullable=False)
    installment_count = Column(Integer, nullable=False)
    due_day = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default=PLAN_PENDING)
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    down_payment_invoice = relationship("Invoice", back_populates="plan")


class Notification(Base):
    """User-facing in-app message"""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(Text, nullable=False, default="info")
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ActionLog(Base):
    """Append-only audit trail of state-changing operations"""

    __tablename__ = "action_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    action_type = Column(Text, nullable=False, index=True)
    status = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SystemSetting(Base):
    """Operator-editable business parameter"""

    __tablename__ = "system_settings"

    key = Column(Text, primary_key=True)
    value = Column(Text, nullable=False)
