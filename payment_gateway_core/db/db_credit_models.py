"""
Tenant credit ledger models.

Both tables are append-only. The only mutable column is TenantCredit.balance,
which only ever decreases.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from ..constants import CreditSourceType
from .db_base import Money, TimestampMixin, UUIDMixin
from .db_config import Base


class TenantCredit(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "tenant_credits"

    tenant_id = Column(String(36), nullable=False, index=True)
    landlord_id = Column(String(36), nullable=True)
    source_payment_id = Column(String(36), ForeignKey("payments.id"), nullable=True, index=True)
    amount = Column(Money, nullable=False)
    balance = Column(Money, nullable=False)
    source_type = Column(String(20), nullable=False, default=CreditSourceType.OVERPAYMENT.value)
    description = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    applications = relationship("CreditApplication", back_populates="credit")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_amount_positive"),
        CheckConstraint("balance >= 0", name="ck_credit_balance_non_negative"),
        CheckConstraint("balance <= amount", name="ck_credit_balance_within_amount"),
        CheckConstraint(
            "source_type IN ('overpayment', 'refund', 'adjustment', 'manual')",
            name="ck_credit_source_type",
        ),
    )


class CreditApplication(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "credit_applications"

    credit_id = Column(String(36), ForeignKey("tenant_credits.id"), nullable=False, index=True)
    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    applied_by = Column(String(36), nullable=True)
    notes = Column(Text, nullable=True)

    credit = relationship("TenantCredit", back_populates="applications")

    __table_args__ = (CheckConstraint("amount > 0", name="ck_credit_application_positive"),)
