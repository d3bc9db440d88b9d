"""
Push-payment transaction ledger model.

Just the data structure. The pending -> completed | failed transition is
performed by TransactionLedger with a conditional UPDATE.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, Index, String

from ..constants import DEFAULT_CURRENCY, TransactionStatus
from .db_base import JSON, Money, TimestampMixin, UUIDMixin
from .db_config import Base


class PaymentTransaction(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "payment_transactions"

    provider = Column(String(20), nullable=False)
    checkout_request_id = Column(String(100), nullable=False)
    merchant_request_id = Column(String(100), nullable=True, index=True)

    phone_number = Column(String(20), nullable=True)
    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default=DEFAULT_CURRENCY)

    invoice_id = Column(String(36), nullable=True, index=True)
    tenant_id = Column(String(36), nullable=True, index=True)
    landlord_id = Column(String(36), nullable=True)
    payment_type = Column(String(30), nullable=False, default="rent")

    status = Column(String(20), nullable=False, default=TransactionStatus.PENDING.value)
    result_code = Column(String(20), nullable=True)
    result_desc = Column(String(255), nullable=True)
    receipt_number = Column(String(100), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    details = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_transaction_correlation", "provider", "checkout_request_id", unique=True),
        Index("ix_transaction_status", "status"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')", name="ck_transaction_status"
        ),
    )
