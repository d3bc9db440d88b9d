"""
Invoice, payment and allocation models.

Invoice status is never set directly by the gateway; it is derived from the
sum of PaymentAllocation rows. Allocations are immutable once written.
"""

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from ..constants import InvoiceStatus, PaymentStatus
from .db_base import Money, TimestampMixin, UUIDMixin, utc_now
from .db_config import Base


class Invoice(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "invoices"

    lease_id = Column(String(36), ForeignKey("leases.id"), nullable=False, index=True)
    tenant_id = Column(String(36), nullable=False, index=True)
    invoice_number = Column(String(50), nullable=False)
    amount = Column(Money, nullable=False)
    due_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default=InvoiceStatus.PENDING.value)

    lease = relationship("Lease")
    allocations = relationship("PaymentAllocation", back_populates="invoice")

    __table_args__ = (CheckConstraint("amount > 0", name="ck_invoice_amount_positive"),)


class Payment(Base, UUIDMixin, TimestampMixin):
    """A confirmed collection, at most one per push-payment transaction."""

    __tablename__ = "payments"

    tenant_id = Column(String(36), nullable=False, index=True)
    lease_id = Column(String(36), nullable=True)
    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=True)
    landlord_id = Column(String(36), nullable=True)
    payment_transaction_id = Column(
        String(36), ForeignKey("payment_transactions.id"), nullable=True
    )
    amount = Column(Money, nullable=False)
    payment_method = Column(String(20), nullable=False)
    transaction_id = Column(String(100), nullable=True)
    payment_reference = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default=PaymentStatus.COMPLETED.value)
    payment_date = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    allocations = relationship("PaymentAllocation", back_populates="payment")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        Index("ix_payment_transaction", "payment_transaction_id", unique=True),
        Index("ix_payment_receipt", "transaction_id", "payment_reference", unique=True),
    )


class PaymentAllocation(Base, UUIDMixin, TimestampMixin):
    """Immutable (payment, invoice, amount) record."""

    __tablename__ = "payment_allocations"

    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=True, index=True)
    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    credit_application_id = Column(
        String(36), ForeignKey("credit_applications.id"), nullable=True
    )

    payment = relationship("Payment", back_populates="allocations")
    invoice = relationship("Invoice", back_populates="allocations")

    __table_args__ = (CheckConstraint("amount > 0", name="ck_allocation_amount_positive"),)
