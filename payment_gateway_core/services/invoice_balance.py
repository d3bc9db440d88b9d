"""
Invoice balance primitives shared by the allocation engine and the credit ledger.

Outstanding balance and status are always derived from PaymentAllocation
rows. Writers touching one invoice are serialized twice: a process-local
lock keyed by invoice id, and a row lock (``SELECT ... FOR UPDATE``) for
writers in other processes.
"""

import threading
from contextlib import contextmanager
from decimal import Decimal
from typing import Dict, Iterator, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..constants import InvoiceStatus
from ..db.db_base import to_money
from ..db.db_invoice_models import Invoice, PaymentAllocation
from ..exceptions import not_found


class _InvoiceLock:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.RLock()
        self.holders = 0


_registry_lock = threading.Lock()
# Only invoices with a holder or a waiter have an entry
_invoice_locks: Dict[str, _InvoiceLock] = {}


@contextmanager
def serialized(invoice_id: str) -> Iterator[None]:
    """
    Hold the process-local lock for one invoice. Re-entrant within a thread.

    The registry entry is dropped once the last holder leaves.
    """
    with _registry_lock:
        entry = _invoice_locks.get(invoice_id)
        if entry is None:
            entry = _invoice_locks[invoice_id] = _InvoiceLock()
        entry.holders += 1
    try:
        with entry.lock:
            yield
    finally:
        with _registry_lock:
            entry.holders -= 1
            if entry.holders == 0:
                del _invoice_locks[invoice_id]


def lock_invoice(session: Session, invoice_id: str) -> Invoice:
    """
    Load an invoice with a row lock.

    Raises:
        NotFoundError: If the invoice does not exist
    """
    invoice = (
        session.query(Invoice).filter(Invoice.id == invoice_id).with_for_update().one_or_none()
    )
    if invoice is None:
        raise not_found("Invoice", invoice_id=invoice_id)
    return invoice


def allocated_total(session: Session, invoice_id: str) -> Decimal:
    total = (
        session.query(func.coalesce(func.sum(PaymentAllocation.amount), 0))
        .filter(PaymentAllocation.invoice_id == invoice_id)
        .scalar()
    )
    return to_money(total)


def outstanding_for(session: Session, invoice: Invoice) -> Decimal:
    """Invoice amount minus allocations, floored at zero."""
    return max(to_money(invoice.amount) - allocated_total(session, invoice.id), Decimal("0.00"))


def derive_invoice_status(invoice: Invoice, allocated: Decimal) -> Optional[str]:
    """
    Status implied by the allocation sum.

    ``paid`` when allocations cover the amount, ``partially_paid`` when they
    cover part of it, otherwise the current status is kept.
    """
    allocated = to_money(allocated)
    if allocated >= to_money(invoice.amount):
        return InvoiceStatus.PAID.value
    if allocated > 0:
        return InvoiceStatus.PARTIALLY_PAID.value
    return invoice.status


def refresh_invoice_status(session: Session, invoice: Invoice) -> str:
    session.flush()
    invoice.status = derive_invoice_status(invoice, allocated_total(session, invoice.id))
    return invoice.status
