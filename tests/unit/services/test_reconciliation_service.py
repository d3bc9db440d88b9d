"""Tests for the tenant reconciliation sweep."""

from datetime import date, timedelta
from decimal import Decimal

from payment_gateway_core.constants import InvoiceStatus
from payment_gateway_core.db import Invoice, PaymentAllocation, TenantCredit
from tests.fixtures.factories import InvoiceFactory, PaymentFactory, TenantCreditFactory


def allocated_to(db_session, invoice):
    return sum(
        (a.amount for a in db_session.query(PaymentAllocation).filter_by(invoice_id=invoice.id)),
        Decimal("0.00"),
    )


class TestOpenInvoices:
    def test_ordered_by_due_date_with_undated_last(self, reconciliation_service, lease):
        today = date.today()
        undated = InvoiceFactory.create(lease=lease, due_date=None)
        later = InvoiceFactory.create(lease=lease, due_date=today + timedelta(days=30))
        sooner = InvoiceFactory.create(lease=lease, due_date=today - timedelta(days=3))
        InvoiceFactory.create(lease=lease, status=InvoiceStatus.PAID.value)

        invoices = reconciliation_service.open_invoices(lease.tenant_id)

        assert [i.id for i in invoices] == [sooner.id, later.id, undated.id]

    def test_fully_allocated_invoice_is_not_open(self, db_session, reconciliation_service, allocation_engine, invoice):
        payment = PaymentFactory.create(
            tenant_id=invoice.tenant_id, invoice_id=invoice.id, amount=Decimal("10000")
        )
        allocation_engine.allocate(payment)

        assert reconciliation_service.open_invoices(invoice.tenant_id) == []


class TestReconcileTenant:
    def test_unallocated_payment_goes_to_earliest_invoice(self, db_session, reconciliation_service, lease):
        today = date.today()
        second = InvoiceFactory.create(lease=lease, amount=Decimal("5000"), due_date=today + timedelta(days=30))
        first = InvoiceFactory.create(lease=lease, amount=Decimal("5000"), due_date=today)
        PaymentFactory.create(tenant_id=lease.tenant_id, invoice_id=None, amount=Decimal("7000"))

        result = reconciliation_service.reconcile_tenant(lease.tenant_id)
        db_session.commit()

        assert result.payments_allocated == 2
        assert result.payment_amount_allocated == Decimal("7000.00")
        assert result.credits_created == 0
        assert allocated_to(db_session, first) == Decimal("5000.00")
        assert allocated_to(db_session, second) == Decimal("2000.00")
        assert db_session.get(Invoice, first.id).status == InvoiceStatus.PAID.value
        assert db_session.get(Invoice, second.id).status == InvoiceStatus.PARTIALLY_PAID.value

    def test_remainder_without_open_invoice_becomes_credit(self, db_session, reconciliation_service, tenant_id):
        payment = PaymentFactory.create(tenant_id=tenant_id, invoice_id=None, amount=Decimal("1500"))

        result = reconciliation_service.reconcile_tenant(tenant_id)

        assert result.credits_created == 1
        assert result.credit_amount_created == Decimal("1500.00")
        credit = db_session.query(TenantCredit).one()
        assert credit.source_payment_id == payment.id
        assert credit.balance == Decimal("1500.00")

    def test_available_credit_is_applied(self, db_session, reconciliation_service, invoice):
        TenantCreditFactory.create(tenant_id=invoice.tenant_id, amount=Decimal("2500.00"))

        result = reconciliation_service.reconcile_tenant(invoice.tenant_id)

        assert result.credits_applied == 1
        assert result.credit_amount_applied == Decimal("2500.00")
        assert allocated_to(db_session, invoice) == Decimal("2500.00")
        assert db_session.get(Invoice, invoice.id).status == InvoiceStatus.PARTIALLY_PAID.value

    def test_credit_spreads_across_invoices(self, db_session, reconciliation_service, lease):
        today = date.today()
        first = InvoiceFactory.create(lease=lease, amount=Decimal("1000"), due_date=today)
        second = InvoiceFactory.create(lease=lease, amount=Decimal("1000"), due_date=today + timedelta(days=30))
        credit = TenantCreditFactory.create(tenant_id=lease.tenant_id, amount=Decimal("1500.00"))

        result = reconciliation_service.reconcile_tenant(lease.tenant_id)

        assert result.credits_applied == 2
        assert allocated_to(db_session, first) == Decimal("1000.00")
        assert allocated_to(db_session, second) == Decimal("500.00")
        assert db_session.get(TenantCredit, credit.id).balance == Decimal("0.00")

    def test_second_run_changes_nothing(self, db_session, reconciliation_service, lease):
        InvoiceFactory.create(lease=lease, amount=Decimal("3000"))
        PaymentFactory.create(tenant_id=lease.tenant_id, invoice_id=None, amount=Decimal("4000"))

        first = reconciliation_service.reconcile_tenant(lease.tenant_id)
        db_session.commit()
        second = reconciliation_service.reconcile_tenant(lease.tenant_id)

        assert first.changed is True
        assert second.changed is False
        assert db_session.query(TenantCredit).count() == 1

    def test_ignores_non_completed_payments(self, reconciliation_service, invoice):
        PaymentFactory.create(
            tenant_id=invoice.tenant_id,
            invoice_id=None,
            amount=Decimal("500"),
            status="reversed",
        )

        result = reconciliation_service.reconcile_tenant(invoice.tenant_id)

        assert result.changed is False

    def test_other_tenants_untouched(self, db_session, reconciliation_service, invoice):
        PaymentFactory.create(invoice_id=None, amount=Decimal("500"))

        result = reconciliation_service.reconcile_tenant(invoice.tenant_id)

        assert result.changed is False
        assert db_session.query(PaymentAllocation).count() == 0
