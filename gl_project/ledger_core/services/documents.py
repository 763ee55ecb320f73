"""
Invoice / bill / payment workflows.

One-way dependency: these services call the ledger (post / void) and
store the returned entry id. Subsidiary balances and stock quantities
move inside the same atomic block as the journal entry that justifies
them.
"""
import functools
import logging
from collections import OrderedDict

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from django.db.models import F

from ..exceptions import (InvalidPostingRequestError, InvalidTransitionError,
                          NotFoundError, PostingFailedError)
from ..models import Bill, Customer, Invoice, Item, Payment, Vendor
from .accounts import ZERO, money, resolve_account
from .audit_helper import log_action
from .numbering import allocate_document_number
from .posting import post_journal_entry
from .requests import PostingLine, PostingRequest, SourceDocument
from .reversal import void_journal_entry

logger = logging.getLogger(__name__)


def _get_locked(model, company, pk, label):
    try:
        return model.objects.for_company(company).select_for_update().get(pk=pk)
    except model.DoesNotExist:
        raise NotFoundError(f"{label} {pk} not found")


def _require_status(doc, new_status, label):
    if not doc.can_transition_to(new_status):
        raise InvalidTransitionError(
            f"Cannot move {label} from {doc.status} to {new_status}"
        )


def _aggregate(pairs):
    """Sum amounts per account, keeping first-seen order. Zero totals are dropped."""
    totals = OrderedDict()
    for account, amount in pairs:
        totals[account.pk] = totals.get(account.pk, ZERO) + amount
    return OrderedDict((pk, amount) for pk, amount in totals.items() if amount)


def _document_write(label):
    """Map storage failures inside a document workflow to PostingFailedError."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except (DatabaseError, ValidationError) as exc:
                logger.exception("%s failed", label)
                raise PostingFailedError(f"{label} failed, nothing was written") from exc

        return wrapper

    return decorator


# ----------------------------
# Invoices (AR)
# ----------------------------
@_document_write("Invoice issue")
def issue_invoice(company, user, invoice_id, *, allow_closed_period=None):
    """
    Draft → Open.
      Debit:  Accounts Receivable = invoice.total
      Credit: revenue account of each line
    """
    with transaction.atomic():
        invoice = _get_locked(Invoice, company, invoice_id, "Invoice")
        _require_status(invoice, "open", "invoice")

        total = money(invoice.recalc_total())
        if total <= 0:
            raise InvalidPostingRequestError("Invoice total must be > 0 to issue it")
        ar_account = invoice.ar_account
        if ar_account is None:
            raise InvalidPostingRequestError("No receivable account for this invoice")

        revenue = []
        for line in invoice.lines.select_related("account", "item__sales_account"):
            account = line.revenue_account
            if account is None:
                raise InvalidPostingRequestError(f"Invoice line {line.pk} has no revenue account")
            revenue.append((account, money(line.line_total)))

        if not invoice.invoice_number:
            invoice.invoice_number = allocate_document_number(
                company, "INV", invoice.date, Invoice, "invoice_number"
            )

        lines = [PostingLine(account_id=ar_account.pk, debit=total,
                             description=f"AR for {invoice.invoice_number}")]
        lines += [
            PostingLine(account_id=account_id, credit=amount,
                        description=f"Revenue: {invoice.invoice_number}")
            for account_id, amount in _aggregate(revenue).items()
        ]
        result = post_journal_entry(
            company,
            user,
            PostingRequest(
                entry_date=invoice.date,
                lines=tuple(lines),
                reference=invoice.invoice_number,
                description=f"Invoice {invoice.invoice_number} to {invoice.customer.name}",
                source=SourceDocument(type="invoice", id=invoice.pk),
            ),
            allow_closed_period=allow_closed_period,
        )

        invoice.journal_entry_id = result.entry_id
        invoice.total = total
        invoice.outstanding_amount = total
        invoice.status = "open"
        invoice.save()
        Customer.objects.filter(pk=invoice.customer_id).update(
            current_balance=F("current_balance") + total
        )
        log_action(action="issue", instance=invoice, user=user, company=company,
                   changes={"entry_number": result.entry_number, "total": str(total)})

    logger.info("Invoice %s issued", invoice.invoice_number, extra={"company_id": company.pk})
    return invoice


@_document_write("Invoice void")
def void_invoice(company, user, invoice_id, *, reversal_date=None, allow_closed_period=None):
    """Open → Void. Voided payments first; a paid invoice cannot be voided."""
    with transaction.atomic():
        invoice = _get_locked(Invoice, company, invoice_id, "Invoice")
        _require_status(invoice, "void", "invoice")
        if invoice.payments.filter(status="posted").exists():
            raise InvalidTransitionError("Void the invoice's payments before voiding it")

        result = void_journal_entry(
            company, user, invoice.journal_entry_id,
            reversal_date=reversal_date, allow_closed_period=allow_closed_period,
        )
        Customer.objects.filter(pk=invoice.customer_id).update(
            current_balance=F("current_balance") - invoice.outstanding_amount
        )
        invoice.outstanding_amount = ZERO
        invoice.status = "void"
        invoice.save()
        log_action(action="void", instance=invoice, user=user, company=company,
                   changes={"reversal": result.reversal_number})

    logger.info("Invoice %s voided", invoice.invoice_number, extra={"company_id": company.pk})
    return invoice


# ----------------------------
# Bills (AP)
# ----------------------------
@_document_write("Bill approval")
def approve_bill(company, user, bill_id, *, allow_closed_period=None):
    """
    Draft → Posted.
      Debit:  expense / inventory account of each line
      Credit: Accounts Payable = bill.total
    Lines with an item add their quantity to stock.
    """
    with transaction.atomic():
        bill = _get_locked(Bill, company, bill_id, "Bill")
        _require_status(bill, "posted", "bill")

        total = money(bill.recalc_total())
        if total <= 0:
            raise InvalidPostingRequestError("Bill total must be > 0 to approve it")
        ap_account = bill.ap_account
        if ap_account is None:
            raise InvalidPostingRequestError("No payable account for this bill")

        bill_lines = list(bill.lines.select_related("account", "item__purchase_account"))
        expense = []
        for line in bill_lines:
            account = line.expense_account
            if account is None:
                raise InvalidPostingRequestError(f"Bill line {line.pk} has no expense account")
            expense.append((account, money(line.line_total)))

        if not bill.bill_number:
            bill.bill_number = allocate_document_number(
                company, "BILL", bill.date, Bill, "bill_number"
            )

        lines = [
            PostingLine(account_id=account_id, debit=amount,
                        description=f"Expense: {bill.bill_number}")
            for account_id, amount in _aggregate(expense).items()
        ]
        lines.append(PostingLine(account_id=ap_account.pk, credit=total,
                                 description=f"AP for {bill.bill_number}"))
        result = post_journal_entry(
            company,
            user,
            PostingRequest(
                entry_date=bill.date,
                lines=tuple(lines),
                reference=bill.bill_number,
                description=f"Bill {bill.bill_number} from {bill.vendor.name}",
                source=SourceDocument(type="bill", id=bill.pk),
            ),
            allow_closed_period=allow_closed_period,
        )

        bill.journal_entry_id = result.entry_id
        bill.total = total
        bill.outstanding_amount = total
        bill.status = "posted"
        bill.save()
        Vendor.objects.filter(pk=bill.vendor_id).update(
            current_balance=F("current_balance") + total
        )
        _move_stock(bill_lines, sign=1)
        log_action(action="approve", instance=bill, user=user, company=company,
                   changes={"entry_number": result.entry_number, "total": str(total)})

    logger.info("Bill %s approved", bill.bill_number, extra={"company_id": company.pk})
    return bill


@_document_write("Bill void")
def void_bill(company, user, bill_id, *, reversal_date=None, allow_closed_period=None):
    """Posted → Void; vendor balance and stock quantities are given back."""
    with transaction.atomic():
        bill = _get_locked(Bill, company, bill_id, "Bill")
        _require_status(bill, "void", "bill")
        if bill.payments.filter(status="posted").exists():
            raise InvalidTransitionError("Void the bill's payments before voiding it")

        result = void_journal_entry(
            company, user, bill.journal_entry_id,
            reversal_date=reversal_date, allow_closed_period=allow_closed_period,
        )
        Vendor.objects.filter(pk=bill.vendor_id).update(
            current_balance=F("current_balance") - bill.outstanding_amount
        )
        _move_stock(list(bill.lines.all()), sign=-1)
        bill.outstanding_amount = ZERO
        bill.status = "void"
        bill.save()
        log_action(action="void", instance=bill, user=user, company=company,
                   changes={"reversal": result.reversal_number})

    logger.info("Bill %s voided", bill.bill_number, extra={"company_id": company.pk})
    return bill


def _move_stock(bill_lines, sign):
    for line in bill_lines:
        if line.item_id:
            Item.objects.filter(pk=line.item_id).update(
                on_hand_quantity=F("on_hand_quantity") + sign * line.quantity
            )


# ----------------------------
# Payments
# ----------------------------
@_document_write("Payment")
def record_payment(company, user, *, amount, payment_date, cash_account_id,
                   invoice_id=None, bill_id=None, payment_method="bank_transfer",
                   reference="", allow_closed_period=None):
    """
    Customer receipt (invoice_id): DR cash, CR receivable.
    Vendor payment (bill_id):      DR payable, CR cash.
    """
    if (invoice_id is None) == (bill_id is None):
        raise InvalidPostingRequestError("A payment applies to exactly one invoice or bill")
    amount = money(amount)
    if amount <= 0:
        raise InvalidPostingRequestError("Payment amount must be positive")

    with transaction.atomic():
        cash = resolve_account(company, cash_account_id, require_active=True)
        if invoice_id is not None:
            doc = _get_locked(Invoice, company, invoice_id, "Invoice")
            if doc.status != "open":
                raise InvalidTransitionError(f"Cannot pay an invoice that is {doc.status}")
            payment_type = "receipt"
            control = doc.ar_account
            debit_account, credit_account = cash, control
            label = doc.invoice_number
        else:
            doc = _get_locked(Bill, company, bill_id, "Bill")
            if doc.status != "posted":
                raise InvalidTransitionError(f"Cannot pay a bill that is {doc.status}")
            payment_type = "disbursement"
            control = doc.ap_account
            debit_account, credit_account = control, cash
            label = doc.bill_number

        if control is None:
            raise InvalidPostingRequestError(f"No control account for {label}")

        if amount > doc.outstanding_amount:
            raise InvalidPostingRequestError(
                f"Payment {amount} exceeds outstanding amount {doc.outstanding_amount}"
            )

        payment_number = allocate_document_number(
            company, "PAY", payment_date, Payment, "payment_number"
        )
        payment = Payment.objects.create(
            company=company,
            payment_number=payment_number,
            payment_type=payment_type,
            payment_date=payment_date,
            amount=amount,
            payment_method=payment_method,
            reference=reference,
            cash_account=cash,
            invoice=doc if payment_type == "receipt" else None,
            bill=doc if payment_type == "disbursement" else None,
        )
        result = post_journal_entry(
            company,
            user,
            PostingRequest(
                entry_date=payment_date,
                lines=(
                    PostingLine(account_id=debit_account.pk, debit=amount),
                    PostingLine(account_id=credit_account.pk, credit=amount),
                ),
                reference=payment_number,
                description=f"Payment {payment_number} for {label}",
                source=SourceDocument(type="payment", id=payment.pk),
            ),
            allow_closed_period=allow_closed_period,
        )
        payment.journal_entry_id = result.entry_id
        payment.save()

        doc.outstanding_amount -= amount
        if doc.outstanding_amount == 0:
            doc.status = "paid"
        doc.save()
        _move_subsidiary(doc, -amount)
        log_action(action="pay", instance=payment, user=user, company=company,
                   changes={"document": label, "amount": str(amount)})

    logger.info("Payment %s recorded", payment_number, extra={"company_id": company.pk})
    return payment


@_document_write("Payment void")
def void_payment(company, user, payment_id, *, reversal_date=None, allow_closed_period=None):
    """Reverse a payment; the document goes back to owing the amount."""
    with transaction.atomic():
        payment = _get_locked(Payment, company, payment_id, "Payment")
        if payment.status != "posted":
            raise InvalidTransitionError(f"Cannot void a payment that is {payment.status}")

        result = void_journal_entry(
            company, user, payment.journal_entry_id,
            reversal_date=reversal_date, allow_closed_period=allow_closed_period,
        )

        model = Invoice if payment.invoice_id else Bill
        doc = model.objects.select_for_update().get(pk=payment.invoice_id or payment.bill_id)
        doc.outstanding_amount += payment.amount
        if doc.status == "paid":
            doc.status = "open" if model is Invoice else "posted"
        doc.save()
        _move_subsidiary(doc, payment.amount)

        payment.status = "void"
        payment.save()
        log_action(action="void", instance=payment, user=user, company=company,
                   changes={"reversal": result.reversal_number})

    logger.info("Payment %s voided", payment.payment_number, extra={"company_id": company.pk})
    return payment


def _move_subsidiary(doc, delta):
    if isinstance(doc, Invoice):
        Customer.objects.filter(pk=doc.customer_id).update(
            current_balance=F("current_balance") + delta
        )
    else:
        Vendor.objects.filter(pk=doc.vendor_id).update(
            current_balance=F("current_balance") + delta
        )
