from .account import Account
from .auditlog import AuditLog
from .bill import Bill, BillLine
from .company import Company
from .customer import Customer
from .invoice import Invoice, InvoiceLine
from .item import Item
from .journal import EntrySequence, JournalEntry, JournalLine
from .ledger import LedgerRow
from .payment import Payment
from .period import AccountingPeriod
from .vendor import Vendor
