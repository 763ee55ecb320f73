from django.conf import settings

from ..models import EntrySequence, JournalEntry


def format_number(prefix, year, value):
    # "JE-2025-0001"; a 5th digit appears only past 9999
    return f"{prefix}-{year}-{value:04d}"


def next_sequence_value(company, prefix, year, seed):
    """
    Lock the company/prefix/year counter row and bump it.
    Must run inside transaction.atomic(): the lock is held until
    the caller's entry row is committed, so two postings can never
    read the same value.
    `seed` is the count of numbers already issued, used when the
    counter row does not exist yet.
    """
    seq, _ = EntrySequence.objects.select_for_update().get_or_create(
        company=company,
        prefix=prefix,
        year=year,
        defaults={"last_value": seed},
    )
    seq.last_value += 1
    seq.save(update_fields=["last_value"])
    return seq.last_value


def entry_prefix(company):
    return company.entry_number_prefix or settings.LEDGER_ENTRY_NUMBER_PREFIX


def allocate_entry_number(company, entry_date):
    """Next journal entry number for the entry's calendar year."""
    prefix = entry_prefix(company)
    year = entry_date.year
    existing = JournalEntry.objects.for_company(company).filter(
        entry_number__startswith=f"{prefix}-{year}-"
    )
    value = next_sequence_value(company, prefix, year, existing.count())
    number = format_number(prefix, year, value)
    # numbers imported or typed in by hand can sit ahead of the counter
    while existing.filter(entry_number=number).exists():
        value = next_sequence_value(company, prefix, year, 0)
        number = format_number(prefix, year, value)
    return number


def allocate_document_number(company, prefix, doc_date, model, field):
    """Same scheme for INV- / BILL- / PAY- numbers."""
    year = doc_date.year
    existing = model.objects.for_company(company).filter(
        **{f"{field}__startswith": f"{prefix}-{year}-"}
    )
    value = next_sequence_value(company, prefix, year, existing.count())
    number = format_number(prefix, year, value)
    while existing.filter(**{field: number}).exists():
        value = next_sequence_value(company, prefix, year, 0)
        number = format_number(prefix, year, value)
    return number
