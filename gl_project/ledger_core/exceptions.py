class LedgerError(Exception):
    """Base class for every error the posting engine reports to callers."""
    pass


class InvalidPostingRequestError(LedgerError):
    """Raised when an inbound payload does not have the expected shape."""
    pass


class InsufficientLinesError(LedgerError):
    """Raised when an entry has fewer than two lines."""
    pass


class InvalidLineError(LedgerError):
    """Raised when a line is negative or does not carry exactly one side."""
    pass


class UnbalancedEntryError(LedgerError):
    """Raised when total debits and total credits differ by 0.01 or more."""

    def __init__(self, total_debit, total_credit):
        self.total_debit = total_debit
        self.total_credit = total_credit
        super().__init__(
            f"Journal not balanced: debits={total_debit}, credits={total_credit}"
        )


class UnknownAccountError(LedgerError):
    """Raised when a line references an account missing from the company."""

    def __init__(self, account_id, reason="not found"):
        self.account_id = account_id
        super().__init__(f"Account {account_id} {reason}")


class ClosedPeriodError(LedgerError):
    """Raised for a Closed period when the posting policy forbids overrides."""

    def __init__(self, period):
        self.period = period
        super().__init__(
            f"Cannot post to closed period {period.name} "
            f"({period.start_date} to {period.end_date}). "
            "Reopen the period or change the entry date."
        )


class LockedPeriodError(LedgerError):
    """Raised for a Locked period. Never overridable."""

    def __init__(self, period):
        self.period = period
        super().__init__(
            f"Cannot post to locked period {period.name} "
            f"({period.start_date} to {period.end_date})."
        )


class NotFoundError(LedgerError):
    """Raised when an entry, account or period is absent for the company."""
    pass


class InvalidTransitionError(LedgerError):
    """Raised when a status change is not allowed from the current status."""
    pass


class PostingFailedError(LedgerError):
    """Raised when the atomic write phase fails. Nothing was written."""
    pass
