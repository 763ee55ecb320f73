"""
Typed posting requests.

Document modules and management commands hand the posting engine a
PostingRequest instead of loose dicts. Shape problems are rejected here,
before anything reaches the atomic write phase.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.utils.dateparse import parse_date

from ..exceptions import InvalidPostingRequestError
from ..models.journal import SOURCE_TYPES

SOURCE_TYPE_CODES = {code for code, _ in SOURCE_TYPES}


def _to_decimal(value, label):
    if value in (None, ""):
        return Decimal("0.00")
    if isinstance(value, float):
        # go through str so 0.1 stays 0.1
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidPostingRequestError(f"{label} is not a number: {value!r}")
    if not amount.is_finite():
        raise InvalidPostingRequestError(f"{label} is not a finite number")
    return amount.quantize(Decimal("0.01"))


def _to_date(value, label):
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_date(value)
        except ValueError:
            parsed = None
        if parsed:
            return parsed
    raise InvalidPostingRequestError(f"{label} is not a valid date: {value!r}")


@dataclass(frozen=True)
class SourceDocument:
    type: str
    id: int

    def __post_init__(self):
        if self.type not in SOURCE_TYPE_CODES:
            raise InvalidPostingRequestError(f"Unknown source document type {self.type!r}")


@dataclass(frozen=True)
class PostingLine:
    account_id: int
    debit: Decimal = Decimal("0.00")
    credit: Decimal = Decimal("0.00")
    description: str = ""

    @classmethod
    def from_payload(cls, payload, index=0):
        if not isinstance(payload, dict):
            raise InvalidPostingRequestError(f"Line {index + 1} must be an object")
        if payload.get("account_id") in (None, ""):
            raise InvalidPostingRequestError(f"Line {index + 1} has no account_id")
        try:
            account_id = int(payload["account_id"])
        except (TypeError, ValueError):
            raise InvalidPostingRequestError(
                f"Line {index + 1} account_id must be an integer"
            )
        return cls(
            account_id=account_id,
            debit=_to_decimal(payload.get("debit"), f"Line {index + 1} debit"),
            credit=_to_decimal(payload.get("credit"), f"Line {index + 1} credit"),
            description=payload.get("description") or "",
        )

    def inverted(self):
        """Same line with debit and credit swapped."""
        return PostingLine(
            account_id=self.account_id,
            debit=self.credit,
            credit=self.debit,
            description=self.description,
        )


@dataclass(frozen=True)
class PostingRequest:
    entry_date: date
    lines: tuple = field(default_factory=tuple)
    reference: str = ""
    description: str = ""
    source: Optional[SourceDocument] = None
    # set by the period close, never by callers
    is_closing: bool = False
    reverses_id: Optional[int] = None

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal("0.00"))

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal("0.00"))

    @property
    def account_ids(self):
        return {line.account_id for line in self.lines}

    @classmethod
    def from_payload(cls, payload):
        """
        Build a request from an inbound dict:
        {entry_date, reference?, description?,
         lines: [{account_id, debit, credit, description?}],
         source_document?: {type, id}}
        """
        if not isinstance(payload, dict):
            raise InvalidPostingRequestError("Posting request must be an object")

        raw_lines = payload.get("lines")
        if not isinstance(raw_lines, (list, tuple)):
            raise InvalidPostingRequestError("Posting request needs a list of lines")

        source = None
        raw_source = payload.get("source_document")
        if raw_source:
            if not isinstance(raw_source, dict) or "type" not in raw_source:
                raise InvalidPostingRequestError("source_document needs a type and an id")
            try:
                source = SourceDocument(type=raw_source["type"], id=int(raw_source["id"]))
            except (KeyError, TypeError, ValueError):
                raise InvalidPostingRequestError("source_document id must be an integer")

        return cls(
            entry_date=_to_date(payload.get("entry_date"), "entry_date"),
            lines=tuple(
                PostingLine.from_payload(line, i) for i, line in enumerate(raw_lines)
            ),
            reference=payload.get("reference") or "",
            description=payload.get("description") or "",
            source=source,
        )
