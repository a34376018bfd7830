"""
SIE Writer - serializes a ``SieDocument`` back to SIE 4 text.

The output is canonical rather than a copy of the input file: records are
written in a fixed order (header, company, booking years, accounts and their
balances, dimensions, then vouchers by date) and every field is quoted by the
same rule the tokenizer reads back.

Example usage:
    from sie_parser import parse_sie_file
    from sie_writer import write_sie_file

    document = parse_sie_file('accounting.sie')
    write_sie_file(document, 'canonical.sie')
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence, TextIO

import sie_parser
import sie_settings
from sie_models import SIE_DATE_FORMAT, SieDocument, SieObjectRef, SieVoucher, SieVoucherRow

logger = logging.getLogger(__name__)


class _Token(str):
    """A field that is already rendered and must not be quoted again."""


def _escape(text: str) -> str:
    return text.replace('\\', '\\\\').replace('"', '\\"')


def quote_field(value) -> str:
    """Render one field, quoting it if it is empty or could be misread unquoted.

    Any whitespace the tokenizer splits on forces quotes, as do a leading
    ``{``, a backslash and a double quote; inside quotes the last two are
    escaped with a backslash.
    """
    if isinstance(value, _Token):
        return str(value)
    text = "" if value is None else str(value)
    if text == "" or text.startswith("{") or any(c.isspace() or c in '\\"' for c in text):
        return '"' + _escape(text) + '"'
    return text


def format_date(value: date) -> _Token:
    return _Token(value.strftime(SIE_DATE_FORMAT))


def format_amount(value: Decimal) -> _Token:
    return _Token(format(value, 'f'))


def format_objects(objects: Sequence[SieObjectRef]) -> _Token:
    """Render an object list, ``{}`` when there are no objects."""
    pairs = ['{} "{}"'.format(quote_field(dimension), _escape(number))
             for dimension, number in objects]
    return _Token("{" + " ".join(pairs) + "}")


def canonical_voucher_order(vouchers: Sequence[SieVoucher]) -> List[SieVoucher]:
    """Vouchers in the order the writer emits them: by date, stable."""
    return sorted(vouchers, key=lambda voucher: voucher.date)


class SieWriter:
    """Writes one document to a text sink."""

    def __init__(self, document: SieDocument, sink: TextIO, generated: Optional[date] = None):
        self._document = document
        self._sink = sink
        self._generated = generated or date.today()

    def write(self) -> None:
        self._write_header()
        self._write_accounts()
        self._write_dimensions()
        self._write_balances()
        for voucher in canonical_voucher_order(self._document.vouchers):
            self._write_voucher(voucher)
        logger.info("Wrote SIE document: %d accounts, %d vouchers",
                    len(self._document.accounts), len(self._document.vouchers))

    def _line(self, tag: str, *values) -> None:
        fields = list(values)
        # Optional trailing fields are left out; gaps before a later field stay as ""
        while fields and fields[-1] is None:
            fields.pop()
        self._sink.write(" ".join([tag] + [quote_field(v) for v in fields]) + "\n")

    def _write_header(self) -> None:
        doc = self._document

        self._line("#FLAGGA", _Token("0"))
        self._line("#PROGRAM", sie_settings.PROGRAM_NAME,
                   sie_settings.PROGRAM_VERSION or sie_parser.__version__)
        if doc.format:
            self._line("#FORMAT", doc.format)
        self._line("#GEN", format_date(self._generated))
        self._line("#SIETYP", doc.sie_type or "4")
        if doc.file_number:
            self._line("#FNR", doc.file_number)
        self._line("#FNAMN", doc.company_name)
        if doc.registration_number:
            self._line("#ORGNR", doc.registration_number)
        if any([doc.contact_person, doc.address_line1, doc.address_line2, doc.phone]):
            self._line("#ADRESS", doc.contact_person, doc.address_line1, doc.address_line2, doc.phone)

        for year in doc.booking_years:
            self._line("#RAR", _Token(str(year.id)), format_date(year.start_date), format_date(year.end_date))

        if doc.tax_year:
            self._line("#TAXAR", doc.tax_year)
        if doc.account_plan_type:
            self._line("#KPTYP", doc.account_plan_type)
        if doc.currency:
            self._line("#VALUTA", doc.currency)

    def _write_accounts(self) -> None:
        accounts = [account for _, account in sorted(self._document.accounts.items())]

        for account in accounts:
            self._line("#KONTO", account.number, account.name)
        for account in accounts:
            if account.type is not None:
                self._line("#KTYP", account.number, account.type.value)
        for account in accounts:
            if account.unit:
                self._line("#ENHET", account.number, account.unit)
        for account in accounts:
            if account.sru_code:
                self._line("#SRU", account.number, account.sru_code)

    def _write_dimensions(self) -> None:
        for dimension in self._document.dimensions.values():
            if dimension.parent is not None:
                self._line("#UNDERDIM", dimension.number, dimension.name, dimension.parent)
            else:
                self._line("#DIM", dimension.number, dimension.name)
        for dimension in self._document.dimensions.values():
            for obj in dimension.objects.values():
                self._line("#OBJEKT", dimension.number, obj.number, obj.name)

    def _write_balances(self) -> None:
        accounts = [account for _, account in sorted(self._document.accounts.items())]
        current_year = _Token("0")

        for account in accounts:
            if account.opening_balance != 0:
                self._line("#IB", current_year, account.number, format_amount(account.opening_balance))
        for account in accounts:
            if account.closing_balance != 0:
                self._line("#UB", current_year, account.number, format_amount(account.closing_balance))
        for account in accounts:
            if account.result != 0:
                self._line("#RES", current_year, account.number, format_amount(account.result))

    def _write_voucher(self, voucher: SieVoucher) -> None:
        registration_date = format_date(voucher.registration_date) if voucher.registration_date else None
        self._line("#VER", voucher.series, voucher.number, format_date(voucher.date), voucher.text,
                   registration_date, voucher.registration_sign or None)
        self._sink.write("{\n")
        for row in voucher.rows:
            self._write_row(row, voucher)
        self._sink.write("}\n")

    def _write_row(self, row: SieVoucherRow, voucher: SieVoucher) -> None:
        quantity = format_amount(row.quantity) if row.quantity is not None else None
        self._line("#TRANS", row.account_number, format_objects(row.objects), format_amount(row.amount),
                   format_date(row.transaction_date or voucher.date), row.text,
                   quantity, row.registration_sign or None)


def write_sie(document: SieDocument, sink: TextIO, generated: Optional[date] = None) -> None:
    """
    Write a document as SIE 4 text.

    Args:
        document: The document to write
        sink: Text stream to write to
        generated: Date for the #GEN record (default: today)
    """
    SieWriter(document, sink, generated).write()


def write_sie_file(document: SieDocument, file_path: str, encoding: str = None,
                   generated: Optional[date] = None) -> None:
    """Write a document to a file, in CP437 unless another encoding is given."""
    with open(file_path, 'w', encoding=encoding or sie_settings.ENCODING) as f:
        write_sie(document, f, generated)


__all__ = [
    "write_sie",
    "write_sie_file",
    "quote_field",
    "format_objects",
    "canonical_voucher_order",
    "SieWriter",
]
