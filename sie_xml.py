"""Reader for the SIE 5 XML dialect.

SIE 5 carries the same facts as the tag format as elements and attributes, so
this is a plain top-down walk that feeds the shared document builder. Element
names are matched without their namespace.
"""

import calendar
import logging
import xml.etree.ElementTree as ET
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import IO, List, Optional

from sie_builder import CLOSING, OPENING, SieDocumentBuilder
from sie_models import SieBookingYear, SieDocument, SieObjectRef, SieParseError, SieVoucher, SieVoucherRow

logger = logging.getLogger(__name__)

ROOT_ELEMENTS = {"sie", "sieentry"}

ACCOUNT_TYPE_CODES = {
    "asset": "T",
    "liability": "S",
    "equity": "S",
    "cost": "K",
    "income": "I",
}


def _localname(element: ET.Element) -> str:
    return element.tag.split("}")[-1]


def _children(element: Optional[ET.Element], localname: str) -> List[ET.Element]:
    """Direct children with the given local name, in any namespace."""
    if element is None:
        return []
    return [child for child in element if _localname(child).lower() == localname.lower()]


def _child(element: Optional[ET.Element], localname: str) -> Optional[ET.Element]:
    matches = _children(element, localname)
    return matches[0] if matches else None


def _parse_month(text: str, last_day: bool = False) -> date:
    """Parse a ``YYYY-MM`` month to its first (or last) day."""
    year, month = (int(part) for part in text.split("-")[:2])
    day = calendar.monthrange(year, month)[1] if last_day else 1
    return date(year, month, day)


def _decimal(text: Optional[str]) -> Optional[Decimal]:
    if text is None or text == "":
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        raise SieParseError(f"Invalid amount: {text!r}") from None


class SieXmlReader:
    """Maps a parsed SIE 5 tree onto a document."""

    def __init__(self) -> None:
        self._builder = SieDocumentBuilder()
        self._years: List[SieBookingYear] = []

    def read(self, root: ET.Element) -> SieDocument:
        if _localname(root).lower() not in ROOT_ELEMENTS:
            raise SieParseError(f"Not a SIE XML document: root element is <{_localname(root)}>")

        info = _child(root, "FileInfo")
        if info is not None:
            self._guarded(self._read_file_info, info)
        for accounts in _children(root, "Accounts"):
            for account in _children(accounts, "Account"):
                self._guarded(self._read_account, account)
        for dimensions in _children(root, "Dimensions"):
            for dimension in _children(dimensions, "Dimension"):
                self._guarded(self._read_dimension, dimension)
        for journal in _children(root, "Journal"):
            for entry in _children(journal, "JournalEntry"):
                self._guarded(self._read_entry, entry, journal.get("id", ""))

        document = self._builder.build()
        logger.info("Parsed SIE XML document: %d accounts, %d vouchers, %d errors",
                    len(document.accounts), len(document.vouchers), len(document.errors))
        return document

    def _guarded(self, read, element: ET.Element, *args) -> None:
        try:
            read(element, *args)
        except (SieParseError, ValueError) as e:
            self._builder.add_error(SieParseError(
                f"Error reading <{_localname(element)}>: {e}",
                line_content=ET.tostring(element, encoding="unicode").split("\n")[0],
            ))

    def _read_file_info(self, info: ET.Element) -> None:
        builder = self._builder

        software = _child(info, "SoftwareProduct")
        if software is not None:
            builder.set_header("program_name", software.get("name", ""))
            builder.set_header("program_version", software.get("version", ""))

        created = _child(info, "FileCreation")
        if created is not None and created.get("time"):
            builder.set_header("generation_date", date.fromisoformat(created.get("time")[:10]))

        company = _child(info, "Company")
        if company is not None:
            builder.set_header("company_name", company.get("name", ""))
            builder.set_header("registration_number", company.get("organizationId", ""))

        currency = _child(info, "AccountingCurrency")
        if currency is not None:
            builder.set_header("currency", currency.get("currency", ""))

        years = _children(_child(info, "FiscalYears"), "FiscalYear")
        years.sort(key=lambda y: y.get("start", ""))
        primary = next((i for i, y in enumerate(years) if y.get("primary") == "true"), len(years) - 1)
        for i, year in enumerate(years):
            self._years.append(self._builder.add_booking_year(
                i - primary,
                _parse_month(year.get("start", "")),
                _parse_month(year.get("end", ""), last_day=True),
            ))

    def _year_for_month(self, month: str) -> Optional[int]:
        try:
            day = _parse_month(month)
        except ValueError:
            return None
        for year in self._years:
            if year.start_date <= day <= year.end_date:
                return year.id
        return None

    def _read_account(self, element: ET.Element) -> None:
        number = element.get("id", "")
        self._builder.add_account(number, element.get("name", ""))
        code = ACCOUNT_TYPE_CODES.get(element.get("type", ""))
        if code:
            self._builder.set_account_type(number, code)

        for tag, kind in (("OpeningBalance", OPENING), ("ClosingBalance", CLOSING)):
            for balance in _children(element, tag):
                year_id = self._year_for_month(balance.get("month", ""))
                amount = _decimal(balance.get("amount"))
                if year_id is None or amount is None:
                    logger.debug("Dropping %s for account %s outside known fiscal years", tag, number)
                    continue
                self._builder.set_account_balance(number, kind, year_id, amount,
                                                  _decimal(balance.get("quantity")))

    def _read_dimension(self, element: ET.Element) -> None:
        number = element.get("id", "")
        self._builder.add_dimension(number, element.get("name", ""))
        for obj in _children(element, "Object"):
            self._builder.add_object(number, obj.get("id", ""), obj.get("name", ""))

    def _read_entry(self, element: ET.Element, series: str) -> None:
        entry_date = date.fromisoformat(element.get("journalDate", ""))
        voucher = SieVoucher(
            series=series,
            number=element.get("id", ""),
            date=entry_date,
            text=element.get("text", ""),
        )
        info = _child(element, "EntryInfo")
        if info is not None:
            if info.get("date"):
                voucher.registration_date = date.fromisoformat(info.get("date"))
            voucher.registration_sign = info.get("by", "")

        for ledger in _children(element, "LedgerEntry"):
            amount = _decimal(ledger.get("amount"))
            if amount is None:
                raise SieParseError(f"Ledger entry for account {ledger.get('accountId')} has no amount")
            ledger_date = ledger.get("ledgerDate")
            voucher.rows.append(SieVoucherRow(
                account_number=ledger.get("accountId", ""),
                amount=amount,
                objects=[SieObjectRef(ref.get("dimId", ""), ref.get("objectId", ""))
                         for ref in _children(ledger, "ObjectReference")],
                transaction_date=date.fromisoformat(ledger_date) if ledger_date else entry_date,
                text=ledger.get("text", ""),
                quantity=_decimal(ledger.get("quantity")),
            ))
        self._builder.add_voucher(voucher)


def parse_sie_xml(stream: IO) -> SieDocument:
    """
    Parse a SIE 5 XML document from a text or binary stream.

    Raises:
        SieParseError: If the stream is not well-formed XML or not SIE
    """
    try:
        tree = ET.parse(stream)
    except ET.ParseError as e:
        raise SieParseError(f"Invalid SIE XML: {e}") from e
    return SieXmlReader().read(tree.getroot())


__all__ = ["parse_sie_xml", "SieXmlReader"]
