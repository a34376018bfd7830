"""
Document builder shared by the SIE tag parser and the XML reader.

The builder owns the document while it is being read. Readers never touch the
document's collections directly; they call one method per fact, and methods
that depend on something declared earlier (an account, a dimension) return
``False`` when the lookup misses. A miss is not an error: balance and object
records that point at undeclared accounts or dimensions are dropped.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from sie_models import (
    AccountType,
    SieAccount,
    SieBookingYear,
    SieDimension,
    SieDocument,
    SieObject,
    SieObjectRef,
    SieParseError,
    SiePeriodValue,
    SieVoucher,
)

logger = logging.getLogger(__name__)

OPENING = "opening"
CLOSING = "closing"
RESULT = "result"

HEADER_FIELDS = frozenset([
    "company_name", "registration_number", "flag", "format", "sie_type",
    "program_name", "program_version", "generation_date", "file_number",
    "currency", "tax_year", "account_plan_type",
])


class SieDocumentBuilder:
    """Accumulates one SIE document."""

    def __init__(self) -> None:
        self._document = SieDocument()
        # Applied in build(), so they may precede the #KONTO line
        self._account_types: Dict[str, str] = {}
        self._sru_codes: Dict[str, str] = {}
        self._units: Dict[str, str] = {}
        self._built = False

    # Header fields

    def set_header(self, name: str, value) -> None:
        if name not in HEADER_FIELDS:
            raise AttributeError(f"Not a SIE header field: {name}")
        setattr(self._document, name, value)

    def set_address(self, parts: List[str]) -> None:
        parts = list(parts) + [""] * 4
        self._document.contact_person = parts[0]
        self._document.address_line1 = parts[1]
        self._document.address_line2 = parts[2]
        self._document.phone = parts[3]

    # Accounts

    def add_account(self, number: str, name: str) -> SieAccount:
        """Insert an account, replacing any earlier one with the same number."""
        account = SieAccount(number=number, name=name)
        self._document.accounts[number] = account
        return account

    def set_account_type(self, number: str, code: str) -> None:
        self._account_types[number] = code

    def set_sru_code(self, number: str, code: str) -> None:
        self._sru_codes[number] = code

    def set_unit(self, number: str, unit: str) -> None:
        self._units[number] = unit

    def set_account_balance(self, number: str, kind: str, year_id: int, amount: Decimal,
                            quantity: Optional[Decimal] = None) -> bool:
        """Attach an #IB/#UB/#RES figure to an account.

        Only year 0 updates the account's balance fields. Every opening
        balance is also kept as a period value tied to its booking year.
        """
        account = self._document.accounts.get(number)
        if account is None:
            logger.debug("Dropping %s balance for undeclared account %s", kind, number)
            return False

        if kind == OPENING:
            account.period_values.append(SiePeriodValue(
                period="",
                value=amount,
                quantity=quantity,
                booking_year=self._document.find_booking_year(year_id),
            ))
        if year_id != 0:
            return True

        if kind == OPENING:
            account.opening_balance = amount
        elif kind == CLOSING:
            account.closing_balance = amount
        elif kind == RESULT:
            account.result = amount
        else:
            raise ValueError(f"Unknown balance kind: {kind}")
        return True

    def add_period_value(self, number: str, period: str, amount: Decimal,
                         quantity: Optional[Decimal] = None,
                         objects: Optional[List[SieObjectRef]] = None) -> bool:
        account = self._document.accounts.get(number)
        if account is None:
            logger.debug("Dropping period value for undeclared account %s", number)
            return False

        value = SiePeriodValue(period=period, value=amount, quantity=quantity,
                               objects=list(objects or []))
        if value.objects:
            account.object_values.append(value)
        else:
            account.period_values.append(value)
        return True

    # Dimensions and objects

    def add_dimension(self, number: str, name: str, parent: Optional[str] = None) -> SieDimension:
        """Insert a dimension, replacing any earlier one with the same number."""
        dimension = SieDimension(number=number, name=name, parent=parent)
        self._document.dimensions[number] = dimension
        return dimension

    def add_object(self, dimension_number: str, number: str, name: str) -> bool:
        dimension = self._document.dimensions.get(dimension_number)
        if dimension is None:
            logger.debug("Dropping object %s for undeclared dimension %s", number, dimension_number)
            return False
        dimension.objects[number] = SieObject(dimension_number=dimension_number, number=number, name=name)
        return True

    def set_object_balance(self, ref: SieObjectRef, kind: str, year_id: int, amount: Decimal) -> bool:
        obj = self._document.find_object(ref.dimension, ref.number)
        if obj is None:
            logger.debug("Dropping %s balance for undeclared object %s/%s", kind, ref.dimension, ref.number)
            return False
        if year_id != 0:
            return True

        if kind == OPENING:
            obj.opening_balance = amount
        elif kind == CLOSING:
            obj.closing_balance = amount
        else:
            raise ValueError(f"Unknown object balance kind: {kind}")
        return True

    # Booking years and vouchers

    def add_booking_year(self, year_id: int, start_date: date, end_date: date) -> SieBookingYear:
        year = SieBookingYear(id=year_id, start_date=start_date, end_date=end_date)
        self._document.booking_years.append(year)
        return year

    def add_voucher(self, voucher: SieVoucher) -> None:
        self._document.vouchers.append(voucher)

    # Errors

    def add_error(self, error: SieParseError) -> None:
        logger.warning("%s", error)
        self._document.errors.append(error)

    def build(self) -> SieDocument:
        """Apply deferred account records and hand over the document."""
        if self._built:
            return self._document
        accounts = self._document.accounts

        for number, code in self._account_types.items():
            if number not in accounts:
                continue
            try:
                accounts[number].type = AccountType.from_sie_code(code)
            except ValueError as e:
                self.add_error(SieParseError(f"Invalid account type in KTYP: {e}",
                                             line_content=f"#KTYP {number} {code}"))

        for number, code in self._sru_codes.items():
            if number in accounts:
                accounts[number].sru_code = code

        for number, unit in self._units.items():
            if number in accounts:
                accounts[number].unit = unit

        self._built = True
        return self._document

