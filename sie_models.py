"""
SIE data model - accounts, dimensions, booking years and vouchers.

These classes make up the in-memory ledger that the tag parser and the XML
reader build, and that the writer serializes back to SIE text. Everything is
keyed by strings as they appear in the file: account numbers and object
numbers are identifiers, not numbers, and may carry leading zeros or letters.

Monetary values are always ``Decimal``.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, NamedTuple, Optional


SIE_DATE_FORMAT = "%Y%m%d"


# Enums
class AccountType(Enum):
    """SIE account types with clear international names."""
    ASSET = "T"      # Tillgång (SIE code: T)
    LIABILITY = "S"  # Skuld/Eget kapital (SIE code: S)
    INCOME = "I"     # Intäkt (SIE code: I)
    EXPENSE = "K"    # Kostnad (SIE code: K)

    def __str__(self) -> str:
        """Return the SIE code for compatibility."""
        return self.value

    @classmethod
    def from_sie_code(cls, code: str) -> 'AccountType':
        """Create AccountType from SIE single-letter code."""
        for account_type in cls:
            if account_type.value == code.upper():
                return account_type
        raise ValueError(f"Unknown SIE account type code: {code}")

    @property
    def normal_balance(self) -> str:
        """Return the normal balance side for this account type."""
        return "credit" if self in [AccountType.LIABILITY, AccountType.INCOME] else "debit"


# Exceptions
class SieError(Exception):
    """Base class for all SIE errors."""


class SieParseError(SieError):
    """Raised when a SIE line or file cannot be parsed.

    Instances are also what ends up in ``SieDocument.errors``: the reader
    catches the error raised for a line, attaches the line number and the
    raw line text, stores it and moves on.
    """

    def __init__(self, message: str, line_number: int = None, line_content: str = None):
        self.reason = message
        self.line_number = line_number
        self.line_content = line_content

        if line_number is not None:
            message = f"Line {line_number}: {message}"
            if line_content:
                message += f" ('{line_content.strip()}')"

        super().__init__(message)

    def at_line(self, line_number: int, line_content: str) -> 'SieParseError':
        """Return a copy of this error located at the given line."""
        located = type(self)(self.reason, line_number, line_content)
        located.__cause__ = self.__cause__
        return located


class SieUnknownCommandError(SieParseError):
    """Raised for a line starting with an unrecognised ``#`` tag."""


# Data Models
class SieObjectRef(NamedTuple):
    """A (dimension number, object number) pair as written in an object list."""
    dimension: str
    number: str


@dataclass
class SieBookingYear:
    """A fiscal year window. Id 0 is the current year, -1 the one before."""
    id: int
    start_date: date
    end_date: date


@dataclass
class SiePeriodValue:
    """A balance or turnover figure for an account, optionally per object."""
    period: str
    value: Decimal
    quantity: Optional[Decimal] = None
    booking_year: Optional[SieBookingYear] = None
    objects: List[SieObjectRef] = field(default_factory=list)


@dataclass
class SieAccount:
    """Represents an account in the SIE file."""
    number: str
    name: str = ""
    type: Optional[AccountType] = None
    unit: str = ""
    sru_code: str = ""  # Tax reporting code
    opening_balance: Decimal = Decimal(0)
    closing_balance: Decimal = Decimal(0)
    result: Decimal = Decimal(0)
    period_values: List[SiePeriodValue] = field(default_factory=list)
    object_values: List[SiePeriodValue] = field(default_factory=list)

    @property
    def normal_balance(self) -> str:
        """Return the normal balance side, ``""`` when the type is unknown."""
        return self.type.normal_balance if self.type else ""


@dataclass
class SieObject:
    """Represents an object, a member value of a dimension."""
    dimension_number: str
    number: str
    name: str = ""
    opening_balance: Decimal = Decimal(0)
    closing_balance: Decimal = Decimal(0)


@dataclass
class SieDimension:
    """Represents a dimension definition and the objects declared in it."""
    number: str
    name: str
    parent: Optional[str] = None  # Set for #UNDERDIM
    objects: Dict[str, SieObject] = field(default_factory=dict)


@dataclass
class SieVoucherRow:
    """One row (#TRANS) of a voucher."""
    account_number: str
    amount: Decimal
    objects: List[SieObjectRef] = field(default_factory=list)
    transaction_date: Optional[date] = None
    text: str = ""
    quantity: Optional[Decimal] = None
    registration_sign: str = ""


@dataclass
class SieVoucher:
    """A voucher (#VER) with its rows in file order."""
    series: str
    number: str
    date: date
    text: str = ""
    registration_date: Optional[date] = None
    registration_sign: str = ""
    rows: List[SieVoucherRow] = field(default_factory=list)

    @property
    def balance(self) -> Decimal:
        """Sum of the row amounts; zero for a balanced voucher."""
        return sum((row.amount for row in self.rows), Decimal(0))


@dataclass
class SieDocument:
    """Represents a parsed SIE file"""
    # Basic company info
    company_name: str = ""
    registration_number: str = ""

    # File metadata
    flag: str = ""
    format: str = ""
    sie_type: str = ""
    program_name: str = ""
    program_version: str = ""
    generation_date: Optional[date] = None
    file_number: str = ""
    currency: str = ""
    tax_year: str = ""
    account_plan_type: str = ""

    # Address information
    contact_person: str = ""
    address_line1: str = ""
    address_line2: str = ""
    phone: str = ""

    # Data collections
    accounts: Dict[str, SieAccount] = field(default_factory=dict)
    dimensions: Dict[str, SieDimension] = field(default_factory=dict)
    booking_years: List[SieBookingYear] = field(default_factory=list)
    vouchers: List[SieVoucher] = field(default_factory=list)
    errors: List[SieParseError] = field(default_factory=list)

    def find_booking_year(self, year_id: int) -> Optional[SieBookingYear]:
        """Return the first booking year stored with ``year_id``."""
        for year in self.booking_years:
            if year.id == year_id:
                return year
        return None

    def find_object(self, dimension_number: str, object_number: str) -> Optional[SieObject]:
        """Resolve an object reference, ``None`` if either part is undeclared."""
        dimension = self.dimensions.get(dimension_number)
        if dimension is None:
            return None
        return dimension.objects.get(object_number)


__all__ = [
    "SIE_DATE_FORMAT",
    "AccountType",
    "SieError",
    "SieParseError",
    "SieUnknownCommandError",
    "SieObjectRef",
    "SieBookingYear",
    "SiePeriodValue",
    "SieAccount",
    "SieObject",
    "SieDimension",
    "SieVoucherRow",
    "SieVoucher",
    "SieDocument",
]
