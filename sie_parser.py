"""
SIE Parser - reads Swedish SIE accounting files into a ``SieDocument``.

SIE 4 is a line-oriented format: every record is one line starting with a
``#TAG``, fields are separated by spaces, fields containing spaces are
double-quoted and object lists are wrapped in braces. Vouchers are two-level:
a ``#VER`` header followed by a ``{ ... }`` block of ``#TRANS`` rows.

Parsing never stops at a bad line. Each line that cannot be read is recorded
in ``document.errors`` (with its line number and text) and the parser carries
on with the next one, so callers should always look at the error list.

According to the SIE 4B specification, all SIE files must use CP437 encoding
(IBM PC 8-bits extended ASCII, also known as PC8). Files in the SIE 5 XML
dialect are detected by content and handed to ``sie_xml``.

Example usage:
    from sie_parser import parse_sie_file

    # Parse from file path (automatically uses CP437 encoding)
    document = parse_sie_file('accounting.sie')

    # Or parse from an already decoded text stream
    with open('accounting.sie', 'r', encoding='cp437') as f:
        document = parse_sie(f)

    print(f"Company: {document.company_name}")
    print(f"Accounts: {len(document.accounts)}")
    for error in document.errors:
        print(error)
"""

__version__ = "0.2.0"

import io
import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, IO, Iterable, List, Optional, TextIO, Tuple

import sie_settings
from sie_builder import CLOSING, OPENING, RESULT, SieDocumentBuilder
from sie_models import (
    SIE_DATE_FORMAT,
    SieDocument,
    SieObjectRef,
    SieParseError,
    SieUnknownCommandError,
    SieVoucher,
    SieVoucherRow,
)
from sie_xml import parse_sie_xml

logger = logging.getLogger(__name__)

VoucherCallback = Callable[[SieVoucher], bool]

# Header tags that map one field straight onto the document
HEADER_TAGS = {
    "#FLAGGA": "flag",
    "#FORMAT": "format",
    "#SIETYP": "sie_type",
    "#FNAMN": "company_name",
    "#ORGNR": "registration_number",
    "#FNR": "file_number",
    "#VALUTA": "currency",
    "#TAXAR": "tax_year",
    "#KPTYP": "account_plan_type",
}

BALANCE_TAGS = {"#IB": OPENING, "#UB": CLOSING, "#RES": RESULT}
OBJECT_BALANCE_TAGS = {"#OIB": OPENING, "#OUB": CLOSING}

# Recognised, but carry nothing the document model keeps
IGNORED_TAGS = frozenset([
    "#BKOD", "#BTRANS", "#RTRANS", "#ENDRAR", "#FORDER", "#FTYP", "#KRSTYPKOD",
    "#KSUMMA", "#KUNDLEVFODRINGAR", "#OMFATTN", "#PBUDGET", "#PERIOD", "#PROSA",
])

ROW_TAG = "#TRANS"

_DATE_PATTERN = re.compile(r"^\d{8}$")
_AMOUNT_PATTERN = re.compile(r"[+-]?([0-9]+([.,][0-9]*)?|[.,][0-9]+)")

# Characters that a backslash escapes inside a quoted field
_ESCAPED = '"\\'


# Tokenizer
def tokenize_line(line: str) -> List[str]:
    """Split one SIE line into its fields.

    A double-quoted span is one field with the quotes removed; inside it
    ``\\"`` is a literal quote and ``\\\\`` a literal backslash, while any
    other backslash is kept as it is. A brace group ``{...}`` is one field
    and keeps its braces, including any quoted parts and spaces inside it.
    Everything else is split on whitespace.

    >>> tokenize_line('#KONTO 1910 "Cash in bank"')
    ['#KONTO', '1910', 'Cash in bank']
    """
    tokens = []
    i = 0
    n = len(line)
    while i < n:
        char = line[i]
        if char.isspace():
            i += 1
        elif char == '"':
            token, i = _scan_quoted(line, i + 1)
            tokens.append(token)
        elif char == '{':
            token, i = _scan_braced(line, i)
            tokens.append(token)
        else:
            start = i
            while i < n and not line[i].isspace():
                i += 1
            tokens.append(line[start:i])
    return tokens


def _scan_quoted(line: str, i: int) -> Tuple[str, int]:
    """Read a quoted field from just after its opening quote.

    An unterminated quote runs to the end of the line.
    """
    chars = []
    n = len(line)
    while i < n:
        char = line[i]
        if char == '\\' and i + 1 < n and line[i + 1] in _ESCAPED:
            chars.append(line[i + 1])
            i += 2
            continue
        if char == '"':
            return ''.join(chars), i + 1
        chars.append(char)
        i += 1
    return ''.join(chars), n


def _scan_braced(line: str, i: int) -> Tuple[str, int]:
    """Read a brace group from its opening brace; braces inside quotes don't count."""
    start = i
    in_quotes = False
    n = len(line)
    i += 1
    while i < n:
        char = line[i]
        if in_quotes:
            if char == '\\' and i + 1 < n and line[i + 1] in _ESCAPED:
                i += 2
                continue
            if char == '"':
                in_quotes = False
        elif char == '"':
            in_quotes = True
        elif char == '}':
            return line[start:i + 1], i + 1
        i += 1
    return line[start:], n


def decode_objects(token: str) -> List[SieObjectRef]:
    """Decode an object list such as ``{1 "100" 2 "200"}`` into pairs.

    A trailing dimension without an object is dropped.
    """
    text = token.strip()
    if text.startswith('{'):
        text = text[1:]
    if text.endswith('}'):
        text = text[:-1]

    parts = tokenize_line(text)
    if len(parts) % 2:
        logger.debug("Dropping unpaired object list entry %r in %s", parts[-1], token)
    return [SieObjectRef(parts[i], parts[i + 1]) for i in range(0, len(parts) - 1, 2)]


def repair_object_fields(fields: List[str], index: int) -> List[str]:
    """Re-isolate an object list that has been split across fields.

    ``fields[index:]`` is joined back into text; the span from the first
    ``{`` to the last ``}`` becomes the object-list field and the text on
    either side is split on spaces. Without a closing brace the whole rest is
    split on spaces as it is.
    """
    head = fields[:index]
    rest = " ".join(fields[index:])
    start = rest.find("{")
    end = rest.rfind("}")
    if start == -1 or end < start:
        return head + rest.split()
    return head + rest[:start].split() + [rest[start:end + 1]] + rest[end + 1:].split()


def _is_object_list(token: str) -> bool:
    return token.startswith('{') and token.endswith('}')


def _with_object_list(fields: List[str], index: int) -> List[str]:
    """Return ``fields`` with a usable object list at ``index``.

    Rows written by old programs leave the object list out entirely; those
    get an empty one. Only a field that opens with ``{`` is taken to be an
    object list, so braces in later text fields do not count.
    """
    if len(fields) <= index or not fields[index].startswith('{'):
        return fields[:index] + ['{}'] + fields[index:]
    if len(fields) > index + 1 and _is_object_list(fields[index]):
        return fields
    return repair_object_fields(fields, index)


# Field conversion
def parse_sie_date(text: str) -> date:
    """Parse a ``YYYYMMDD`` date."""
    if not _DATE_PATTERN.match(text):
        raise SieParseError(f"Invalid date: {text!r}")
    try:
        return datetime.strptime(text, SIE_DATE_FORMAT).date()
    except ValueError:
        raise SieParseError(f"Invalid date: {text!r}") from None


def parse_amount(text: str) -> Decimal:
    """Parse a monetary amount or quantity exactly.

    Plain decimal notation only, with ``.`` or ``,`` as the separator.
    """
    if not _AMOUNT_PATTERN.fullmatch(text):
        raise SieParseError(f"Invalid amount: {text!r}")
    try:
        return Decimal(text.replace(',', '.'))
    except InvalidOperation:
        raise SieParseError(f"Invalid amount: {text!r}") from None


def _parse_int(text: str, what: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise SieParseError(f"Invalid {what}: {text!r}") from None


def _require(fields: List[str], count: int, tag: str) -> None:
    if len(fields) < count:
        raise SieParseError(f"{tag} needs {count - 1} fields, got {len(fields) - 1}")


def _optional(fields: List[str], index: int) -> Optional[str]:
    """Field at ``index``; missing and empty fields are both ``None``."""
    if len(fields) > index and fields[index] != "":
        return fields[index]
    return None


def _optional_date(fields: List[str], index: int) -> Optional[date]:
    text = _optional(fields, index)
    if text is None:
        return None
    try:
        return parse_sie_date(text)
    except SieParseError:
        logger.debug("Ignoring invalid optional date %r", text)
        return None


def _optional_amount(fields: List[str], index: int) -> Optional[Decimal]:
    text = _optional(fields, index)
    if text is None:
        return None
    try:
        return parse_amount(text)
    except SieParseError:
        logger.debug("Ignoring invalid optional quantity %r", text)
        return None


# Record dispatcher
class SieReader:
    """Reads the tag dialect of SIE into a document.

    One reader reads one document. Lines are dispatched on their first field;
    a ``#VER`` line makes the reader consume the following ``{ ... }`` block
    itself before returning to top-level dispatch.
    """

    def __init__(self, on_voucher: Optional[VoucherCallback] = None):
        self._builder = SieDocumentBuilder()
        self._on_voucher = on_voucher
        self._lines: Iterable[Tuple[int, str]] = iter(())
        self._line_number = 0
        self._handlers: Dict[str, Callable[[str, List[str]], None]] = {
            "#PROGRAM": self._read_program,
            "#GEN": self._read_generated,
            "#ADRESS": self._read_address,
            "#KONTO": self._read_account,
            "#KTYP": self._read_account_type,
            "#SRU": self._read_sru_code,
            "#ENHET": self._read_unit,
            "#DIM": self._read_dimension,
            "#UNDERDIM": self._read_dimension,
            "#OBJEKT": self._read_object,
            "#OBJECT": self._read_object,
            "#RAR": self._read_booking_year,
            "#PSALDO": self._read_period_value,
            "#VER": self._read_voucher,
            ROW_TAG: self._read_stray_row,
        }
        for tag in HEADER_TAGS:
            self._handlers[tag] = self._read_header_field
        for tag in BALANCE_TAGS:
            self._handlers[tag] = self._read_balance
        for tag in OBJECT_BALANCE_TAGS:
            self._handlers[tag] = self._read_object_balance

    def read(self, lines: Iterable[str]) -> SieDocument:
        self._lines = enumerate(lines, 1)
        for line_number, line in self._lines:
            self._read_line(line_number, line)

        document = self._builder.build()
        logger.info("Parsed SIE document: %d accounts, %d vouchers, %d errors",
                    len(document.accounts), len(document.vouchers), len(document.errors))
        return document

    def _read_line(self, line_number: int, line: str) -> None:
        stripped = line.strip()
        if not stripped:
            return

        fields = tokenize_line(stripped)
        tag = fields[0].upper()
        self._line_number = line_number
        try:
            handler = self._handlers.get(tag)
            if handler is not None:
                handler(tag, fields)
            elif tag in IGNORED_TAGS:
                logger.debug("Ignoring %s at line %d", tag, line_number)
            elif tag.startswith('#'):
                raise SieUnknownCommandError(f"Unknown command: {tag}")
        except (SieParseError, ValueError, IndexError) as e:
            self._record_error(e, line_number, line)

    def _record_error(self, error: Exception, line_number: int, line: str) -> None:
        if isinstance(error, SieParseError):
            located = error.at_line(line_number, line)
        else:
            located = SieParseError(f"Error parsing line: {error}", line_number, line)
            located.__cause__ = error
        self._builder.add_error(located)

    # Header records

    def _read_header_field(self, tag: str, fields: List[str]) -> None:
        _require(fields, 2, tag)
        self._builder.set_header(HEADER_TAGS[tag], fields[1])

    def _read_program(self, tag: str, fields: List[str]) -> None:
        _require(fields, 2, tag)
        self._builder.set_header("program_name", fields[1])
        self._builder.set_header("program_version", _optional(fields, 2) or "")

    def _read_generated(self, tag: str, fields: List[str]) -> None:
        _require(fields, 2, tag)
        self._builder.set_header("generation_date", parse_sie_date(fields[1]))

    def _read_address(self, tag: str, fields: List[str]) -> None:
        self._builder.set_address(fields[1:5])

    # Accounts

    def _read_account(self, tag: str, fields: List[str]) -> None:
        _require(fields, 3, tag)
        self._builder.add_account(fields[1], fields[2])

    def _read_account_type(self, tag: str, fields: List[str]) -> None:
        _require(fields, 3, tag)
        self._builder.set_account_type(fields[1], fields[2])

    def _read_sru_code(self, tag: str, fields: List[str]) -> None:
        _require(fields, 3, tag)
        self._builder.set_sru_code(fields[1], fields[2])

    def _read_unit(self, tag: str, fields: List[str]) -> None:
        _require(fields, 3, tag)
        self._builder.set_unit(fields[1], fields[2])

    # Dimensions and objects

    def _read_dimension(self, tag: str, fields: List[str]) -> None:
        if tag == "#UNDERDIM":
            _require(fields, 4, tag)
            self._builder.add_dimension(fields[1], fields[2], parent=fields[3])
        else:
            _require(fields, 3, tag)
            self._builder.add_dimension(fields[1], fields[2])

    def _read_object(self, tag: str, fields: List[str]) -> None:
        _require(fields, 4, tag)
        self._builder.add_object(fields[1], fields[2], fields[3])

    # Booking years and balances

    def _read_booking_year(self, tag: str, fields: List[str]) -> None:
        _require(fields, 4, tag)
        year_id = _parse_int(fields[1], "booking year")
        self._builder.add_booking_year(year_id, parse_sie_date(fields[2]), parse_sie_date(fields[3]))

    def _read_balance(self, tag: str, fields: List[str]) -> None:
        # #IB yearno account balance [quantity]
        _require(fields, 4, tag)
        year_id = _parse_int(fields[1], "booking year")
        amount = parse_amount(fields[3])
        self._builder.set_account_balance(fields[2], BALANCE_TAGS[tag], year_id, amount,
                                          _optional_amount(fields, 4))

    def _read_object_balance(self, tag: str, fields: List[str]) -> None:
        # #OIB yearno account {dimension object} balance [quantity]
        fields = _with_object_list(fields, 3)
        _require(fields, 5, tag)
        year_id = _parse_int(fields[1], "booking year")
        amount = parse_amount(fields[4])
        objects = decode_objects(fields[3])
        if not objects:
            logger.debug("Dropping %s without an object at line %d", tag, self._line_number)
            return
        self._builder.set_object_balance(objects[0], OBJECT_BALANCE_TAGS[tag], year_id, amount)

    def _read_period_value(self, tag: str, fields: List[str]) -> None:
        # #PSALDO yearno period account {objects} balance [quantity]
        fields = _with_object_list(fields, 4)
        _require(fields, 6, tag)
        _parse_int(fields[1], "booking year")
        self._builder.add_period_value(
            fields[3],
            fields[2],
            parse_amount(fields[5]),
            quantity=_optional_amount(fields, 6),
            objects=decode_objects(fields[4]),
        )

    # Vouchers

    def _read_voucher(self, tag: str, fields: List[str]) -> None:
        # #VER series verno verdate [vertext [regdate [sign]]]
        _require(fields, 4, tag)
        voucher = SieVoucher(
            series=fields[1],
            number=fields[2],
            date=parse_sie_date(fields[3]),
            text=_optional(fields, 4) or "",
            registration_date=_optional_date(fields, 5),
            registration_sign=_optional(fields, 6) or "",
        )

        header_line = self._line_number
        if not self._read_voucher_block(voucher):
            self._builder.add_error(SieParseError(
                f"Voucher {voucher.series} {voucher.number} has no closing brace", header_line))

        if self._on_voucher is None or self._on_voucher(voucher):
            self._builder.add_voucher(voucher)

    def _read_voucher_block(self, voucher: SieVoucher) -> bool:
        """Consume lines up to the closing brace, reading #TRANS rows.

        Returns ``False`` if the input ends first.
        """
        for line_number, line in self._lines:
            stripped = line.strip()
            if not stripped or stripped.startswith('{'):
                continue
            if stripped.startswith('}'):
                return True

            fields = tokenize_line(stripped)
            if fields[0].upper() != ROW_TAG:
                logger.debug("Ignoring %r inside voucher block at line %d", fields[0], line_number)
                continue
            try:
                voucher.rows.append(self._decode_row(fields, voucher))
            except (SieParseError, ValueError, IndexError) as e:
                self._record_error(e, line_number, line)
        return False

    def _decode_row(self, fields: List[str], voucher: SieVoucher) -> SieVoucherRow:
        # #TRANS account {objects} amount [transdate [transtext [quantity [sign]]]]
        fields = _with_object_list(fields, 2)
        _require(fields, 4, ROW_TAG)
        return SieVoucherRow(
            account_number=fields[1],
            objects=decode_objects(fields[2]),
            amount=parse_amount(fields[3]),
            transaction_date=_optional_date(fields, 4) or voucher.date,
            text=_optional(fields, 5) or "",
            quantity=_optional_amount(fields, 6),
            registration_sign=_optional(fields, 7) or "",
        )

    def _read_stray_row(self, tag: str, fields: List[str]) -> None:
        raise SieParseError("Voucher row found outside a voucher context")


# Main Parser Functions
def parse_sie(file: TextIO, on_voucher: Optional[VoucherCallback] = None) -> SieDocument:
    """
    Parse SIE text and return the document.

    Args:
        file: File-like object containing decoded SIE text
        on_voucher: Optional filter called with each completed voucher;
            returning False leaves the voucher out of the document

    Returns:
        SieDocument; lines that could not be read are listed in its
        ``errors`` attribute
    """
    content = file.read()
    if content.startswith('\ufeff'):  # Remove BOM if present
        content = content[1:]

    return SieReader(on_voucher).read(content.splitlines())


def is_xml_content(head) -> bool:
    """Whether the start of a stream looks like the SIE XML dialect."""
    if isinstance(head, bytes):
        head = head.decode('latin-1')
    head = head.lstrip('\ufeff\xef\xbb\xbf \t\r\n')
    return head[:5].lower() == '<?xml' or head[:4].lower() == '<sie'


def load_sie(stream: IO, encoding: str = None,
             on_voucher: Optional[VoucherCallback] = None) -> SieDocument:
    """
    Parse a text or binary stream in either SIE dialect.

    The beginning of the stream is inspected to choose between the tag
    dialect and XML, then the stream is rewound so the chosen parser reads it
    from the start. Streams that cannot seek are buffered in memory first.

    Args:
        stream: Text or binary file-like object
        encoding: Encoding for binary tag-dialect input (default from settings)
        on_voucher: See ``parse_sie``
    """
    if not getattr(stream, 'seekable', lambda: False)():
        data = stream.read()
        stream = io.BytesIO(data) if isinstance(data, bytes) else io.StringIO(data)

    start = stream.tell()
    head = stream.read(sie_settings.SNIFF_SIZE)
    stream.seek(start)

    if is_xml_content(head):
        logger.info("Reading SIE XML dialect")
        return parse_sie_xml(stream)

    if isinstance(head, bytes):
        text_stream = io.TextIOWrapper(stream, encoding=encoding or sie_settings.ENCODING)
        try:
            return parse_sie(text_stream, on_voucher)
        finally:
            text_stream.detach()
    return parse_sie(stream, on_voucher)


def parse_sie_file(file_path: str, encoding: str = None,
                   on_voucher: Optional[VoucherCallback] = None) -> SieDocument:
    """
    Parse a SIE file from a file path.

    According to the SIE 4B specification, SIE files must use CP437 encoding
    (IBM PC 8-bits extended ASCII, also known as PC8). XML files are
    recognised by content, whatever their extension.

    Args:
        file_path: Path to the SIE file
        encoding: File encoding (default: ``SIE_ENCODING`` or 'cp437')
        on_voucher: See ``parse_sie``

    Returns:
        SieDocument containing parsed data

    Raises:
        SieParseError: If the file cannot be decoded
        FileNotFoundError: If the file doesn't exist
    """
    encoding_to_use = encoding or sie_settings.ENCODING

    try:
        with open(file_path, 'rb') as f:
            return load_sie(f, encoding=encoding_to_use, on_voucher=on_voucher)
    except UnicodeDecodeError as e:
        raise SieParseError(
            f"File is not properly encoded in {encoding_to_use}. "
            f"According to the SIE 4B specification, SIE files must use CP437 encoding "
            f"(IBM PC 8-bits extended ASCII). Error: {e}"
        ) from e


# Public API
__all__ = [
    # Main parsing functions
    "parse_sie",
    "parse_sie_file",
    "load_sie",
    "is_xml_content",
    # Tokenizing
    "tokenize_line",
    "decode_objects",
    "repair_object_fields",
    "parse_sie_date",
    "parse_amount",
    "SieReader",
]
