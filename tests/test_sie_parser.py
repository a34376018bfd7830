"""Tests for SIE parser.

This test suite validates the SIE parser's compliance with the SIE 4B specification
and ensures compatibility with real-world SIE files.
"""

import pytest
from datetime import date
from decimal import Decimal
from io import BytesIO, StringIO
import sys
import os

# Add the parent directory to the path so we can import sie_parser
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import sie_parser
from sie_models import AccountType, SieParseError, SieUnknownCommandError

TEST_FILE_PATH = os.path.join(os.path.dirname(__file__), 'test_sie4.se')


def parse(sie_content, **kwargs):
    return sie_parser.parse_sie(StringIO(sie_content), **kwargs)


# Tokenizer

def test_tokenize_quoted_field():
    """Test that quotes are stripped and embedded spaces kept in one field."""
    assert sie_parser.tokenize_line('#KONTO 1910 "Cash in bank"') == ["#KONTO", "1910", "Cash in bank"]


def test_tokenize_object_list_is_one_field():
    """Test that a brace group stays one field, including quoted spaces inside it."""
    fields = sie_parser.tokenize_line('#TRANS 1910 {1 "100" 2 "A B"} 100.00')
    assert fields == ["#TRANS", "1910", '{1 "100" 2 "A B"}', "100.00"]


def test_tokenize_escaped_quote_and_empty_field():
    """Test escaped quotes inside quoted text and empty quoted fields."""
    assert sie_parser.tokenize_line('#VER A 1 20240101 "Say \\"hi\\""') == \
        ["#VER", "A", "1", "20240101", 'Say "hi"']
    assert sie_parser.tokenize_line('#TRANS 1910 {} 1 20240101 ""') == \
        ["#TRANS", "1910", "{}", "1", "20240101", ""]


def test_tokenize_escaped_backslash():
    """Test that a doubled backslash reads as one and a lone one is kept."""
    assert sie_parser.tokenize_line('#KONTO 1910 "C:\\\\"') == ["#KONTO", "1910", "C:\\"]
    assert sie_parser.tokenize_line('#KONTO 1910 "C:\\temp"') == ["#KONTO", "1910", "C:\\temp"]
    assert sie_parser.tokenize_line('#TRANS 1910 {1 "A\\\\"} 1') == ["#TRANS", "1910", '{1 "A\\\\"}', "1"]


def test_tokenize_unterminated_quote_runs_to_end_of_line():
    assert sie_parser.tokenize_line('#FNAMN "Open ended') == ["#FNAMN", "Open ended"]


def test_decode_objects():
    """Test object list decoding into (dimension, object) pairs."""
    assert sie_parser.decode_objects('{1 "100" 2 "200"}') == [("1", "100"), ("2", "200")]
    assert sie_parser.decode_objects("{}") == []

    refs = sie_parser.decode_objects('{6 "P 1"}')
    assert refs[0].dimension == "6"
    assert refs[0].number == "P 1"


def test_decode_objects_drops_unpaired_dimension():
    assert sie_parser.decode_objects('{1 "100" 2}') == [("1", "100")]


def test_repair_object_fields():
    """Test that an object list split across fields is joined back together."""
    fields = ["#TRANS", "1910", "{1", '"100"}', "250.00", "20240101"]
    assert sie_parser.repair_object_fields(fields, 2) == \
        ["#TRANS", "1910", '{1 "100"}', "250.00", "20240101"]


def test_repair_object_fields_without_closing_brace():
    fields = ["#TRANS", "1910", "{1", "100", "250.00"]
    assert sie_parser.repair_object_fields(fields, 2) == ["#TRANS", "1910", "{1", "100", "250.00"]


def test_parse_date_and_amount():
    assert sie_parser.parse_sie_date("20240229") == date(2024, 2, 29)
    assert sie_parser.parse_amount("100,50") == Decimal("100.50")

    with pytest.raises(SieParseError):
        sie_parser.parse_sie_date("2024-01-01")
    with pytest.raises(SieParseError):
        sie_parser.parse_sie_date("20240230")
    with pytest.raises(SieParseError):
        sie_parser.parse_amount("invalid_amount")
    with pytest.raises(SieParseError):
        sie_parser.parse_amount("NaN")
    for text in ("1_000", "1e3", " 5", "5 ", "Infinity", "", "+"):
        with pytest.raises(SieParseError):
            sie_parser.parse_amount(text)
    assert sie_parser.parse_amount("-500") == Decimal("-500")
    assert sie_parser.parse_amount(".5") == Decimal("0.5")
    assert sie_parser.parse_amount("5.") == Decimal("5")


# Records

def test_parse_simple_sie():
    """Test basic SIE parsing functionality with minimal valid file."""
    sie_content = '''#FLAGGA 1
#FORMAT PC8
#SIETYP 4
#PROGRAM "Fortnox" 3.1
#GEN 20210105
#FNAMN "Test Company AB"
#ORGNR 555555-5555
#RAR 0 20210101 20211231
#KONTO 1910 Kassa
#KTYP 1910 T
#VER A 1 20210101 "Test transaction"
{
   #TRANS 1910 {} 1000.00
}
'''

    result = parse(sie_content)

    assert result.errors == []
    assert result.flag == "1"
    assert result.format == "PC8"
    assert result.sie_type == "4"
    assert result.program_name == "Fortnox"
    assert result.program_version == "3.1"
    assert result.generation_date == date(2021, 1, 5)
    assert result.company_name == "Test Company AB"
    assert result.registration_number == "555555-5555"
    assert result.booking_years[0].id == 0
    assert result.booking_years[0].start_date == date(2021, 1, 1)
    assert result.booking_years[0].end_date == date(2021, 12, 31)
    assert result.accounts["1910"].name == "Kassa"
    assert result.accounts["1910"].type == AccountType.ASSET
    assert len(result.vouchers) == 1
    assert result.vouchers[0].rows[0].amount == Decimal("1000.00")


def test_end_to_end_scenario():
    """Test the smallest complete document: one account and one voucher."""
    sie_content = '''#FNAMN "Acme AB"
#KONTO 1910 "Cash"
#VER A 1 20240101 "Opening"
{
#TRANS 1910 {} 500.00 20240101 ""
}
'''

    result = parse(sie_content)

    assert result.errors == []
    assert result.company_name == "Acme AB"
    assert list(result.accounts) == ["1910"]
    assert result.accounts["1910"].name == "Cash"

    assert len(result.vouchers) == 1
    voucher = result.vouchers[0]
    assert voucher.series == "A"
    assert voucher.number == "1"
    assert voucher.date == date(2024, 1, 1)
    assert voucher.text == "Opening"
    assert len(voucher.rows) == 1
    assert voucher.rows[0].account_number == "1910"
    assert voucher.rows[0].amount == Decimal("500.00")
    assert voucher.rows[0].objects == []
    assert voucher.rows[0].text == ""


def test_empty_file():
    """Test that empty files are handled gracefully without errors."""
    result = parse("")

    assert result.company_name == ""
    assert len(result.accounts) == 0
    assert len(result.vouchers) == 0
    assert result.errors == []


def test_byte_order_mark_and_lowercase_tags():
    result = parse('\ufeff#FNAMN "BOM AB"\n#konto 1910 Kassa\n')

    assert result.errors == []
    assert result.company_name == "BOM AB"
    assert "1910" in result.accounts


def test_address_record():
    result = parse('#ADRESS "Anna Andersson" "Storgatan 1" "123 45 Stockholm" "08-123 45 67"\n')

    assert result.contact_person == "Anna Andersson"
    assert result.address_line1 == "Storgatan 1"
    assert result.address_line2 == "123 45 Stockholm"
    assert result.phone == "08-123 45 67"


def test_parse_error_is_recorded():
    """Test that a malformed line is recorded with its line number and parsing continues."""
    sie_content = '''#FLAGGA 1
#KONTO 1910 Kassa
#IB 0 1910 invalid_amount
#KONTO 1920 Bank
'''

    result = parse(sie_content)

    assert len(result.errors) == 1
    error = result.errors[0]
    assert isinstance(error, SieParseError)
    assert error.line_number == 3
    assert error.line_content == "#IB 0 1910 invalid_amount"
    assert "Line 3" in str(error)
    assert result.accounts["1910"].opening_balance == 0
    assert "1920" in result.accounts


def test_unknown_tag_isolation():
    """Test that an unknown tag yields exactly one error and nothing else changes."""
    sie_content = '''#FNAMN "Acme AB"
#KONTO 1910 Cash
#FOOBAR x y
#KONTO 1920 Bank
'''

    result = parse(sie_content)

    assert len(result.errors) == 1
    assert "FOOBAR" in str(result.errors[0])
    assert isinstance(result.errors[0], SieUnknownCommandError)
    assert result.company_name == "Acme AB"
    assert set(result.accounts) == {"1910", "1920"}


def test_ignored_tags_are_not_errors():
    sie_content = '''#PROSA "Some free text"
#KSUMMA 12345
#KONTO 1910 Kassa
'''

    result = parse(sie_content)

    assert result.errors == []
    assert "1910" in result.accounts


def test_field_count_shortfall():
    result = parse("#KONTO 1910\n#RAR 0 20240101\n")

    assert len(result.errors) == 2
    assert [e.line_number for e in result.errors] == [1, 2]
    assert result.accounts == {}
    assert result.booking_years == []


def test_balance_for_undeclared_account_is_dropped():
    """Test the lenient lookup policy: unknown accounts are ignored silently."""
    sie_content = '''#KONTO 1910 Kassa
#IB 0 9999 100.00
#UB 0 9999 100.00
#RES 0 9999 100.00
'''

    result = parse(sie_content)

    assert result.errors == []
    assert list(result.accounts) == ["1910"]
    assert result.accounts["1910"].opening_balance == 0
    assert result.accounts["1910"].closing_balance == 0
    assert result.accounts["1910"].period_values == []


def test_balances_only_current_year_sets_scalars():
    """Test that only year 0 sets the balance fields while every #IB is kept."""
    sie_content = '''#RAR 0 20240101 20241231
#RAR -1 20230101 20231231
#KONTO 1910 Kassa
#KONTO 3010 Forsaljning
#IB 0 1910 5000.00
#IB -1 1910 4200,50
#UB 0 1910 8500.00
#UB -1 1910 5000.00
#RES 0 3010 -2000.00
'''

    result = parse(sie_content)
    cash = result.accounts["1910"]

    assert result.errors == []
    assert cash.opening_balance == Decimal("5000.00")
    assert cash.closing_balance == Decimal("8500.00")
    assert result.accounts["3010"].result == Decimal("-2000.00")

    assert [v.value for v in cash.period_values] == [Decimal("5000.00"), Decimal("4200.50")]
    assert cash.period_values[0].booking_year.id == 0
    assert cash.period_values[1].booking_year.id == -1
    assert cash.period_values[1].booking_year.start_date == date(2023, 1, 1)


def test_duplicate_year_index_uses_first_declaration():
    """Test that a period value is tied to the first #RAR with its index."""
    sie_content = '''#RAR 0 20240101 20241231
#RAR 0 20250101 20251231
#KONTO 1910 Kassa
#IB 0 1910 100.00
'''

    result = parse(sie_content)
    cash = result.accounts["1910"]

    assert result.errors == []
    assert [year.start_date for year in result.booking_years] == [date(2024, 1, 1), date(2025, 1, 1)]
    assert cash.period_values[0].booking_year.start_date == date(2024, 1, 1)
    assert cash.period_values[0].booking_year is result.booking_years[0]


def test_period_balances():
    sie_content = '''#DIM 1 Kostnadsstalle
#OBJEKT 1 100 Huvudkontor
#KONTO 1910 Kassa
#PSALDO 0 202401 1910 {} 150.00 3
#PSALDO 0 202401 1910 {1 "100"} 50.00
#PSALDO 0 202401 9999 {} 1.00
'''

    result = parse(sie_content)
    cash = result.accounts["1910"]

    assert result.errors == []
    assert len(cash.period_values) == 1
    assert cash.period_values[0].period == "202401"
    assert cash.period_values[0].value == Decimal("150.00")
    assert cash.period_values[0].quantity == Decimal("3")
    assert len(cash.object_values) == 1
    assert cash.object_values[0].objects == [("1", "100")]


def test_dimensions_objects_and_object_balances():
    sie_content = '''#DIM 1 "Kostnadsställe"
#UNDERDIM 21 Avdelning 1
#OBJEKT 1 100 "Huvudkontor"
#OBJEKT 7 700 "Undeclared dimension"
#OIB 0 1910 {1 "100"} 300.00
#OUB 0 1910 {1 "100"} 400.00
#OIB 0 1910 {1 "999"} 1.00
#OIB -1 1910 {1 "100"} 2.00
'''

    result = parse(sie_content)

    assert result.errors == []
    assert result.dimensions["1"].name == "Kostnadsställe"
    assert result.dimensions["21"].parent == "1"
    assert set(result.dimensions) == {"1", "21"}

    obj = result.find_object("1", "100")
    assert obj.name == "Huvudkontor"
    assert obj.opening_balance == Decimal("300.00")
    assert obj.closing_balance == Decimal("400.00")
    assert result.find_object("7", "700") is None


def test_ktyp_override():
    """Test that KTYP records apply regardless of declaration order.

    SIE files don't guarantee KTYP comes after KONTO records, so the parser
    must handle deferred processing.
    """
    result = sie_parser.parse_sie_file(TEST_FILE_PATH)

    # Account 1510 - KTYP before KONTO definition
    assert result.accounts['1510'].type == AccountType.INCOME

    # Account 3010 - KTYP after KONTO definition
    assert result.accounts['3010'].type == AccountType.LIABILITY

    assert result.accounts['1910'].type == AccountType.ASSET
    assert result.accounts['2610'].type == AccountType.LIABILITY
    assert result.accounts['3010'].sru_code == "7410"


def test_invalid_ktyp_code():
    result = parse("#KONTO 1910 Kassa\n#KTYP 1910 X\n#KTYP 9999 T\n")

    assert len(result.errors) == 1
    assert "KTYP" in str(result.errors[0])
    assert result.accounts["1910"].type is None


def test_units_and_sru_codes():
    result = parse("#ENHET 1460 st\n#KONTO 1460 Lager\n#SRU 1460 7241\n")

    assert result.accounts["1460"].unit == "st"
    assert result.accounts["1460"].sru_code == "7241"


# Vouchers

def test_voucher_fields_and_row_defaults():
    result = sie_parser.parse_sie_file(TEST_FILE_PATH)

    assert result.errors == []
    first, second = result.vouchers
    assert first.text == "Kontantförsäljning"
    assert first.registration_date == date(2024, 3, 16)
    assert [row.account_number for row in first.rows] == ["1910", "3010", "2610"]
    assert first.rows[0].transaction_date == first.date
    assert first.rows[1].objects == [("1", "100")]
    assert second.rows[0].transaction_date == date(2024, 3, 20)
    assert second.rows[0].text == "Kund 1"


def test_voucher_balance_derivation():
    """Test that a voucher's balance is the exact sum of its rows."""
    sie_content = '''#VER A 1 20240101 "Balanced"
{
#TRANS 1910 {} 100.00
#TRANS 3010 {} -100.00
}
#VER A 2 20240102 "Exact decimals"
{
#TRANS 1910 {} 0.1
#TRANS 1910 {} 0.2
}
'''

    result = parse(sie_content)

    assert result.vouchers[0].balance == 0
    assert result.vouchers[1].balance == Decimal("0.3")


def test_row_optional_fields():
    sie_content = '''#VER B 7 20240105 Text 20240106 AA
{
#TRANS 1460 {1 "A B"} -250,00 20240104 "Goods out" 10 BB
#TRANS 1910 {} 250.00 2024XX01
}
'''

    result = parse(sie_content)
    voucher = result.vouchers[0]

    assert result.errors == []
    assert voucher.registration_date == date(2024, 1, 6)
    assert voucher.registration_sign == "AA"

    first, second = voucher.rows
    assert first.objects == [("1", "A B")]
    assert first.amount == Decimal("-250.00")
    assert first.transaction_date == date(2024, 1, 4)
    assert first.text == "Goods out"
    assert first.quantity == Decimal("10")
    assert first.registration_sign == "BB"

    # An unreadable row date falls back to the voucher date
    assert second.transaction_date == date(2024, 1, 5)


def test_row_without_object_list():
    """Test rows written by programs that leave the object list out."""
    sie_content = '''#VER A 1 20240101 ""
{
#TRANS 1910 500.00 20240101
#TRANS 3010 {1 "100" -500.00
}
'''

    result = parse(sie_content)
    rows = result.vouchers[0].rows

    assert rows[0].objects == []
    assert rows[0].amount == Decimal("500.00")
    assert rows[0].transaction_date == date(2024, 1, 1)
    assert len(result.errors) == 1
    assert result.errors[0].line_number == 4


def test_braces_in_row_text_are_not_an_object_list():
    """Test that a row without an object list keeps braces in its text."""
    sie_content = '''#VER A 1 20240101 ""
{
#TRANS 1910 500.00 20240102 "a {b}"
}
'''

    result = parse(sie_content)
    row = result.vouchers[0].rows[0]

    assert result.errors == []
    assert row.objects == []
    assert row.amount == Decimal("500.00")
    assert row.transaction_date == date(2024, 1, 2)
    assert row.text == "a {b}"


def test_unreadable_amount_is_recorded():
    sie_content = '''#KONTO 1910 Kassa
#IB 0 1910 1e3
'''

    result = parse(sie_content)

    assert result.accounts["1910"].opening_balance == Decimal("0")
    assert len(result.errors) == 1
    assert result.errors[0].line_number == 2


def test_bad_row_keeps_voucher():
    sie_content = '''#VER A 1 20240101 "x"
{
#TRANS 1910 {} 100.00
#TRANS 1910 {} abc
#TRANS 3010 {} -100.00
}
#KONTO 1910 Kassa
'''

    result = parse(sie_content)

    assert len(result.vouchers) == 1
    assert len(result.vouchers[0].rows) == 2
    assert len(result.errors) == 1
    assert result.errors[0].line_number == 4
    assert "1910" in result.accounts


def test_unterminated_voucher_block():
    sie_content = '''#VER A 1 20240101 "x"
{
#TRANS 1910 {} 100.00
'''

    result = parse(sie_content)

    assert len(result.vouchers) == 1
    assert len(result.vouchers[0].rows) == 1
    assert len(result.errors) == 1
    assert "closing brace" in str(result.errors[0])
    assert result.errors[0].line_number == 1


def test_row_outside_voucher():
    """Test that a #TRANS with no open voucher is a line error."""
    result = parse("#KONTO 1910 Kassa\n#TRANS 1910 {} 100.00\n")

    assert len(result.errors) == 1
    assert "outside a voucher" in str(result.errors[0])
    assert result.errors[0].line_number == 2


def test_bad_voucher_header_orphans_its_rows():
    sie_content = '''#VER A 1
{
#TRANS 1910 {} 100.00
}
'''

    result = parse(sie_content)

    assert result.vouchers == []
    assert [e.line_number for e in result.errors] == [1, 3]


def test_voucher_filter():
    sie_content = '''#VER A 1 20240101 ""
{
#TRANS 1910 {} 100.00
}
#VER B 1 20240101 ""
{
#TRANS 1910 {} 200.00
}
'''

    result = parse(sie_content, on_voucher=lambda voucher: voucher.series == "B")

    assert [v.series for v in result.vouchers] == ["B"]


# Entry points

def test_parse_error_format():
    error = SieParseError("Invalid SIE format", 5, "bad line\n")
    assert str(error) == "Line 5: Invalid SIE format ('bad line')"
    assert error.reason == "Invalid SIE format"
    assert str(SieParseError("No line")) == "No line"


def test_is_xml_content():
    assert sie_parser.is_xml_content('<?xml version="1.0"?>')
    assert sie_parser.is_xml_content(b'\xef\xbb\xbf  <Sie xmlns="http://www.sie.se/sie5">')
    assert not sie_parser.is_xml_content("#FLAGGA 0")
    assert not sie_parser.is_xml_content(b"")


def test_load_sie_binary_uses_cp437():
    stream = BytesIO('#FNAMN "Testföretag AB"\n'.encode('cp437'))

    result = sie_parser.load_sie(stream)

    assert result.company_name == "Testföretag AB"
    assert not stream.closed


def test_load_sie_restores_position_for_chosen_parser():
    stream = StringIO('#FNAMN "Acme AB"\n#KONTO 1910 Kassa\n')

    result = sie_parser.load_sie(stream)

    assert result.company_name == "Acme AB"
    assert "1910" in result.accounts


def test_load_sie_unseekable_stream():
    class Pipe:
        def __init__(self, data):
            self._data = data

        def read(self, size=-1):
            data, self._data = self._data, b""
            return data

    result = sie_parser.load_sie(Pipe(b'#FNAMN "Piped AB"\n'))

    assert result.company_name == "Piped AB"


def test_parse_sie_file_default_encoding():
    """Test that files are read as CP437 by default."""
    result = sie_parser.parse_sie_file(TEST_FILE_PATH)

    assert result.company_name == "Testföretag AB"
    assert result.accounts["3010"].name == "Försäljning"
    assert result.dimensions["1"].name == "Kostnadsställe"


def test_parse_sie_file_custom_encoding(tmp_path):
    path = tmp_path / "utf8.sie"
    path.write_text('#FNAMN "Testföretag AB"\n', encoding='utf-8')

    result = sie_parser.parse_sie_file(str(path), encoding='utf-8')

    assert result.company_name == "Testföretag AB"


def test_parse_sie_file_not_found():
    with pytest.raises(FileNotFoundError):
        sie_parser.parse_sie_file("does-not-exist.sie")


if __name__ == "__main__":
    pytest.main([__file__])
