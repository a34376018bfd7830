"""
Structural comparison of two SIE documents.

Used to check that a document survives a write/read round trip. The check is
deliberately partial: it covers the header fields, account names and the
voucher headers, and reports every difference it finds rather than stopping
at the first one.

Example usage:
    from sie_compare import compare_documents

    differences = compare_documents(original, reread)
    if differences:
        print("\\n".join(differences))
"""

from typing import List

from sie_models import SieDocument
from sie_writer import canonical_voucher_order


def _compare_value(differences: List[str], field: str, value_a, value_b) -> None:
    if value_a == value_b:
        return
    differences.append(f"{field} differs: '{value_a}' vs '{value_b}'")


def _compare_header(differences: List[str], a: SieDocument, b: SieDocument) -> None:
    _compare_value(differences, "Format", a.format, b.format)
    _compare_value(differences, "CompanyName", a.company_name, b.company_name)


def _compare_accounts(differences: List[str], a: SieDocument, b: SieDocument) -> None:
    if len(a.accounts) != len(b.accounts):
        differences.append(f"Account count differs: {len(a.accounts)} vs {len(b.accounts)}")

    for number, account_a in a.accounts.items():
        account_b = b.accounts.get(number)
        if account_b is None:
            differences.append(f"Account {number} not found in B")
            continue
        _compare_value(differences, f"Account {number} Name", account_a.name, account_b.name)


def _compare_vouchers(differences: List[str], a: SieDocument, b: SieDocument) -> None:
    if len(a.vouchers) != len(b.vouchers):
        differences.append(f"Voucher count differs: {len(a.vouchers)} vs {len(b.vouchers)}")
        return

    # Both sides in written order, so a document lines up with its rewrite
    pairs = zip(canonical_voucher_order(a.vouchers), canonical_voucher_order(b.vouchers))
    for voucher_a, voucher_b in pairs:
        context = f"Voucher {voucher_a.series}{voucher_a.number}"
        _compare_value(differences, f"{context} Series", voucher_a.series, voucher_b.series)
        _compare_value(differences, f"{context} Number", voucher_a.number, voucher_b.number)
        _compare_value(differences, f"{context} Date", voucher_a.date, voucher_b.date)
        _compare_value(differences, f"{context} Text", voucher_a.text, voucher_b.text)


def compare_documents(a: SieDocument, b: SieDocument) -> List[str]:
    """
    Compare two documents.

    Vouchers are paired up after sorting each side by date (stable), the
    order ``write_sie`` emits them in, not by their position in each
    document. Two documents whose vouchers differ only in the order of
    vouchers with different dates therefore compare equal.

    Args:
        a: The reference document
        b: The document to check against it

    Returns:
        One human-readable line per difference, in the order found; an empty
        list when the compared fields are equal
    """
    differences: List[str] = []
    _compare_header(differences, a, b)
    _compare_accounts(differences, a, b)
    _compare_vouchers(differences, a, b)
    return differences


__all__ = ["compare_documents"]
