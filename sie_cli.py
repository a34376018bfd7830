#!/usr/bin/env python3
"""
SIE CLI - Command line interface for SIE file analysis.

Lists accounts and vouchers from SIE files (optionally as CSV), checks that
files parse cleanly and survive a write/read round trip, and rewrites files
in canonical form.
"""

import argparse
import csv
import io
import logging
import os
import sys
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterator, List

import sie_parser
import sie_settings
from sie_compare import compare_documents
from sie_models import SieDocument
from sie_writer import write_sie, write_sie_file

SIE_EXTENSIONS = ('.se', '.si', '.sie')


def _account_balances(sie_data: SieDocument) -> Dict[str, Decimal]:
    """Opening balance plus all voucher rows, per account."""
    balances: Dict[str, Decimal] = defaultdict(Decimal)
    for number, account in sie_data.accounts.items():
        balances[number] += account.opening_balance
    for voucher in sie_data.vouchers:
        for row in voucher.rows:
            balances[row.account_number] += row.amount
    return balances


def list_accounts(sie_data: SieDocument, non_zero_only: bool = False, csv_output: bool = False) -> None:
    """List accounts with their balances and types."""
    account_balances = _account_balances(sie_data)

    account_data = []
    for account_number, account in sie_data.accounts.items():
        balance = account_balances.get(account_number, Decimal(0))

        # Skip zero balance accounts if requested
        if non_zero_only and balance == 0:
            continue

        account_data.append({
            'number': account_number,
            'name': account.name,
            'type': account.type.name if account.type else '',
            'balance': balance,
            'normal_balance': account.normal_balance,
            'sru_code': account.sru_code or ''
        })

    # Sort by account number
    account_data.sort(key=lambda x: x['number'])

    if csv_output:
        writer = csv.DictWriter(sys.stdout, fieldnames=['number', 'name', 'type', 'balance', 'normal_balance', 'sru_code'])
        writer.writeheader()
        writer.writerows(account_data)
    else:
        print(f"{'Account':<10} {'Name':<30} {'Type':<10} {'Balance':<15} {'Normal':<8} {'SRU':<8}")
        print("-" * 85)
        for account in account_data:
            print(f"{account['number']:<10} {account['name']:<30} {account['type']:<10} "
                  f"{account['balance']:>15.2f} {account['normal_balance']:<8} {account['sru_code']:<8}")

        print(f"\nTotal accounts: {len(account_data)}")


def show_summary(sie_data: SieDocument, csv_output: bool = False) -> None:
    """Show a summary of the SIE file."""
    account_balances = _account_balances(sie_data)
    non_zero_accounts = sum(1 for number, balance in account_balances.items()
                            if number in sie_data.accounts and balance != 0)

    period_start = period_end = ''
    current_year = sie_data.find_booking_year(0)
    if current_year is not None:
        period_start = current_year.start_date.isoformat()
        period_end = current_year.end_date.isoformat()

    summary_data = {
        'company_name': sie_data.company_name,
        'registration_number': sie_data.registration_number,
        'period_start': period_start,
        'period_end': period_end,
        'file_format': sie_data.format,
        'sie_type': sie_data.sie_type,
        'currency': sie_data.currency,
        'program': f"{sie_data.program_name} {sie_data.program_version}".strip(),
        'generation_date': sie_data.generation_date.isoformat() if sie_data.generation_date else '',
        'contact_person': sie_data.contact_person,
        'address_line1': sie_data.address_line1,
        'address_line2': sie_data.address_line2,
        'phone': sie_data.phone,
        'total_accounts': len(sie_data.accounts),
        'non_zero_accounts': non_zero_accounts,
        'total_rows': sum(len(v.rows) for v in sie_data.vouchers),
        'total_vouchers': len(sie_data.vouchers),
        'balanced_vouchers': sum(1 for v in sie_data.vouchers if v.balance == 0),
        'booking_years': len(sie_data.booking_years),
        'dimensions': len(sie_data.dimensions),
        'objects': sum(len(d.objects) for d in sie_data.dimensions.values()),
        'errors': len(sie_data.errors),
    }

    if csv_output:
        writer = csv.DictWriter(sys.stdout, fieldnames=summary_data.keys())
        writer.writeheader()
        writer.writerow(summary_data)
    else:
        print("SIE File Summary")
        print("=" * 50)
        print()

        # Company Information
        print("Company Information:")
        print(f"  Name: {summary_data['company_name']}")
        print(f"  ID: {summary_data['registration_number']}")
        print(f"  Period: {summary_data['period_start']} - {summary_data['period_end']}")
        if summary_data['currency']:
            print(f"  Currency: {summary_data['currency']}")
        print()

        # Contact Information
        if any([summary_data['contact_person'], summary_data['address_line1'], summary_data['phone']]):
            print("Contact Information:")
            if summary_data['contact_person']:
                print(f"  Contact: {summary_data['contact_person']}")
            if summary_data['address_line1']:
                print(f"  Address: {summary_data['address_line1']}")
            if summary_data['address_line2']:
                print(f"           {summary_data['address_line2']}")
            if summary_data['phone']:
                print(f"  Phone: {summary_data['phone']}")
            print()

        # File Information
        print("File Information:")
        print(f"  Format: {summary_data['file_format']}")
        print(f"  SIE Type: {summary_data['sie_type']}")
        if summary_data['program']:
            print(f"  Generated by: {summary_data['program']}")
        if summary_data['generation_date']:
            print(f"  Generated on: {summary_data['generation_date']}")
        print()

        # Data Summary
        print("Data Summary:")
        print(f"  Total Accounts: {summary_data['total_accounts']}")
        print(f"  Non-zero Accounts: {summary_data['non_zero_accounts']}")
        print(f"  Total Transactions: {summary_data['total_rows']}")
        print(f"  Total Vouchers: {summary_data['total_vouchers']}")
        print(f"  Balanced Vouchers: {summary_data['balanced_vouchers']}/{summary_data['total_vouchers']}")

        if summary_data['booking_years'] > 0:
            print(f"  Booking Years: {summary_data['booking_years']}")
        if summary_data['dimensions'] > 0:
            print(f"  Dimensions: {summary_data['dimensions']}")
        if summary_data['objects'] > 0:
            print(f"  Dimension Objects: {summary_data['objects']}")
        if summary_data['errors'] > 0:
            print(f"  Parse Errors: {summary_data['errors']}")


def list_vouchers(sie_data: SieDocument, csv_output: bool = False) -> None:
    """List all vouchers with their row summaries."""
    voucher_data = []
    for voucher in sie_data.vouchers:
        voucher_data.append({
            'voucher': f"{voucher.series}{voucher.number}",
            'date': voucher.date.isoformat(),
            'description': voucher.text,
            'transactions': len(voucher.rows),
            'total_amount': sum((abs(row.amount) for row in voucher.rows), Decimal(0)),
            'balance': voucher.balance,
            'balanced': 'Yes' if voucher.balance == 0 else 'No'
        })

    if csv_output:
        writer = csv.DictWriter(sys.stdout, fieldnames=['voucher', 'date', 'description', 'transactions', 'total_amount', 'balance', 'balanced'])
        writer.writeheader()
        writer.writerows(voucher_data)
    else:
        print(f"{'Voucher':<10} {'Date':<10} {'Description':<25} {'Trans':<6} {'Amount':<12} {'Balance':<12} {'Bal?':<5}")
        print("-" * 85)
        for voucher in voucher_data:
            print(f"{voucher['voucher']:<10} {voucher['date']:<10} {voucher['description']:<25} "
                  f"{voucher['transactions']:>6} {voucher['total_amount']:>12.2f} "
                  f"{voucher['balance']:>12.2f} {voucher['balanced']:<5}")

        print(f"\nTotal vouchers: {len(voucher_data)}")
        balanced_count = sum(1 for v in voucher_data if v['balanced'] == 'Yes')
        print(f"Balanced vouchers: {balanced_count}/{len(voucher_data)}")


def find_sie_files(paths: List[str]) -> Iterator[str]:
    """Yield the given files, and every SIE file below the given directories."""
    for path in paths:
        if not os.path.isdir(path):
            yield path
            continue
        for root, _, files in os.walk(path):
            for name in sorted(files):
                if name.lower().endswith(SIE_EXTENSIONS):
                    yield os.path.join(root, name)


def check_file(file_path: str, encoding: str = None) -> bool:
    """Parse a file, round-trip it through the writer and report the outcome."""
    print(f"--- Testing: {os.path.basename(file_path)} ---")
    success = True

    sie_data = sie_parser.parse_sie_file(file_path, encoding=encoding)
    if sie_data.errors:
        print("  Parsing Errors: FAILED")
        for error in sie_data.errors:
            print(f"  - {error}")
        success = False
    else:
        print("  Parsing Errors: SUCCESS (None found)")
        print(f"  Accounts: {len(sie_data.accounts)}, Vouchers: {len(sie_data.vouchers)}")

    buffer = io.StringIO()
    write_sie(sie_data, buffer)
    buffer.seek(0)
    differences = compare_documents(sie_data, sie_parser.parse_sie(buffer))
    if differences:
        print("  Round-trip: FAILED")
        for difference in differences:
            print(f"  - {difference}")
        success = False
    else:
        print("  Round-trip: SUCCESS")

    print()
    return success


def check_files(paths: List[str], encoding: str = None) -> bool:
    failed = []
    files = list(find_sie_files(paths))
    print(f"Found {len(files)} test files.\n")
    for file_path in files:
        if not check_file(file_path, encoding=encoding):
            failed.append(file_path)

    print("-" * 50)
    if failed:
        print(f"Result: {len(failed)} tests failed.")
        for file_path in failed:
            print(f" - {os.path.basename(file_path)}")
        return False
    print("Result: All tests passed!")
    return True


def main(argv: List[str] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="SIE file analyzer - List, check and rewrite Swedish SIE accounting files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s summary file.sie                    # Show file summary
  %(prog)s accounts file.sie                   # List all accounts
  %(prog)s accounts file.sie --non-zero        # List only accounts with balances
  %(prog)s vouchers file.sie --csv             # Output vouchers as CSV
  %(prog)s check sie_test_files/               # Parse and round-trip every file
  %(prog)s rewrite in.sie out.sie              # Write canonical SIE
        """
    )

    parser.add_argument('command', choices=['accounts', 'vouchers', 'summary', 'check', 'rewrite'],
                        help='Command to execute')
    parser.add_argument('paths', nargs='+', metavar='file',
                        help='SIE file(s) to analyze; directories for check; input and output for rewrite')
    parser.add_argument('--csv', action='store_true',
                        help='Output in CSV format')
    parser.add_argument('--non-zero', action='store_true',
                        help='For accounts: only show accounts with non-zero balances')
    parser.add_argument('--encoding', default=sie_settings.ENCODING,
                        help=f'File encoding (default: {sie_settings.ENCODING} per SIE specification)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Log debug output to stderr')

    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else getattr(logging, sie_settings.LOG_LEVEL, logging.WARNING)
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s')

    if args.command == 'rewrite' and len(args.paths) != 2:
        parser.error("rewrite needs an input and an output file")

    try:
        if args.command == 'check':
            if not check_files(args.paths, encoding=args.encoding):
                sys.exit(1)
            return

        # Parse the SIE file
        sie_data = sie_parser.parse_sie_file(args.paths[0], encoding=args.encoding)

        # Execute the requested command
        if args.command == 'accounts':
            list_accounts(sie_data, non_zero_only=args.non_zero, csv_output=args.csv)
        elif args.command == 'vouchers':
            list_vouchers(sie_data, csv_output=args.csv)
        elif args.command == 'summary':
            show_summary(sie_data, csv_output=args.csv)
        elif args.command == 'rewrite':
            write_sie_file(sie_data, args.paths[1], encoding=args.encoding)
            for error in sie_data.errors:
                print(f"Warning: {error}", file=sys.stderr)

    except FileNotFoundError as e:
        print(f"Error: File '{e.filename or args.paths[0]}' not found", file=sys.stderr)
        sys.exit(1)
    except sie_parser.SieParseError as e:
        print(f"Error parsing SIE file: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
