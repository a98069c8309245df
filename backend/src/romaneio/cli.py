"""
Resolver CLI - Resolve NFe access keys from the command line.

Usage:
    romaneio-resolve 35240114200166000187550010000000015123456789
    romaneio-resolve KEY --json --trace
    romaneio-resolve KEY --offline
"""

import argparse
import json
import logging
from collections.abc import Sequence

from romaneio.config import ResolverConfig, get_settings
from romaneio.domain.access_key import InvalidAccessKeyError, parse_access_key
from romaneio.services.resolver import ResolutionOrchestrator, ResolutionResult

EXIT_OK = 0
EXIT_INVALID_KEY = 2


def setup_logging(level: str = "WARNING") -> None:
    """Configure logging for the CLI."""
    log_level = getattr(logging, level.upper(), logging.WARNING)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
    )


def print_summary(result: ResolutionResult, trace: bool = False) -> None:
    """Human-readable summary of one resolution."""
    record = result.record

    print(f"\n{'=' * 70}")
    print(f"Access key: {parse_access_key(record.access_key).formatted}")
    print(f"{'=' * 70}")
    print(f"  Source:      {record.source_label}{' (synthetic)' if record.is_synthetic else ''}")
    print(f"  Note:        {record.resolution_note}")
    print(f"  Status:      {record.status.value}")
    print(f"  Issue date:  {record.issue_date_display}")
    print(f"  Number:      {record.document_number} (series {record.series or '-'})")
    print(f"  Issuer:      {record.issuer_name}")
    if record.issuer_tax_id:
        print(f"  Issuer CNPJ: {record.issuer_tax_id}")
    print(f"  Recipient:   {record.recipient_name}")
    print(f"  Address:     {record.recipient_address_display}")
    print(f"  Total:       R$ {record.total_value}")

    if record.line_items:
        print("\n" + "-" * 70)
        print("LINE ITEMS")
        print("-" * 70)
        for item in record.line_items:
            print(
                f"  {item.code:<10} {item.name[:30]:<30} {item.quantity:>6} x "
                f"{item.unit_value:>10} = {item.total_value:>10}"
            )
        if record.has_sum_mismatch:
            print(f"  Line items sum to {record.line_items_total}, invoice total is {record.total_value}")

    if trace:
        print("\n" + "-" * 70)
        print("ATTEMPTS")
        print("-" * 70)
        for attempt in result.attempts:
            reason = attempt.outcome.failure.value if attempt.outcome.failure else ""
            print(
                f"  {attempt.source:<15} {attempt.status:<11} {reason:<15} "
                f"{attempt.elapsed_ms:>8.0f}ms  {attempt.outcome.detail}"
            )


def to_json(result: ResolutionResult, trace: bool = False) -> dict:
    payload = {"state": result.state.value, "invoice": result.record.to_dict()}
    if trace:
        payload["attempts"] = [attempt.to_dict() for attempt in result.attempts]
    return payload


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="romaneio-resolve",
        description="Resolve NFe invoices from their 44-digit access keys",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Resolve through every enabled source
  romaneio-resolve 35240114200166000187550010000000015123456789

  # JSON output with the per-source attempt log
  romaneio-resolve KEY --json --trace

  # No network: exercise the deterministic fallback only
  romaneio-resolve KEY --offline
        """,
    )

    parser.add_argument(
        "keys",
        nargs="+",
        metavar="KEY",
        help="44-digit access key(s)",
    )
    parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Print the record as JSON",
    )
    parser.add_argument(
        "--trace", "-t",
        action="store_true",
        help="Show every source attempt",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Disable every live source",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    # Reject every malformed key before contacting anything
    for key in args.keys:
        try:
            parse_access_key(key)
        except InvalidAccessKeyError as e:
            print(f"Error: {e}")
            return EXIT_INVALID_KEY

    config = ResolverConfig.from_settings(get_settings())
    if args.offline:
        config = config.offline()

    results = []
    with ResolutionOrchestrator(config) as orchestrator:
        for key in args.keys:
            results.append(orchestrator.resolve_with_trace(key))

    if args.json:
        payloads = [to_json(result, args.trace) for result in results]
        print(json.dumps(payloads[0] if len(payloads) == 1 else payloads, indent=2, ensure_ascii=False))
    else:
        for result in results:
            print_summary(result, args.trace)

    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
