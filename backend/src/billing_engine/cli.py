"""Command line trigger for billing runs, meant for cron or one-off admin use."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import date

from pydantic import BaseModel

from .config import configure_logging, get_settings
from .models import InvoiceStatus
from .seed import seed_demo_data
from .services import BillingServices, build_services
from .store import InMemoryBillingStore, InvoiceNotFoundError


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from exc


def _parse_status(value: str) -> InvoiceStatus:
    try:
        return InvoiceStatus.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="billing-engine", description="Recurring invoice billing runs.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the scheduled billing for a date (default: today).")
    run.add_argument("--date", dest="run_date", type=_parse_date, default=None)

    bill_status = subparsers.add_parser("bill-status", help="Charge every invoice in one status.")
    bill_status.add_argument("status", type=_parse_status)

    bill_invoice = subparsers.add_parser("bill-invoice", help="Charge a single invoice.")
    bill_invoice.add_argument("invoice_id", type=int)

    sweep = subparsers.add_parser("sweep", help="Mark every invoice in one failure status as permanent fail.")
    sweep.add_argument("status", type=_parse_status)

    seed = subparsers.add_parser(
        "seed",
        help="Create demo customers and invoices in the postgres store (INVOICE_STORE_BACKEND=postgres).",
    )
    seed.add_argument("--customers", type=int, default=100)
    seed.add_argument("--invoices-per-customer", type=int, default=10)
    seed.add_argument("--seed", type=int, default=None)
    return parser


def _emit(model: BaseModel) -> None:
    print(json.dumps(model.model_dump(mode="json"), indent=2, sort_keys=True))


def run_command(args: argparse.Namespace, services: BillingServices) -> int:
    orchestrator = services.orchestrator
    if args.command == "run":
        coro = orchestrator.run_for_date(args.run_date) if args.run_date else orchestrator.run_today()
        _emit(asyncio.run(coro).to_model())
        return 0
    if args.command == "bill-status":
        try:
            report = asyncio.run(orchestrator.charge_all(args.status))
        except ValueError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 2
        _emit(report.to_model())
        return 0
    if args.command == "bill-invoice":
        try:
            attempt = asyncio.run(orchestrator.charge_one(args.invoice_id))
        except InvoiceNotFoundError:
            print(f"error: invoice not found: {args.invoice_id}", file=sys.stderr)
            return 1
        except ValueError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 2
        _emit(attempt.to_model())
        return 0
    if args.command == "sweep":
        try:
            sweep_report = orchestrator.sweep_permanent_failures(args.status)
        except ValueError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 2
        _emit(sweep_report.to_model())
        return 0
    if args.command == "seed":
        if isinstance(services.store, InMemoryBillingStore):
            print("error: seeding needs a persistent store, set INVOICE_STORE_BACKEND=postgres", file=sys.stderr)
            return 2
        created = seed_demo_data(
            services.store,
            customers=args.customers,
            invoices_per_customer=args.invoices_per_customer,
            seed=args.seed,
        )
        print(json.dumps({"invoices_created": created}))
        return 0
    raise ValueError(f"unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)
    return run_command(args, build_services(settings))


if __name__ == "__main__":
    raise SystemExit(main())
