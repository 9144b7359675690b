#!/usr/bin/env python3
"""
Command-line entry point for billing operations.

Usage:
    python3 scripts/billing_cli.py [--config FILE] [--db-url URL] <command> [options]

Commands:
    init-db                       Create all tables.
    tick                          Run the recurring tick once (needs the trigger secret).
    serve                         Run the polling scheduler until interrupted.
    run-now TEMPLATE_ID           Run one recurring template immediately.
    emit DOCUMENT_ID              Emit a DRAFT quote, invoice or credit note.
    preview-number TYPE [--year]  Show the next number without consuming it.
    reset-sequence TYPE VALUE     Administrative counter reset (logged and audited).

Examples:
    # Cron: CRON_SECRET must match the --authorization header value
    python3 scripts/billing_cli.py tick --authorization "Bearer $CRON_SECRET"

    python3 scripts/billing_cli.py preview-number INVOICE --year 2026
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DOC_TYPES = ("QUOTE", "INVOICE", "CREDIT_NOTE", "PURCHASE_INVOICE")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Billing kernel and recurring invoice operations.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML file overlaying the defaults.")
    parser.add_argument("--db-url", default=None, help="Database URL (default: database_url from config).")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables.")

    tick = sub.add_parser("tick", help="Run the recurring tick once.")
    tick.add_argument("--authorization", default=None, help='Header value, "Bearer <secret>".')

    sub.add_parser("serve", help="Run the polling scheduler until interrupted.")

    run_now = sub.add_parser("run-now", help="Run one recurring template immediately.")
    run_now.add_argument("template_id", type=UUID)

    emit = sub.add_parser("emit", help="Emit a DRAFT document.")
    emit.add_argument("document_id", type=UUID)

    preview = sub.add_parser("preview-number", help="Show the next number for a sequence.")
    preview.add_argument("doc_type", choices=DOC_TYPES)
    preview.add_argument("--year", type=int, default=None)

    reset = sub.add_parser("reset-sequence", help="Set a counter (administrative).")
    reset.add_argument("doc_type", choices=DOC_TYPES)
    reset.add_argument("value", type=int)
    reset.add_argument("--year", type=int, default=None)
    reset.add_argument("--yes", action="store_true", help="Confirm the reset.")

    return parser.parse_args(argv)


def _print_tick(result) -> None:
    print(f"Processed: {result.processed_count}")
    for item in result.results:
        line = f"  {item.template_name} [{item.template_id}]: {item.status.value}"
        if item.invoice_number:
            line += f" {item.invoice_number}"
        if item.error_message:
            line += f" ({item.error_message})"
        print(line)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Lazy imports so we fail fast on args first
    import yaml

    from billing_config import get_active_config
    from billing_config.bridges import build_runner_settings, trigger_secret
    from billing_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
        run_in_transaction,
    )
    from billing_kernel.domain.clock import SystemClock
    from billing_kernel.domain.numbering import DocType
    from billing_kernel.exceptions import BillingKernelError
    from billing_kernel.selectors.document_selector import DocumentSelector
    from billing_kernel.services.auditor_service import AuditorService
    from billing_kernel.services.lifecycle_service import DocumentLifecycleService
    from billing_kernel.services.party_service import load_tenant_context
    from billing_kernel.services.sequence_service import SequenceService
    import billing_recurring.models  # noqa: F401
    from billing_recurring.domain.types import TickResult
    from billing_recurring.services.runner import RecurringRunner
    from billing_recurring.services.scheduler import RecurringScheduler, verify_trigger_secret

    try:
        config = get_active_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    init_engine_from_url(args.db_url or config.database_url)
    session_factory = get_session_factory()
    clock = SystemClock()

    def transaction(work):
        return run_in_transaction(
            work, session_factory, max_attempts=config.transactions.max_attempts
        )

    def runner() -> RecurringRunner:
        # No renderer or sender is wired here; send-mode runs record FAILED
        # with COLLABORATOR_NOT_CONFIGURED until a deployment injects them.
        return RecurringRunner(session_factory, clock, settings=build_runner_settings(config))

    try:
        if args.command == "init-db":
            create_tables()
            print("Tables created.")

        elif args.command == "tick":
            verify_trigger_secret(args.authorization, trigger_secret(config))
            _print_tick(RecurringScheduler(runner(), clock).run_tick())

        elif args.command == "serve":
            scheduler = RecurringScheduler(
                runner(), clock, config.scheduler.tick_interval_seconds
            )
            scheduler.start()
            print("Scheduler running; Ctrl-C to stop.")
            try:
                while scheduler.is_running:
                    time.sleep(1.0)
            except KeyboardInterrupt:
                scheduler.stop()

        elif args.command == "run-now":
            result = runner().run_template_now(args.template_id)
            _print_tick(TickResult(1, (result,), clock.now()))
            return 0 if result.error_message is None else 2

        elif args.command == "emit":
            def work(session):
                tenant = load_tenant_context(session)
                return DocumentLifecycleService(
                    session,
                    tenant,
                    clock,
                    auditor=AuditorService(session, clock),
                    default_payment_terms_days=config.default_payment_terms_days,
                ).emit_document(args.document_id)

            document = transaction(work)
            print(f"Emitted {document.kind.value} {document.reference}")

        elif args.command == "preview-number":
            year = args.year or clock.today().year

            def work(session):
                tenant = load_tenant_context(session)
                preview = SequenceService(session).preview_next(
                    tenant.tenant_id, year, DocType(args.doc_type)
                )
                overview = DocumentSelector(session).numbering_overview(tenant.tenant_id, year)
                return preview, overview

            preview, overview = transaction(work)
            print(f"Next {args.doc_type} number: {preview}")
            for counter in overview:
                print(f"  {counter.doc_type.value}: {counter.current_number} (next {counter.next_formatted})")

        elif args.command == "reset-sequence":
            if not args.yes:
                print("Refusing to reset without --yes.", file=sys.stderr)
                return 1
            year = args.year or clock.today().year

            def work(session):
                tenant = load_tenant_context(session)
                return SequenceService(session, AuditorService(session, clock)).reset(
                    tenant.tenant_id, year, DocType(args.doc_type), args.value
                )

            result = transaction(work)
            print(f"{result.doc_type.value} {year}: {result.previous_number} -> {result.new_number}")
            if result.conflicting_references:
                print("WARNING: these numbers will be handed out again:")
                for reference in result.conflicting_references:
                    print(f"  {reference}")

    except BillingKernelError as e:
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
