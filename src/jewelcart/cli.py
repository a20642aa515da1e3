"""Command-line interface for jewelcart."""

import argparse
import json
import logging
import sys
import time
from datetime import timedelta

from dotenv import load_dotenv

from . import __version__
from .config import AppConfig
from .errors import JewelcartError
from .fulfillment import FulfillmentService
from .models import MessageStatus

# Records left in "processing" this long are assumed abandoned by a dead worker.
STALE_AFTER = timedelta(minutes=10)


def get_service() -> FulfillmentService:
    """Build the FulfillmentService from the environment."""
    return FulfillmentService.from_config(AppConfig.from_env())


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_init(args: argparse.Namespace) -> int:
    """Create the settings document and seed default templates."""
    try:
        service = get_service()
        settings = service.settings.ensure()

        changed = False
        if args.shipping_fee is not None:
            settings.standard_shipping_fee = args.shipping_fee
            changed = True
        if args.free_threshold is not None:
            settings.free_shipping_threshold = args.free_threshold
            changed = True
        if args.company_name:
            settings.company_name = args.company_name
            changed = True
        if changed:
            settings = service.settings.save(settings)

        seeded = service.templates.seed_defaults()

        print(f"Initialized jewelcart at {service.config.data_dir}")
        print(f"Shipping fee: ${settings.standard_shipping_fee:.2f}")
        print(f"Free shipping from: ${settings.free_shipping_threshold:.2f}")
        if seeded:
            print(f"Seeded templates: {', '.join(seeded)}")
        return 0

    except JewelcartError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn

        configure_logging(args.log_level)
        print("Starting jewelcart API server...")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app as an import string
        app_target = "jewelcart.api:app" if args.reload else None
        if app_target is None:
            from .api import app
            app_target = app

        uvicorn.run(
            app_target,
            host=args.host,
            port=args.port,
            reload=args.reload,
            workers=1,  # The drain lock is per process
        )
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_worker(args: argparse.Namespace) -> int:
    """Drain the outbound queue on an interval."""
    configure_logging(args.log_level)
    logger = logging.getLogger("jewelcart.worker")
    try:
        service = get_service()
        service.startup()
    except JewelcartError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.info("Worker started (interval=%.1fs, delay=%dms)", args.interval, service.config.bulk_delay_ms)
    try:
        while True:
            service.queue.recover_stale(STALE_AFTER)
            report = service.dispatch_bulk()
            if args.once:
                if report is not None:
                    print(
                        f"Sent {len(report.sent)}, failed {len(report.failed)}, "
                        f"rescheduled {len(report.retrying)}"
                    )
                return 0
            time.sleep(args.interval)
    except KeyboardInterrupt:
        logger.info("Worker stopped")
        return 0
    except JewelcartError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_queue_list(args: argparse.Namespace) -> int:
    """List queued messages."""
    try:
        service = get_service()
        status = MessageStatus(args.status) if args.status else None
        messages = service.queue.list_messages(status=status, limit=args.limit)

        if args.json:
            print(json.dumps([m.to_dict() for m in messages], indent=2))
            return 0

        if not messages:
            print("No queued messages.")
            return 0

        print(f"Messages ({len(messages)}):")
        print()
        for m in messages:
            print(f"  {m.id[:8]}  [{m.status.value}] {m.category.value}  -> {m.to}")
            print(f"           {m.subject}")
            if m.last_error:
                print(f"           attempts={m.attempts} error={m.last_error}")
            print()
        return 0

    except JewelcartError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_queue_retry(args: argparse.Namespace) -> int:
    """Reset a failed message to pending."""
    try:
        service = get_service()
        message = service.queue.retry(args.message_id)
        print(f"Requeued message: {message.id[:8]} -> {message.to}")
        return 0

    except JewelcartError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_templates_list(args: argparse.Namespace) -> int:
    """List stored templates."""
    try:
        service = get_service()
        templates = service.templates.list_templates()

        if args.json:
            print(json.dumps([t.to_dict() for t in templates], indent=2))
            return 0

        if not templates:
            print("No templates stored.")
            print("Seed the defaults with: jewelcart init")
            return 0

        print(f"Templates ({len(templates)}):")
        for t in templates:
            print(f"  {t.name:<20} [{t.type.value}] {t.subject}")
        return 0

    except JewelcartError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="jewelcart",
        description="Order fulfillment and customer messaging for the jewelry storefront.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for serve/worker (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init
    init_parser = subparsers.add_parser("init", help="Create settings and seed default templates")
    init_parser.add_argument("--shipping-fee", type=float, help="Standard shipping fee")
    init_parser.add_argument(
        "--free-threshold", type=float, help="Subtotal from which shipping is free"
    )
    init_parser.add_argument("--company-name", help="Company name used in emails")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", "-p", type=int, default=8000, help="Port to bind to (default: 8000)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    # worker
    worker_parser = subparsers.add_parser("worker", help="Deliver queued email on an interval")
    worker_parser.add_argument(
        "--interval", "-i", type=float, default=30.0,
        help="Seconds between drain passes (default: 30)"
    )
    worker_parser.add_argument(
        "--once", action="store_true", help="Run a single drain pass and exit"
    )

    # queue (subcommand group)
    queue_parser = subparsers.add_parser("queue", help="Inspect the outbound email queue")
    queue_subparsers = queue_parser.add_subparsers(dest="queue_command")

    queue_list_parser = queue_subparsers.add_parser("list", help="List queued messages")
    queue_list_parser.add_argument(
        "--status", "-s", choices=[s.value for s in MessageStatus], help="Filter by status"
    )
    queue_list_parser.add_argument("--limit", "-n", type=int, default=50)
    queue_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    queue_retry_parser = queue_subparsers.add_parser("retry", help="Requeue a failed message")
    queue_retry_parser.add_argument("message_id", help="Message ID")

    # templates (subcommand group)
    templates_parser = subparsers.add_parser("templates", help="Manage message templates")
    templates_subparsers = templates_parser.add_subparsers(dest="templates_command")

    templates_list_parser = templates_subparsers.add_parser("list", help="List templates")
    templates_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    load_dotenv()
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    # Handle queue subcommands
    if args.command == "queue":
        if not args.queue_command:
            parser.parse_args(["queue", "--help"])
            return 0
        if args.queue_command == "list":
            return cmd_queue_list(args)
        elif args.queue_command == "retry":
            return cmd_queue_retry(args)

    # Handle templates subcommands
    if args.command == "templates":
        if not args.templates_command:
            parser.parse_args(["templates", "--help"])
            return 0
        if args.templates_command == "list":
            return cmd_templates_list(args)

    commands = {
        "init": cmd_init,
        "serve": cmd_serve,
        "worker": cmd_worker,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
