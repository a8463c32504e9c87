"""
Ledger Sync - Main Entry Point

Usage:
    python main.py --env dev                         # All configured providers
    python main.py --provider bitso --context tcr    # One provider, TCR live scope
    python main.py --from 2024-03-01 --to 2024-03-15 --pages 3
    python main.py --provider bitso --follow         # Keep live updates on screen
"""

from __future__ import annotations
import asyncio
import argparse
import sys
from datetime import date
from typing import List, Optional

from rich.console import Console
from rich.live import Live

from config.config_manager import ConfigManager
from config.models import AppConfig
from src.application.bootstrap import LedgerSyncSession
from src.domain.events.event_types import EventType
from src.domain.exceptions import FatalError, RecoverableError
from src.models.movement import Provider
from src.models.page import StatementFilters
from src.models.subscription import Subscription, SubscriptionContext
from src.presentation.feed_table import render_feed_panel, render_status_line
from src.utils import StructuredLogger, set_log_timezone, shutdown_logging
from src.utils.structured_logger import LogCategory
from src.utils.logging_setup import setup_category_logging


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Unified ledger sync for BMP, BMP 531 and Bitso statements",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --env dev
  python main.py --provider bitso --provider bmp --pages 2
  python main.py --provider bitso --context otc --follow
        """
    )

    parser.add_argument(
        "--env",
        type=str,
        default="dev",
        help="Environment overlay to load from the config directory (default: dev)"
    )

    parser.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Directory holding base.yaml and environment overlays (default: config)"
    )

    parser.add_argument(
        "--provider",
        action="append",
        choices=[p.value for p in Provider],
        help="Provider to load (repeatable, default: statements.providers from config)"
    )

    # Live scope
    live_group = parser.add_argument_group("Realtime")
    live_group.add_argument(
        "--context",
        type=str,
        choices=[c.value for c in SubscriptionContext],
        help="Live event scope; omit to disable the realtime channel"
    )
    live_group.add_argument(
        "--tenant-id",
        type=int,
        help="Tenant for otc/tcr contexts (default: from config)"
    )
    live_group.add_argument(
        "--account-id",
        type=int,
        help="Account for the otc context (default: from config)"
    )
    live_group.add_argument(
        "--follow",
        action="store_true",
        help="Keep the channel open and re-render on every feed update (Ctrl-C to quit)"
    )

    # Statement range
    range_group = parser.add_argument_group("Statement")
    range_group.add_argument("--from", dest="date_from", type=_parse_date, help="First day YYYY-MM-DD")
    range_group.add_argument("--to", dest="date_to", type=_parse_date, help="Last day YYYY-MM-DD")
    range_group.add_argument(
        "--pages",
        type=int,
        default=1,
        help="Pages to load per provider before rendering (default: 1)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level for all categories)"
    )

    return parser.parse_args(argv)


def build_subscription(args: argparse.Namespace, config: AppConfig) -> Optional[Subscription]:
    """Subscription for the requested context, filling ids from config."""
    if not args.context:
        return None
    context = SubscriptionContext(args.context)
    contexts = config.contexts
    if context is SubscriptionContext.OTC:
        return Subscription(
            context,
            tenant_id=args.tenant_id if args.tenant_id is not None else int(contexts.otc_tenant_id),
            account_id=args.account_id if args.account_id is not None else int(contexts.otc_account_id),
        )
    if context is SubscriptionContext.TCR:
        return Subscription(
            context,
            tenant_id=args.tenant_id if args.tenant_id is not None else int(contexts.tcr_tenant_id),
        )
    return Subscription(context, tenant_id=args.tenant_id)


def render(session: LedgerSyncSession):
    merger = session.merger
    status = render_status_line(
        feed_size=len(merger.feed),
        unconfirmed=merger.unconfirmed_count,
        has_more=merger.has_more,
        stale=merger.stale,
        realtime_state=session.channel.state if session.channel else None,
    )
    title = f"Ledger ({', '.join(p.value for p in session.providers)})"
    return render_feed_panel(merger.feed, title=title, status=status)


async def follow(session: LedgerSyncSession, console: Console) -> None:
    """Re-render on every feed or connection update until cancelled."""
    changed = asyncio.Event()

    def on_change(_payload) -> None:
        changed.set()

    session.event_bus.subscribe(EventType.FEED_UPDATED, on_change)
    if session.channel is not None:
        session.channel.event_bus.subscribe(EventType.CONNECTION_STATE_CHANGED, on_change)

    with Live(render(session), console=console, refresh_per_second=4) as live:
        while True:
            await changed.wait()
            changed.clear()
            live.update(render(session))


async def main_async(args: argparse.Namespace) -> int:
    """Main async entry point."""
    config = ConfigManager(config_dir=args.config_dir, env=args.env).load()

    log_tz = config.logging.timezone
    if log_tz and log_tz.lower() != "local":
        set_log_timezone(log_tz)
    else:
        set_log_timezone(None)

    category_loggers = setup_category_logging(
        env=args.env,
        log_dir=config.logging.log_dir,
        level=config.logging.level,
        console=config.logging.console,
        verbose=args.verbose,
    )
    system_structured = StructuredLogger(category_loggers["system"])
    system_structured.info(LogCategory.SYSTEM, "Starting ledger sync", {"env": args.env})

    console = Console()
    providers = [Provider.parse(tag) for tag in args.provider] if args.provider else None
    session = LedgerSyncSession(
        config,
        providers=providers,
        subscription=build_subscription(args, config),
        filters=StatementFilters(date_from=args.date_from, date_to=args.date_to),
    )

    exit_code = 0
    try:
        try:
            await session.start(pages=args.pages)
        except RecoverableError as e:
            # Pages that loaded are still shown; the feed is marked stale
            system_structured.warning(LogCategory.STATEMENT, "Initial load incomplete", {"error": str(e)})
            console.print(f"[red]Load failed:[/red] {e}")
            exit_code = 2

        if args.follow:
            await follow(session, console)
        else:
            console.print(render(session))
    except asyncio.CancelledError:
        system_structured.info(LogCategory.SYSTEM, "Received shutdown signal")
    finally:
        await session.stop()
        system_structured.info(LogCategory.SYSTEM, "Ledger sync shutdown complete")
        shutdown_logging()
    return exit_code


def main() -> None:
    """Main entry point."""
    args = parse_args()
    if args.date_from and args.date_to and args.date_from > args.date_to:
        print("--from must not be after --to")
        sys.exit(2)

    try:
        sys.exit(asyncio.run(main_async(args)))
    except KeyboardInterrupt:
        print("Shutdown requested")
        sys.exit(0)
    except FatalError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)
    except FileNotFoundError as e:
        print(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
