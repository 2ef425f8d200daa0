"""
SwapMatch CLI - Command Line Interface for the swap auction engine

Main entry point for all CLI commands.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import click

from swapmatch.core.config import load_config
from swapmatch.utils.logger import setup_logging


def _open_engine(ctx):
    """Engine over the SQLite database in the data directory."""
    from swapmatch.core.engine import build_engine
    from swapmatch.core.storage import SQLiteRepository

    cfg = ctx.obj["config"]
    return build_engine(repository=SQLiteRepository(cfg.db_path), config=cfg)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default=None, help="Data directory (overrides SWAPMATCH_DATA_DIR)")
@click.option("--env-file", default=None, help="Path to a .env file")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, data_dir, env_file):
    """SwapMatch - auction and compatibility engine for booking swaps"""
    from pathlib import Path

    try:
        cfg = load_config(env_file)
    except ValueError as e:
        raise click.BadParameter(str(e))
    if data_dir:
        cfg.data_dir = Path(data_dir).expanduser()
    cfg.ensure_dirs()

    level = logging.DEBUG if debug else logging.INFO
    setup_logging(level=level, log_dir=cfg.log_dir)

    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
def demo():
    """Run an in-memory auction from listing to automatic resolution"""
    from swapmatch.core.collaborators import Booking
    from swapmatch.core.engine import build_engine

    now = [datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)]
    engine = build_engine(clock=lambda: now[0])
    directory = engine.bookings

    click.echo("=" * 60)
    click.echo("  SWAPMATCH - DEMO")
    click.echo("=" * 60)
    click.echo()

    click.echo("📦 Registering bookings...")
    event = now[0] + timedelta(days=30)
    owner_booking = directory.add(Booking(
        id="9a3e1c52-0000-4000-8000-000000000001", owner_id="olivia",
        location="Paris, France", check_in=event, check_out=event + timedelta(days=5),
        total_price=Decimal("1200"), accommodation_type="Boutique hotel", guests=2,
    ))
    directory.add(Booking(
        id="9a3e1c52-0000-4000-8000-000000000002", owner_id="alice",
        location="Montmartre, Paris", check_in=event + timedelta(days=40),
        check_out=event + timedelta(days=45), total_price=Decimal("1100"),
        accommodation_type="Apartment", guests=2,
    ))
    click.echo(f"  ✓ {len(directory)} bookings")
    click.echo()

    click.echo("🏷️  Olivia lists her booking and opens an auction...")
    swap = engine.swaps.create_swap("olivia", {
        "source_booking_id": owner_booking.id, "cash_accepted": True,
    }).value
    engine.swaps.publish_swap(swap.id, "olivia")
    created = engine.auctions.create_auction(swap.id, "olivia", {
        "end_date": (now[0] + timedelta(days=10)).isoformat(),
        "allow_cash_proposals": True,
        "minimum_cash_offer": "200",
        "auto_select_after_hours": 24,
    })
    if not created.ok:
        click.echo(f"❌ {created.error.message}")
        return
    auction = created.value
    click.echo(f"  ✓ Auction {auction.id[:8]} ends {auction.settings.end_date:%Y-%m-%d}")
    click.echo()

    click.echo("💶 Bids arrive...")
    for bidder, amount in (("alice", "250"), ("bob", "300"), ("carol", "150")):
        result = engine.auctions.submit_proposal(auction.id, bidder, {
            "proposal_type": "cash", "amount": amount, "currency": "EUR",
            "payment_method_id": f"pm-{bidder}", "escrow_agreement": True,
        })
        if result.ok:
            click.echo(f"  ✓ {bidder}: {amount} EUR accepted")
        else:
            click.echo(f"  ✗ {bidder}: {amount} EUR rejected ({result.code})")
    click.echo()

    click.echo("🔍 Compatibility of Olivia's swap with Alice's booking...")
    alice_swap = engine.swaps.create_swap("alice", {
        "source_booking_id": "9a3e1c52-0000-4000-8000-000000000002",
    }).value
    engine.swaps.publish_swap(alice_swap.id, "alice")
    analysis = engine.analysis.analyze(swap.id, alice_swap.id, "olivia")
    if analysis.ok:
        report = analysis.value
        click.echo(f"  ✓ Overall {report.overall_score} ({report.tier.value})")
        for name, factor in report.factors.items():
            click.echo(f"    {name:<14} {factor.score:>3}  {factor.details}")
    click.echo()

    click.echo("⏱️  Time passes: end date + 25 hours, sweeper runs...")
    now[0] = auction.settings.end_date + timedelta(hours=25)
    report = engine.sweeper.sweep()
    for resolution in report.resolved:
        click.echo(f"  ✓ Auction {resolution.auction_id[:8]}: {resolution.action.value}")
    click.echo()

    final = engine.repository.get_swap(swap.id)
    winner = engine.repository.get_proposal(final.accepted_proposal_id)
    click.echo("📊 Outcome:")
    click.echo(f"  Swap status: {final.status.value}")
    click.echo(f"  Counterpart: {final.counterpart_id}")
    click.echo(f"  Winning offer: {winner.cash_amount} {final.target_currency}")
    click.echo(f"  Notifications sent: {len(engine.notifier.sent)}")
    click.echo()
    click.echo("✅ Demo complete!")


# =============================================================================
# Sweeper Commands
# =============================================================================


@cli.command("sweep")
@click.pass_context
def sweep(ctx):
    """Resolve due auctions once"""
    engine = _open_engine(ctx)
    report = engine.sweeper.sweep()
    click.echo(f"Resolved: {len(report.resolved)}")
    for resolution in report.resolved:
        click.echo(f"  {resolution.auction_id}: {resolution.action.value}")
    for failure in report.failures:
        click.echo(f"❌ {failure.code}: {failure.message}")
    if not report.ok:
        ctx.exit(1)


@cli.command("watch")
@click.option("--interval", default=None, type=float, help="Seconds between sweeps")
@click.pass_context
def watch(ctx, interval):
    """Sweep periodically until interrupted"""
    engine = _open_engine(ctx)
    ticker = engine.periodic_sweeper(interval)
    ticker.start()
    click.echo(f"Sweeping every {ticker.interval}s. Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        ticker.stop()
        click.echo(f"\nStopped after {ticker.ticks} sweeps.")


# =============================================================================
# Inspection Commands
# =============================================================================


@cli.group()
def auctions():
    """Auction inspection commands"""
    pass


@auctions.command("list")
@click.option("--status", type=click.Choice(["active", "ended"]), default=None)
@click.pass_context
def auctions_list(ctx, status):
    """List auctions"""
    from swapmatch.core.auction import AuctionStatus

    engine = _open_engine(ctx)
    found = engine.repository.list_auctions(AuctionStatus(status) if status else None)
    if not found:
        click.echo("No auctions found.")
        return
    for auction in found:
        winner = auction.winning_proposal_id[:8] if auction.winning_proposal_id else "-"
        click.echo(
            f"  {auction.id[:8]}  {auction.status.value:<6}  "
            f"ends {auction.settings.end_date:%Y-%m-%d %H:%M}  winner {winner}"
        )


@cli.command("stats")
@click.pass_context
def stats(ctx):
    """Show auction statistics"""
    engine = _open_engine(ctx)
    click.echo("SwapMatch Statistics")
    click.echo("-" * 40)
    for key, value in engine.auctions.stats().items():
        click.echo(f"  {key}: {value}")


if __name__ == "__main__":
    cli()
