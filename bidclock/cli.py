import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Annotated, Optional
import os
import typer
from bidclock.db import RecordStore
from bidclock.scheduler import BidScheduler
from bidclock.settings import Settings, load_settings

if os.getenv("DEBUG_CLI", "0") == "1":
    import debugpy

    debugpy.listen(("0.0.0.0", 5679))
    if os.getenv("DEBUGPY_WAIT", "0") == "1":
        debugpy.wait_for_client()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s -- %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
# bid times are entered in local time, as shown on the venue's listing
DEADLINE_FORMATS = ["%m/%d/%Y %H:%M", "%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M:%S"]

log = logging.getLogger("bidclock")

app = typer.Typer(help="bidclock CLI")
accounts_app = typer.Typer(help="Manage venue accounts.")
auctions_app = typer.Typer(help="Manage tracked auctions.")
app.add_typer(accounts_app, name="accounts")
app.add_typer(auctions_app, name="auctions")


def _configure_logging(settings: Settings) -> None:
    level = settings.log_level
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=DATE_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)
    if not settings.logging.file:
        return
    log_path = Path(settings.logging.file).resolve()
    for handler in root.handlers:
        if getattr(handler, "baseFilename", None) == str(log_path):
            return
    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=settings.logging.max_bytes,
        backupCount=settings.logging.backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(file_handler)


def _store() -> RecordStore:
    return RecordStore(load_settings().db_url)


def _amount(raw: str) -> Decimal:
    try:
        value = Decimal(raw.strip().rstrip("%").replace("$", "").replace(",", ""))
    except InvalidOperation:
        raise typer.BadParameter(f"not a number: {raw!r}")
    if value < 0:
        raise typer.BadParameter("bid amount must not be negative")
    return value


def _local_to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.astimezone(timezone.utc)


@app.callback()
def main():
    """Timed bidding on venue auctions."""
    _configure_logging(load_settings())


# ---------------------------------------------------------------------------
# Bidding
# ---------------------------------------------------------------------------


async def _run(keep_open: bool, poll_seconds: float) -> None:
    settings = load_settings()
    bidder = BidScheduler(RecordStore(settings.db_url), settings)
    try:
        auctions = await bidder.schedule_all()
        placed = sum(1 for a in auctions if a.bid_placed_at)
        print(f"{len(bidder.pending)} bid(s) scheduled, {placed} auction(s) with a placed bid")
        while keep_open or bidder.pending:
            await asyncio.sleep(poll_seconds)
    finally:
        await bidder.shutdown()


@app.command()
def run(
    keep_open: Annotated[
        bool, typer.Option("--keep-open", help="Keep browsers open until Ctrl+C.")
    ] = False,
    poll_seconds: Annotated[float, typer.Option("--poll", help="Wait-loop interval.")] = 1.0,
):
    """Schedule every bid and wait for them to fire."""
    try:
        asyncio.run(_run(keep_open, poll_seconds))
    except KeyboardInterrupt:
        print("Interrupted, pending bids canceled")


@app.command()
def serve(
    host: Annotated[str, typer.Option(help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Bind port.")] = 8000,
):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("bidclock.web.app:app", host=host, port=port)


@app.command("export")
def export_records(path: Annotated[Path, typer.Argument(help="Target JSON file.")]):
    """Save all accounts and auctions to a JSON file."""
    count = _store().export_json(path)
    print(f"Saved {count} record(s) to {path}")


@app.command("import")
def import_records(
    path: Annotated[
        Path, typer.Argument(exists=True, dir_okay=False, help="JSON file from export.")
    ],
):
    """Replace all accounts and auctions with the contents of a JSON file."""
    if not _store().import_json(path):
        raise typer.Exit(code=1)
    print(f"Imported records from {path}")


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@accounts_app.command("ls")
def accounts_ls():
    """List accounts (passwords are not shown)."""
    accounts, _ = _store().load_records()
    for acct in accounts:
        print(f"{acct.id:>4} | {acct.username}")


@accounts_app.command("add")
def accounts_add(
    username: Annotated[str, typer.Argument(help="Venue login.")],
    password: Annotated[
        str, typer.Option(prompt=True, hide_input=True, help="Venue password.")
    ],
):
    """Add an account."""
    try:
        acct = _store().add_account(username, password)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    print(f"Added account {acct.id}: {acct.username}")


@accounts_app.command("rm")
def accounts_rm(account_id: Annotated[int, typer.Argument(help="Account id.")]):
    """Remove an account."""
    if not _store().remove_account(account_id):
        print(f"No account {account_id}")
        raise typer.Exit(code=1)
    print(f"Removed account {account_id}")


# ---------------------------------------------------------------------------
# Auctions
# ---------------------------------------------------------------------------


@auctions_app.command("ls")
def auctions_ls():
    """List auctions with bid time, amount, account and outcome."""
    _, auctions = _store().load_records()
    for a in auctions:
        when = a.deadline.astimezone().strftime("%m/%d/%Y %H:%M") if a.deadline else "—"
        placed = a.bid_placed_at.astimezone().strftime("%m/%d/%Y %H:%M:%S") if a.bid_placed_at else "—"
        print(
            f"{a.id:>4} | {a.external_ref:16} | {when:16} | ${a.bid_amount:>10,.2f} | "
            f"{a.account_username or '—':16} | {placed}"
        )


@auctions_app.command("add")
def auctions_add(
    external_ref: Annotated[str, typer.Argument(help="Venue reference, e.g. 'stg/1234'.")],
    deadline: Annotated[
        Optional[datetime],
        typer.Option("--at", formats=DEADLINE_FORMATS, help="Bid time (local)."),
    ] = None,
    amount: Annotated[str, typer.Option("--amount", "-a", help="Bid amount.")] = "0",
    account: Annotated[str, typer.Option("--account", "-u", help="Owning username.")] = "",
    address: Annotated[str, typer.Option(help="Property address.")] = "",
):
    """Track a new auction."""
    try:
        row = _store().add_auction(
            external_ref,
            deadline=_local_to_utc(deadline),
            bid_amount=_amount(amount),
            address=address,
            account_username=account,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    print(f"Added auction {row.id}: {row.external_ref}")


@auctions_app.command("bid")
def auctions_bid(
    auction_id: Annotated[int, typer.Argument(help="Auction id.")],
    amount: Annotated[str, typer.Argument(help="New bid amount.")],
):
    """Change the bid amount of an auction."""
    row = _store().set_bid_amount(auction_id, _amount(amount))
    if row is None:
        print(f"No auction {auction_id}")
        raise typer.Exit(code=1)
    print(f"Auction {auction_id} will bid ${row.bid_amount:,.2f}")


@auctions_app.command("rm")
def auctions_rm(auction_id: Annotated[int, typer.Argument(help="Auction id.")]):
    """Stop tracking an auction."""
    if not _store().remove_auction(auction_id):
        print(f"No auction {auction_id}")
        raise typer.Exit(code=1)
    print(f"Removed auction {auction_id}")


if __name__ == "__main__":
    app()
