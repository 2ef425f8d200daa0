"""
SQLite repository.

One database file shared by every engine that opens it. Concurrency rules
live in SQL so they hold across processes: partial unique indexes for
proposal deduplication, and conditional UPDATE / INSERT ... SELECT
statements whose row count tells the caller whether it won.
"""

import json
import sqlite3
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from swapmatch.core.auction.auction import Auction, AuctionSettings, AuctionStatus, EndReason
from swapmatch.core.auction.proposal import (
    BookingOffer, CashOffer, Proposal, ProposalStatus, ProposalType
)
from swapmatch.core.errors import AuctionClosed, StorageError, UniqueViolation
from swapmatch.core.storage.repository import (
    AUCTION_PER_SWAP_CONSTRAINT, IDEMPOTENCY_CONSTRAINT, PENDING_BOOKING_CONSTRAINT
)
from swapmatch.core.swap.offer import (
    OPEN_SWAP_STATUSES, AcceptanceStrategy, PaymentPreferences, SwapOffer, SwapStatus
)
from swapmatch.utils.logger import get_logger

logger = get_logger("storage.sqlite")


class _StaleWinner(Exception):
    """Aborts a winner transaction whose preconditions no longer hold."""


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


class SQLiteRepository:
    """
    SQLite backend for swaps, auctions and proposals.

    Provides:
    1. Per-thread connections in WAL mode, so readers never block writers.
    2. A partial unique index enforcing one pending booking proposal per
       (auction, proposer, booking) and a unique idempotency index.
    3. AUTOINCREMENT proposal sequence numbers for insertion order.
    4. Conditional UPDATEs for the ACTIVE -> ENDED transition and for
       winner assignment (compare-and-set on winning_proposal_id IS NULL).
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._conn_local = threading.local()

        if not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()
        logger.info(f"SQLiteRepository initialized at {self.db_path}")

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn_local.conn = conn
        return self._conn_local.conn

    def close(self) -> None:
        """Close this thread's connection."""
        conn = getattr(self._conn_local, "conn", None)
        if conn is not None:
            conn.close()
            del self._conn_local.conn

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS swaps (
                    id TEXT PRIMARY KEY,
                    source_booking_id TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    proposer_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    acceptance_strategy TEXT NOT NULL,
                    booking_exchange INTEGER NOT NULL,
                    cash_accepted INTEGER NOT NULL,
                    minimum_cash_amount TEXT,
                    accepted_proposal_id TEXT,
                    target_booking_id TEXT,
                    target_cash_amount TEXT,
                    target_currency TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            # One auction per swap
            conn.execute("""
                CREATE TABLE IF NOT EXISTS auctions (
                    id TEXT PRIMARY KEY,
                    swap_id TEXT NOT NULL UNIQUE REFERENCES swaps(id),
                    owner_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    end_date TEXT NOT NULL,
                    allow_booking_proposals INTEGER NOT NULL,
                    allow_cash_proposals INTEGER NOT NULL,
                    minimum_cash_offer TEXT,
                    auto_select_after_hours INTEGER,
                    winning_proposal_id TEXT,
                    auto_selected INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    ended_at TEXT,
                    end_reason TEXT,
                    reminder_sent INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_auction_status ON auctions(status);")

            # seq is the storage-assigned insertion order
            conn.execute("""
                CREATE TABLE IF NOT EXISTS proposals (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    auction_id TEXT NOT NULL REFERENCES auctions(id),
                    proposer_id TEXT NOT NULL,
                    proposal_type TEXT NOT NULL,
                    booking_id TEXT,
                    cash_amount TEXT,
                    cash_currency TEXT,
                    payment_method_id TEXT,
                    escrow_agreement INTEGER NOT NULL DEFAULT 0,
                    message TEXT NOT NULL DEFAULT '',
                    conditions TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    idempotency_key TEXT
                )
            """)
            conn.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS {PENDING_BOOKING_CONSTRAINT}
                ON proposals(auction_id, proposer_id, booking_id)
                WHERE status = 'pending' AND proposal_type = 'booking'
            """)
            conn.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS {IDEMPOTENCY_CONSTRAINT}
                ON proposals(auction_id, proposer_id, idempotency_key)
                WHERE idempotency_key IS NOT NULL
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_proposal_auction ON proposals(auction_id, seq);")

    @staticmethod
    def _unique_violation(exc: sqlite3.IntegrityError) -> StorageError:
        text = str(exc)
        if "proposals.auction_id, proposals.proposer_id, proposals.booking_id" in text:
            return UniqueViolation(PENDING_BOOKING_CONSTRAINT, text)
        if "proposals.auction_id, proposals.proposer_id, proposals.idempotency_key" in text:
            return UniqueViolation(IDEMPOTENCY_CONSTRAINT, text)
        if "auctions.swap_id" in text:
            return UniqueViolation(AUCTION_PER_SWAP_CONSTRAINT, text)
        if "UNIQUE" in text:
            return UniqueViolation("unknown", text)
        return StorageError(text)

    # =========================================================================
    # Row mapping
    # =========================================================================

    @staticmethod
    def _swap_params(swap: SwapOffer) -> tuple:
        return (
            swap.id,
            swap.source_booking_id,
            swap.owner_id,
            swap.proposer_id,
            swap.status.value,
            swap.acceptance_strategy.value,
            int(swap.preferences.booking_exchange),
            int(swap.preferences.cash_accepted),
            _str(swap.preferences.minimum_cash_amount),
            swap.accepted_proposal_id,
            swap.target_booking_id,
            _str(swap.target_cash_amount),
            swap.target_currency,
            _ts(swap.created_at),
        )

    _SWAP_COLUMNS = """swaps (
            id, source_booking_id, owner_id, proposer_id, status, acceptance_strategy,
            booking_exchange, cash_accepted, minimum_cash_amount, accepted_proposal_id,
            target_booking_id, target_cash_amount, target_currency, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """
    _INSERT_SWAP = "INSERT INTO " + _SWAP_COLUMNS
    _UPSERT_SWAP = "INSERT OR REPLACE INTO " + _SWAP_COLUMNS

    @staticmethod
    def _row_to_swap(row: sqlite3.Row) -> SwapOffer:
        return SwapOffer(
            id=row["id"],
            source_booking_id=row["source_booking_id"],
            owner_id=row["owner_id"],
            proposer_id=row["proposer_id"],
            status=SwapStatus(row["status"]),
            acceptance_strategy=AcceptanceStrategy(row["acceptance_strategy"]),
            preferences=PaymentPreferences(
                booking_exchange=bool(row["booking_exchange"]),
                cash_accepted=bool(row["cash_accepted"]),
                minimum_cash_amount=_dec(row["minimum_cash_amount"]),
            ),
            accepted_proposal_id=row["accepted_proposal_id"],
            target_booking_id=row["target_booking_id"],
            target_cash_amount=_dec(row["target_cash_amount"]),
            target_currency=row["target_currency"],
            created_at=_dt(row["created_at"]),
        )

    @staticmethod
    def _row_to_auction(row: sqlite3.Row) -> Auction:
        return Auction(
            id=row["id"],
            swap_id=row["swap_id"],
            owner_id=row["owner_id"],
            status=AuctionStatus(row["status"]),
            settings=AuctionSettings(
                end_date=_dt(row["end_date"]),
                allow_booking_proposals=bool(row["allow_booking_proposals"]),
                allow_cash_proposals=bool(row["allow_cash_proposals"]),
                minimum_cash_offer=_dec(row["minimum_cash_offer"]),
                auto_select_after_hours=row["auto_select_after_hours"],
            ),
            winning_proposal_id=row["winning_proposal_id"],
            auto_selected=bool(row["auto_selected"]),
            created_at=_dt(row["created_at"]),
            ended_at=_dt(row["ended_at"]),
            end_reason=EndReason(row["end_reason"]) if row["end_reason"] else None,
            reminder_sent=bool(row["reminder_sent"]),
        )

    @staticmethod
    def _row_to_proposal(row: sqlite3.Row) -> Proposal:
        if row["proposal_type"] == ProposalType.BOOKING.value:
            offer = BookingOffer(booking_id=row["booking_id"])
        else:
            offer = CashOffer(
                amount=Decimal(row["cash_amount"]),
                currency=row["cash_currency"],
                payment_method_id=row["payment_method_id"],
                escrow_agreement=bool(row["escrow_agreement"]),
            )
        return Proposal(
            id=row["id"],
            auction_id=row["auction_id"],
            proposer_id=row["proposer_id"],
            offer=offer,
            message=row["message"],
            conditions=json.loads(row["conditions"]),
            status=ProposalStatus(row["status"]),
            created_at=_dt(row["created_at"]),
            sequence=row["seq"],
            idempotency_key=row["idempotency_key"],
        )

    # =========================================================================
    # Swaps
    # =========================================================================

    def add_swap(self, swap: SwapOffer) -> None:
        conn = self._get_conn()
        try:
            with conn:
                conn.execute(self._INSERT_SWAP, self._swap_params(swap))
        except sqlite3.IntegrityError as e:
            raise self._unique_violation(e) from e
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    def get_swap(self, swap_id: str) -> Optional[SwapOffer]:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM swaps WHERE id = ?", (swap_id,)).fetchone()
        return self._row_to_swap(row) if row else None

    def save_swap(self, swap: SwapOffer) -> None:
        conn = self._get_conn()
        try:
            with conn:
                conn.execute(self._UPSERT_SWAP, self._swap_params(swap))
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    def update_swap_status(self, swap_id: str, status: SwapStatus, expected: SwapStatus) -> bool:
        """Change only the status column, if it is still `expected`."""
        conn = self._get_conn()
        try:
            with conn:
                cursor = conn.execute(
                    "UPDATE swaps SET status = ? WHERE id = ? AND status = ?",
                    (status.value, swap_id, expected.value),
                )
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        return cursor.rowcount == 1

    def update_swap_strategy(
        self, swap_id: str, strategy: AcceptanceStrategy, expected: AcceptanceStrategy
    ) -> bool:
        """Change only the strategy column of an open swap still on `expected`."""
        open_statuses = sorted(s.value for s in OPEN_SWAP_STATUSES)
        conn = self._get_conn()
        try:
            with conn:
                cursor = conn.execute(
                    "UPDATE swaps SET acceptance_strategy = ? "
                    "WHERE id = ? AND acceptance_strategy = ? AND status IN (?, ?)",
                    (strategy.value, swap_id, expected.value, *open_statuses),
                )
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        return cursor.rowcount == 1

    def list_swaps(self) -> List[SwapOffer]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM swaps ORDER BY created_at ASC")
        return [self._row_to_swap(row) for row in cursor]

    # =========================================================================
    # Auctions
    # =========================================================================

    def add_auction(self, auction: Auction, swap: SwapOffer) -> None:
        """Store a new auction and the swap it reconfigured in one transaction."""
        settings = auction.settings
        conn = self._get_conn()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO auctions (
                        id, swap_id, owner_id, status, end_date, allow_booking_proposals,
                        allow_cash_proposals, minimum_cash_offer, auto_select_after_hours,
                        winning_proposal_id, auto_selected, created_at, ended_at, end_reason,
                        reminder_sent
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        auction.id,
                        auction.swap_id,
                        auction.owner_id,
                        auction.status.value,
                        _ts(settings.end_date),
                        int(settings.allow_booking_proposals),
                        int(settings.allow_cash_proposals),
                        _str(settings.minimum_cash_offer),
                        settings.auto_select_after_hours,
                        auction.winning_proposal_id,
                        int(auction.auto_selected),
                        _ts(auction.created_at),
                        _ts(auction.ended_at),
                        auction.end_reason.value if auction.end_reason else None,
                        int(auction.reminder_sent),
                    ),
                )
                conn.execute(self._UPSERT_SWAP, self._swap_params(swap))
        except sqlite3.IntegrityError as e:
            raise self._unique_violation(e) from e
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    def get_auction(self, auction_id: str) -> Optional[Auction]:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM auctions WHERE id = ?", (auction_id,)).fetchone()
        return self._row_to_auction(row) if row else None

    def get_auction_for_swap(self, swap_id: str) -> Optional[Auction]:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM auctions WHERE swap_id = ?", (swap_id,)).fetchone()
        return self._row_to_auction(row) if row else None

    def list_auctions(self, status: Optional[AuctionStatus] = None) -> List[Auction]:
        conn = self._get_conn()
        if status is None:
            cursor = conn.execute("SELECT * FROM auctions ORDER BY created_at ASC")
        else:
            cursor = conn.execute(
                "SELECT * FROM auctions WHERE status = ? ORDER BY created_at ASC",
                (status.value,),
            )
        return [self._row_to_auction(row) for row in cursor]

    def end_auction_if_active(self, auction_id: str, ended_at: datetime, reason: EndReason) -> bool:
        """ACTIVE -> ENDED. Returns False if the auction was not active."""
        conn = self._get_conn()
        try:
            with conn:
                cursor = conn.execute(
                    "UPDATE auctions SET status = ?, ended_at = ?, end_reason = ? "
                    "WHERE id = ? AND status = ?",
                    (
                        AuctionStatus.ENDED.value,
                        _ts(ended_at),
                        reason.value,
                        auction_id,
                        AuctionStatus.ACTIVE.value,
                    ),
                )
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        return cursor.rowcount == 1

    def cancel_auction(self, auction_id: str, ended_at: datetime) -> bool:
        """End the auction as cancelled. Returns False once a winner exists."""
        conn = self._get_conn()
        try:
            with conn:
                cursor = conn.execute(
                    "UPDATE auctions SET status = ?, ended_at = COALESCE(ended_at, ?), end_reason = ? "
                    "WHERE id = ? AND winning_proposal_id IS NULL",
                    (
                        AuctionStatus.ENDED.value,
                        _ts(ended_at),
                        EndReason.CANCELLED.value,
                        auction_id,
                    ),
                )
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        return cursor.rowcount == 1

    def set_reminder_sent(self, auction_id: str) -> None:
        conn = self._get_conn()
        try:
            with conn:
                conn.execute("UPDATE auctions SET reminder_sent = 1 WHERE id = ?", (auction_id,))
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    # =========================================================================
    # Proposals
    # =========================================================================

    def insert_proposal(self, proposal: Proposal) -> Proposal:
        """
        Store a proposal; the returned copy carries its sequence number.

        The insert and the "auction is active" check are one statement, so
        an auction ended by another connection can never gain a proposal.

        Raises:
            AuctionClosed: the auction is missing or no longer active
            UniqueViolation: duplicate pending booking or idempotency key
        """
        offer = proposal.offer
        booking_id = offer.booking_id if isinstance(offer, BookingOffer) else None
        cash = offer if isinstance(offer, CashOffer) else None
        conn = self._get_conn()
        try:
            with conn:
                cursor = conn.execute(
                    """
                    INSERT INTO proposals (
                        id, auction_id, proposer_id, proposal_type, booking_id, cash_amount,
                        cash_currency, payment_method_id, escrow_agreement, message,
                        conditions, status, created_at, idempotency_key
                    )
                    SELECT ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
                    WHERE EXISTS (SELECT 1 FROM auctions WHERE id = ? AND status = ?)
                    """,
                    (
                        proposal.id,
                        proposal.auction_id,
                        proposal.proposer_id,
                        proposal.proposal_type.value,
                        booking_id,
                        _str(cash.amount) if cash else None,
                        cash.currency if cash else None,
                        cash.payment_method_id if cash else None,
                        int(cash.escrow_agreement) if cash else 0,
                        proposal.message,
                        json.dumps(list(proposal.conditions)),
                        proposal.status.value,
                        _ts(proposal.created_at),
                        proposal.idempotency_key,
                        proposal.auction_id,
                        AuctionStatus.ACTIVE.value,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise self._unique_violation(e) from e
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

        if cursor.rowcount != 1:
            raise AuctionClosed(proposal.auction_id)

        stored = self.get_proposal(proposal.id)
        logger.debug(f"Stored {stored!r} (rowid={cursor.lastrowid})")
        return stored

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM proposals WHERE id = ?", (proposal_id,)).fetchone()
        return self._row_to_proposal(row) if row else None

    def list_proposals(self, auction_id: str) -> List[Proposal]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT * FROM proposals WHERE auction_id = ? ORDER BY seq ASC", (auction_id,)
        )
        return [self._row_to_proposal(row) for row in cursor]

    def find_by_idempotency_key(self, auction_id: str, proposer_id: str, key: str) -> Optional[Proposal]:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM proposals WHERE auction_id = ? AND proposer_id = ? AND idempotency_key = ?",
            (auction_id, proposer_id, key),
        ).fetchone()
        return self._row_to_proposal(row) if row else None

    def update_proposal_status(
        self, proposal_id: str, status: ProposalStatus, expected: Optional[ProposalStatus] = None
    ) -> bool:
        conn = self._get_conn()
        try:
            with conn:
                if expected is None:
                    cursor = conn.execute(
                        "UPDATE proposals SET status = ? WHERE id = ?",
                        (status.value, proposal_id),
                    )
                else:
                    cursor = conn.execute(
                        "UPDATE proposals SET status = ? WHERE id = ? AND status = ?",
                        (status.value, proposal_id, expected.value),
                    )
        except sqlite3.IntegrityError as e:
            raise self._unique_violation(e) from e
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        return cursor.rowcount == 1

    # =========================================================================
    # Resolution
    # =========================================================================

    def commit_winner(
        self, auction_id: str, proposal_id: str, swap: SwapOffer, auto_selected: bool
    ) -> bool:
        """
        Atomically assign the winner.

        The auction row is claimed with a conditional UPDATE; the winning
        proposal, the losing proposals and the swap are written in the same
        transaction. Any failed precondition rolls the whole thing back.
        """
        conn = self._get_conn()
        try:
            with conn:
                cursor = conn.execute(
                    "UPDATE auctions SET winning_proposal_id = ?, auto_selected = ? "
                    "WHERE id = ? AND winning_proposal_id IS NULL AND status = ? "
                    "AND COALESCE(end_reason, '') != ?",
                    (
                        proposal_id,
                        int(auto_selected),
                        auction_id,
                        AuctionStatus.ENDED.value,
                        EndReason.CANCELLED.value,
                    ),
                )
                if cursor.rowcount != 1:
                    raise _StaleWinner()

                cursor = conn.execute(
                    "UPDATE proposals SET status = ? WHERE id = ? AND auction_id = ? AND status = ?",
                    (
                        ProposalStatus.ACCEPTED.value,
                        proposal_id,
                        auction_id,
                        ProposalStatus.PENDING.value,
                    ),
                )
                if cursor.rowcount != 1:
                    raise _StaleWinner()

                conn.execute(
                    "UPDATE proposals SET status = ? WHERE auction_id = ? AND status = ?",
                    (
                        ProposalStatus.REJECTED.value,
                        auction_id,
                        ProposalStatus.PENDING.value,
                    ),
                )
                conn.execute(self._UPSERT_SWAP, self._swap_params(swap))
        except _StaleWinner:
            return False
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        return True

