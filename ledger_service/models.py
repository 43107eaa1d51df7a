import uuid
from datetime import datetime, timezone
from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, Integer, JSON, String, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# SQLite only autoincrements INTEGER PRIMARY KEY
LedgerId = BigInteger().with_variant(Integer(), "sqlite")

TRANSFER = "transfer"
ADMIN_ADD = "admin_add"
ADMIN_REMOVE = "admin_remove"
COINFLIP_BET = "coinflip_bet"
COINFLIP_PAYOUT = "coinflip_payout"

HEADS = "heads"
TAILS = "tails"
COIN_SIDES = (HEADS, TAILS)

PENDING = "pending"
DECLINED = "declined"
COMPLETED = "completed"
GAME_STATUSES = (PENDING, DECLINED, COMPLETED)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def new_game_id() -> str:
    return str(uuid.uuid4())

class Account(Base):
    __tablename__ = "accounts"
    user_id = Column(String(64), primary_key=True)
    balance = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )

class LedgerEntry(Base):
    """Append-only; rows are inserted in the same transaction as the balance change they record."""
    __tablename__ = "ledger_entries"
    id = Column(LedgerId, primary_key=True, autoincrement=True)
    type = Column(String(32), nullable=False)
    amount = Column(BigInteger, nullable=False)
    from_user_id = Column(String(64), index=True)
    to_user_id = Column(String(64), index=True)
    guild_id = Column(String(64))
    reason = Column(String(200))
    game_id = Column(String(36), index=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
        CheckConstraint(
            "type IN ('transfer', 'admin_add', 'admin_remove', 'coinflip_bet', 'coinflip_payout')",
            name="ck_ledger_entries_type",
        ),
        CheckConstraint(
            "from_user_id IS NOT NULL OR to_user_id IS NOT NULL",
            name="ck_ledger_entries_has_party",
        ),
    )

class CoinflipGame(Base):
    __tablename__ = "coinflip_games"
    id = Column(String(36), primary_key=True, default=new_game_id)
    status = Column(String(16), nullable=False, default=PENDING, index=True)
    guild_id = Column(String(64))
    channel_id = Column(String(64))
    message_id = Column(String(64))
    challenger_id = Column(String(64), nullable=False, index=True)
    opponent_id = Column(String(64), nullable=False, index=True)
    bet_amount = Column(BigInteger, nullable=False)
    challenger_side = Column(String(5), nullable=False)
    result_side = Column(String(5))
    winner_id = Column(String(64))
    server_seed = Column(String(128))
    server_seed_hash = Column(String(64))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("bet_amount > 0", name="ck_coinflip_games_bet_positive"),
        CheckConstraint("challenger_id <> opponent_id", name="ck_coinflip_games_distinct_players"),
        CheckConstraint("status IN ('pending', 'declined', 'completed')", name="ck_coinflip_games_status"),
    )

    @property
    def is_resolved(self) -> bool:
        return self.status != PENDING
