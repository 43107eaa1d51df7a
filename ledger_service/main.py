import logging
from contextlib import asynccontextmanager
from typing import Iterable, Optional

import jwt
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from sqlalchemy.engine import Engine

from common.error_handling import add_error_handlers
from common.schemas import (
    AdminAdjustRequest, BalanceResponse, CoinflipActionRequest, CoinflipBetRequest, CoinflipGameOut,
    CoinflipGameResponse, CoinflipGamesResponse, CoinflipSettlementResponse, CoinflipStatsResponse,
    DiscrepancyOut, FairnessResponse, LedgerEntryOut, ReconcileResponse, TransactionsResponse,
    TransferRequest, TransferResponse,
)
from common.security import Caller, caller_from_token
from common.settings import settings
from common.tracing import ledger_tracer, tracing_middleware
from ledger_service.admin import AdminAdjustments
from ledger_service.coinflip import CoinflipEngine
from ledger_service.coordinator import TransactionCoordinator
from ledger_service.db import make_engine, make_session_factory
from ledger_service.economy import DEFAULT_PAGE_SIZE, EconomyService
from ledger_service.errors import NotAuthorized
from ledger_service.models import Base, CoinflipGame, LedgerEntry

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


def entry_out(entry: LedgerEntry) -> LedgerEntryOut:
    return LedgerEntryOut(
        id=entry.id,
        type=entry.type,
        amount=str(entry.amount),
        fromUserId=entry.from_user_id,
        toUserId=entry.to_user_id,
        guildId=entry.guild_id,
        reason=entry.reason,
        gameId=entry.game_id,
        metadata=entry.meta or {},
        createdAt=entry.created_at,
    )


def game_out(game: CoinflipGame) -> CoinflipGameOut:
    return CoinflipGameOut(
        id=game.id,
        status=game.status,
        guildId=game.guild_id,
        channelId=game.channel_id,
        messageId=game.message_id,
        challengerId=game.challenger_id,
        opponentId=game.opponent_id,
        betAmount=str(game.bet_amount),
        challengerSide=game.challenger_side,
        resultSide=game.result_side,
        winnerId=game.winner_id,
        serverSeedHash=game.server_seed_hash,
        # The seed stays secret while the game can still be accepted
        serverSeed=game.server_seed if game.is_resolved else None,
        createdAt=game.created_at,
        resolvedAt=game.resolved_at,
    )


async def current_caller(request: Request, authorization: Optional[str] = Header(None)) -> Caller:
    """Resolve the bearer token into the calling user"""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")

    token = authorization.split(" ", 1)[1]
    try:
        return caller_from_token(token, request.app.state.admin.owner_user_ids)
    except jwt.PyJWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}")


async def current_owner(request: Request, caller: Caller = Depends(current_caller)) -> Caller:
    """Only allow-listed operators get past this dependency"""
    if not caller.is_owner:
        owners = request.app.state.admin.owner_user_ids
        raise NotAuthorized(caller.user_id, allowlist_configured=bool(owners))
    return caller


def create_app(engine: Optional[Engine] = None, owner_user_ids: Optional[Iterable[str]] = None) -> FastAPI:
    engine = engine or make_engine()
    coordinator = TransactionCoordinator(make_session_factory(engine))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=engine)
        logger.info(f"🚀 {settings.service_name} ready")
        yield

    app = FastAPI(title="Ledger Service", version="1.0.0", lifespan=lifespan)
    app.state.engine = engine
    app.state.economy = EconomyService(coordinator)
    app.state.admin = AdminAdjustments(coordinator, settings.owner_allowlist if owner_user_ids is None else owner_user_ids)
    app.state.coinflip = CoinflipEngine(coordinator)

    add_error_handlers(app)

    @app.middleware("http")
    async def add_tracing(request: Request, call_next):
        return await tracing_middleware(request, call_next, ledger_tracer)

    economy: EconomyService = app.state.economy
    admin: AdminAdjustments = app.state.admin
    coinflip: CoinflipEngine = app.state.coinflip

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/economy/me", response_model=BalanceResponse)
    def my_balance(caller: Caller = Depends(current_caller)):
        return BalanceResponse(balance=str(economy.get_balance(caller.user_id)))

    @app.get("/economy/transactions", response_model=TransactionsResponse)
    def my_transactions(limit: int = DEFAULT_PAGE_SIZE, offset: int = 0, caller: Caller = Depends(current_caller)):
        entries, total = economy.list_transactions(caller.user_id, limit, offset)
        return TransactionsResponse(transactions=[entry_out(e) for e in entries], total=total)

    @app.post("/economy/transfer", response_model=TransferResponse)
    def transfer(body: TransferRequest, caller: Caller = Depends(current_caller)):
        result = economy.transfer(caller.user_id, body.toUserId, body.amount, guild_id=body.guildId, reason=body.reason)
        return TransferResponse(fromBalance=str(result.from_balance), toBalance=str(result.to_balance))

    @app.post("/economy/admin/add", response_model=BalanceResponse)
    def admin_add(body: AdminAdjustRequest, caller: Caller = Depends(current_owner)):
        result = admin.admin_add(caller.user_id, body.userId, body.amount, guild_id=body.guildId, reason=body.reason)
        return BalanceResponse(balance=str(result.balance))

    @app.post("/economy/admin/remove", response_model=BalanceResponse)
    def admin_remove(body: AdminAdjustRequest, caller: Caller = Depends(current_owner)):
        result = admin.admin_remove(caller.user_id, body.userId, body.amount, guild_id=body.guildId, reason=body.reason)
        return BalanceResponse(balance=str(result.balance))

    @app.get("/economy/reconcile", response_model=ReconcileResponse)
    def reconcile(caller: Caller = Depends(current_owner)):
        discrepancies = economy.reconcile()
        return ReconcileResponse(
            consistent=not discrepancies,
            discrepancies=[
                DiscrepancyOut(userId=d.user_id, accountBalance=str(d.account_balance), ledgerBalance=str(d.ledger_balance))
                for d in discrepancies
            ],
        )

    @app.post("/coinflip/bet", response_model=CoinflipGameResponse)
    def place_bet(body: CoinflipBetRequest, caller: Caller = Depends(current_caller)):
        game = coinflip.propose(
            caller.user_id, body.opponentId, body.betAmount, body.challengerSide, guild_id=body.guildId,
        )
        return CoinflipGameResponse(game=game_out(game))

    @app.post("/coinflip/decline", response_model=CoinflipGameResponse)
    def decline_bet(body: CoinflipActionRequest, caller: Caller = Depends(current_caller)):
        game = coinflip.decline(body.gameId, caller.user_id)
        return CoinflipGameResponse(game=game_out(game))

    @app.post("/coinflip/accept", response_model=CoinflipSettlementResponse)
    def accept_bet(body: CoinflipActionRequest, caller: Caller = Depends(current_caller)):
        settlement = coinflip.accept(body.gameId, caller.user_id)
        return CoinflipSettlementResponse(
            resultSide=settlement.result_side,
            winnerId=settlement.winner_id,
            loserId=settlement.loser_id,
            betAmount=str(settlement.bet_amount),
            winnerBalance=str(settlement.winner_balance),
            loserBalance=str(settlement.loser_balance),
            game=game_out(settlement.game),
        )

    @app.get("/coinflip/games", response_model=CoinflipGamesResponse)
    def my_games(
        status: Optional[str] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        caller: Caller = Depends(current_caller),
    ):
        games, total = coinflip.list_games(caller.user_id, status=status, limit=limit, offset=offset)
        return CoinflipGamesResponse(games=[game_out(g) for g in games], total=total)

    @app.get("/coinflip/games/{game_id}/verify", response_model=FairnessResponse)
    def verify_game(game_id: str, caller: Caller = Depends(current_caller)):
        game, check = coinflip.verify(game_id)
        return FairnessResponse(
            gameId=game.id,
            ok=check.ok,
            reason=check.reason,
            serverSeed=game.server_seed if game.is_resolved else None,
            serverSeedHash=game.server_seed_hash,
            resultSide=game.result_side,
        )

    @app.get("/coinflip/stats/me", response_model=CoinflipStatsResponse)
    def my_stats(caller: Caller = Depends(current_caller)):
        stats = coinflip.stats(caller.user_id)
        return CoinflipStatsResponse(
            played=stats.played,
            wins=stats.wins,
            losses=stats.losses,
            won=str(stats.won),
            lost=str(stats.lost),
            net=str(stats.net),
        )

    return app


app = create_app()
