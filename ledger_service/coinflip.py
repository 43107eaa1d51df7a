"""
Coinflip wager engine

A challenger proposes a stake and a side against one opponent. Only the
opponent can resolve the game, exactly once: declining moves no money,
accepting flips the coin and settles both stakes in the same transaction
that marks the game completed. Funds are checked at settlement, not at
proposal, so a stale proposal cannot succeed against an empty wallet.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from ledger_service import accounts, ledger
from ledger_service.coordinator import TransactionCoordinator
from ledger_service.economy import DEFAULT_PAGE_SIZE, require_page, require_positive_amount
from ledger_service.errors import (
    AlreadyResolved, Forbidden, InsufficientFunds, InvalidAmount, InvalidSide, InvalidStatus, NotFound, SelfTransfer,
)
from ledger_service.fairness import (
    FairnessCheck, compute_result_side, generate_server_seed, hash_server_seed, random_side, verify_result,
)
from ledger_service.models import (
    COIN_SIDES, COINFLIP_BET, COINFLIP_PAYOUT, COMPLETED, DECLINED, GAME_STATUSES, PENDING,
    CoinflipGame, new_game_id, utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class Settlement:
    game: CoinflipGame
    result_side: str
    winner_id: str
    loser_id: str
    bet_amount: int
    winner_balance: int
    loser_balance: int

    @property
    def challenger_balance(self) -> int:
        return self.winner_balance if self.winner_id == self.game.challenger_id else self.loser_balance

    @property
    def opponent_balance(self) -> int:
        return self.winner_balance if self.winner_id == self.game.opponent_id else self.loser_balance


@dataclass
class CoinflipStats:
    played: int
    wins: int
    won: int
    lost: int

    @property
    def losses(self) -> int:
        return max(0, self.played - self.wins)

    @property
    def net(self) -> int:
        return self.won - self.lost


class CoinflipEngine:
    def __init__(self, coordinator: TransactionCoordinator, seed_generator: Callable[[], str] = generate_server_seed):
        self.coordinator = coordinator
        self.seed_generator = seed_generator

    def propose(
        self,
        challenger_id: str,
        opponent_id: str,
        bet_amount: int,
        challenger_side: str,
        guild_id: Optional[str] = None,
        channel_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> CoinflipGame:
        if challenger_id == opponent_id:
            raise SelfTransfer(challenger_id, "Cannot bet against self")
        require_positive_amount(bet_amount, field="betAmount")
        if bet_amount > accounts.MAX_BALANCE:
            raise InvalidAmount(bet_amount, field="betAmount", message=f"Bet cannot exceed {accounts.MAX_BALANCE}")
        if challenger_side not in COIN_SIDES:
            raise InvalidSide(challenger_side)

        def create_game(session: Session) -> CoinflipGame:
            server_seed = self.seed_generator()
            game = CoinflipGame(
                id=new_game_id(),
                status=PENDING,
                guild_id=guild_id,
                channel_id=channel_id,
                message_id=message_id,
                challenger_id=challenger_id,
                opponent_id=opponent_id,
                bet_amount=bet_amount,
                challenger_side=challenger_side,
                server_seed=server_seed,
                server_seed_hash=hash_server_seed(server_seed),
            )
            session.add(game)
            session.flush()
            return game

        game = self.coordinator.run_with_retry(create_game)
        logger.info(f"🪙 Coinflip {game.id} proposed: {challenger_id} vs {opponent_id} for {bet_amount} on {challenger_side}")
        return game

    def decline(self, game_id: str, acting_user_id: str) -> CoinflipGame:
        def decline_game(session: Session) -> CoinflipGame:
            game = self._load_actionable(session, game_id, acting_user_id)
            game.status = DECLINED
            game.resolved_at = utcnow()
            session.flush()
            return game

        game = self.coordinator.run_with_retry(decline_game)
        logger.info(f"🪙 Coinflip {game_id} declined by {acting_user_id}")
        return game

    def accept(self, game_id: str, acting_user_id: str) -> Settlement:
        def settle_game(session: Session) -> Settlement:
            game = self._load_actionable(session, game_id, acting_user_id)
            bet = game.bet_amount

            players = {
                game.challenger_id: accounts.ensure_account(session, game.challenger_id),
                game.opponent_id: accounts.ensure_account(session, game.opponent_id),
            }
            for account in players.values():
                if account.balance < bet:
                    raise InsufficientFunds(account.user_id, account.balance, bet)

            result_side = self._draw_side(game)
            if result_side == game.challenger_side:
                winner_id, loser_id = game.challenger_id, game.opponent_id
            else:
                winner_id, loser_id = game.opponent_id, game.challenger_id

            accounts.adjust(session, game.challenger_id, -bet)
            accounts.adjust(session, game.opponent_id, -bet)
            winner_balance = accounts.adjust(session, winner_id, 2 * bet)

            ledger.append_entry(
                session, COINFLIP_BET, bet, from_user_id=game.challenger_id, guild_id=game.guild_id,
                game_id=game.id, meta={"gameId": game.id, "role": "challenger"},
            )
            ledger.append_entry(
                session, COINFLIP_BET, bet, from_user_id=game.opponent_id, guild_id=game.guild_id,
                game_id=game.id, meta={"gameId": game.id, "role": "opponent"},
            )
            ledger.append_entry(
                session, COINFLIP_PAYOUT, 2 * bet, to_user_id=winner_id, guild_id=game.guild_id,
                game_id=game.id, meta={"gameId": game.id},
            )

            game.status = COMPLETED
            game.result_side = result_side
            game.winner_id = winner_id
            game.resolved_at = utcnow()
            session.flush()

            return Settlement(
                game=game,
                result_side=result_side,
                winner_id=winner_id,
                loser_id=loser_id,
                bet_amount=bet,
                winner_balance=winner_balance,
                loser_balance=players[loser_id].balance,
            )

        settlement = self.coordinator.run_with_retry(settle_game)
        logger.info(
            f"🪙 Coinflip {game_id} settled: {settlement.result_side}, "
            f"{settlement.winner_id} won {settlement.bet_amount} from {settlement.loser_id}"
        )
        return settlement

    def get_game(self, game_id: str) -> CoinflipGame:
        def load(session: Session) -> CoinflipGame:
            game = session.get(CoinflipGame, game_id)
            if game is None:
                raise NotFound(game_id)
            return game

        return self.coordinator.read(load)

    def list_games(
        self,
        user_id: str,
        status: Optional[str] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Tuple[List[CoinflipGame], int]:
        if status is not None and status not in GAME_STATUSES:
            raise InvalidStatus(status)
        limit, offset = require_page(limit, offset)

        conditions = [or_(CoinflipGame.challenger_id == user_id, CoinflipGame.opponent_id == user_id)]
        if status is not None:
            conditions.append(CoinflipGame.status == status)
        where = and_(*conditions)

        def load(session: Session):
            games = session.scalars(
                select(CoinflipGame)
                .where(where)
                .order_by(CoinflipGame.created_at.desc(), CoinflipGame.id)
                .limit(limit)
                .offset(offset)
            ).all()
            total = session.scalar(select(func.count()).select_from(CoinflipGame).where(where))
            return list(games), total

        return self.coordinator.read(load)

    def stats(self, user_id: str) -> CoinflipStats:
        played_by_user = and_(
            CoinflipGame.status == COMPLETED,
            or_(CoinflipGame.challenger_id == user_id, CoinflipGame.opponent_id == user_id),
        )
        won_by_user = and_(CoinflipGame.status == COMPLETED, CoinflipGame.winner_id == user_id)
        lost_by_user = and_(played_by_user, CoinflipGame.winner_id != user_id)

        def load(session: Session) -> CoinflipStats:
            count = select(func.count()).select_from(CoinflipGame)
            stake_sum = select(func.coalesce(func.sum(CoinflipGame.bet_amount), 0))
            return CoinflipStats(
                played=session.scalar(count.where(played_by_user)),
                wins=session.scalar(count.where(won_by_user)),
                won=int(session.scalar(stake_sum.where(won_by_user))),
                lost=int(session.scalar(stake_sum.where(lost_by_user))),
            )

        return self.coordinator.read(load)

    def verify(self, game_id: str) -> Tuple[CoinflipGame, FairnessCheck]:
        game = self.get_game(game_id)
        if game.status != COMPLETED:
            return game, FairnessCheck(False, "not_resolved")
        if not game.server_seed or not game.server_seed_hash:
            return game, FairnessCheck(False, "no_commitment")
        return game, verify_result(game.server_seed, game.server_seed_hash, game.id, game.result_side)

    def _load_actionable(self, session: Session, game_id: str, acting_user_id: str) -> CoinflipGame:
        game = session.get(CoinflipGame, game_id, with_for_update=True)
        if game is None:
            raise NotFound(game_id)
        if game.status != PENDING:
            raise AlreadyResolved(game_id, game.status)
        if game.opponent_id != acting_user_id:
            raise Forbidden(game_id, acting_user_id)
        return game

    def _draw_side(self, game: CoinflipGame) -> str:
        # A seed without a published hash was never a commitment
        if not game.server_seed or not game.server_seed_hash:
            return random_side()
        return compute_result_side(game.server_seed, game.id)
