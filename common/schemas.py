from datetime import datetime
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional

CoinSide = Literal["heads", "tails"]
GameStatus = Literal["pending", "declined", "completed"]

# Amounts arrive as JSON integers or digit strings; range checks are the ledger's job
class TransferRequest(BaseModel):
    toUserId: str = Field(min_length=1)
    amount: int
    guildId: Optional[str] = Field(default=None, min_length=1)
    reason: Optional[str] = Field(default=None, min_length=1, max_length=200)

class AdminAdjustRequest(BaseModel):
    userId: str = Field(min_length=1)
    amount: int
    guildId: Optional[str] = Field(default=None, min_length=1)
    reason: Optional[str] = Field(default=None, min_length=1, max_length=200)

class CoinflipBetRequest(BaseModel):
    opponentId: str = Field(min_length=1)
    betAmount: int
    # Checked by the engine so an unknown side reports INVALID_SIDE
    challengerSide: str
    guildId: Optional[str] = Field(default=None, min_length=1)

class CoinflipActionRequest(BaseModel):
    gameId: str = Field(min_length=1)

# Responses render every amount as a decimal string
class BalanceResponse(BaseModel):
    success: bool = True
    balance: str

class TransferResponse(BaseModel):
    success: bool = True
    fromBalance: str
    toBalance: str

class LedgerEntryOut(BaseModel):
    id: int
    type: str
    amount: str
    fromUserId: Optional[str] = None
    toUserId: Optional[str] = None
    guildId: Optional[str] = None
    reason: Optional[str] = None
    gameId: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    createdAt: Optional[datetime] = None

class TransactionsResponse(BaseModel):
    success: bool = True
    transactions: List[LedgerEntryOut]
    total: int

class DiscrepancyOut(BaseModel):
    userId: str
    accountBalance: str
    ledgerBalance: str

class ReconcileResponse(BaseModel):
    success: bool = True
    consistent: bool
    discrepancies: List[DiscrepancyOut]

class CoinflipGameOut(BaseModel):
    id: str
    status: GameStatus
    guildId: Optional[str] = None
    channelId: Optional[str] = None
    messageId: Optional[str] = None
    challengerId: str
    opponentId: str
    betAmount: str
    challengerSide: CoinSide
    resultSide: Optional[CoinSide] = None
    winnerId: Optional[str] = None
    serverSeedHash: Optional[str] = None
    # Revealed only once the game can no longer be accepted
    serverSeed: Optional[str] = None
    createdAt: Optional[datetime] = None
    resolvedAt: Optional[datetime] = None

class CoinflipGameResponse(BaseModel):
    success: bool = True
    game: CoinflipGameOut

class CoinflipGamesResponse(BaseModel):
    games: List[CoinflipGameOut]
    total: int

class CoinflipSettlementResponse(BaseModel):
    success: bool = True
    resultSide: CoinSide
    winnerId: str
    loserId: str
    betAmount: str
    winnerBalance: str
    loserBalance: str
    game: CoinflipGameOut

class CoinflipStatsResponse(BaseModel):
    played: int
    wins: int
    losses: int
    won: str
    lost: str
    net: str

class FairnessResponse(BaseModel):
    gameId: str
    ok: bool
    reason: Optional[str] = None
    serverSeed: Optional[str] = None
    serverSeedHash: Optional[str] = None
    resultSide: Optional[CoinSide] = None
