"""
Commit/reveal fairness for coinflip outcomes.

A game commits to sha256(server_seed) when it is proposed. The outcome is
the low bit of sha256("{server_seed}:{game_id}")[0], so anyone holding the
revealed seed can recompute both the commitment and the result.
"""
import hashlib
import secrets
from dataclasses import dataclass
from typing import Optional

from ledger_service.models import HEADS, TAILS

SEED_BYTES = 32


@dataclass(frozen=True)
class FairnessCheck:
    ok: bool
    reason: Optional[str] = None


def generate_server_seed(byte_length: int = SEED_BYTES) -> str:
    return secrets.token_hex(byte_length)


def hash_server_seed(server_seed: str) -> str:
    return hashlib.sha256(server_seed.encode("utf-8")).hexdigest()


def compute_result_side(server_seed: str, game_id: str) -> str:
    digest = hashlib.sha256(f"{server_seed}:{game_id}".encode("utf-8")).digest()
    return HEADS if digest[0] & 1 == 0 else TAILS


def random_side() -> str:
    """Outcome for games created without a commitment."""
    return HEADS if secrets.randbelow(2) == 0 else TAILS


def verify_result(server_seed: str, server_seed_hash: str, game_id: str, result_side: str) -> FairnessCheck:
    if hash_server_seed(server_seed) != server_seed_hash:
        return FairnessCheck(False, "seed_hash_mismatch")
    if compute_result_side(server_seed, game_id) != result_side:
        return FairnessCheck(False, "result_side_mismatch")
    return FairnessCheck(True)
