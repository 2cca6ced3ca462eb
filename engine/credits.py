from __future__ import annotations

from dataclasses import dataclass
import math
import re
from typing import Iterable, List, Optional

DEFAULT_CONVERSION_RATE = 0.05
AIRDROP_MIN_CREDITS = 100
MILESTONE_STEP = 100

ETH_WALLET_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


@dataclass
class KemCredits:
    user_id: str
    credits_earned: int = 0
    credits_spent: int = 0

    @property
    def available(self) -> int:
        return self.credits_earned - self.credits_spent

    @property
    def milestone_progress(self) -> int:
        return self.credits_earned % MILESTONE_STEP

    @property
    def next_milestone(self) -> int:
        return (self.credits_earned // MILESTONE_STEP + 1) * MILESTONE_STEP


@dataclass
class AirdropAllocation:
    user_id: str
    kem_amount: float
    credits_used: int
    ethereum_wallet: Optional[str]
    status: str


def kem_tokens(credits: float, rate: float = DEFAULT_CONVERSION_RATE) -> float:
    """Credits converted to KEM tokens, floored to two decimals."""
    if rate <= 0:
        raise ValueError("conversion rate must be positive")
    return math.floor(credits * rate * 100) / 100


def is_valid_wallet(wallet: Optional[str]) -> bool:
    return bool(wallet) and ETH_WALLET_RE.match(wallet) is not None


def claim_airdrop(account: KemCredits, wallet: str, rate: float = DEFAULT_CONVERSION_RATE) -> AirdropAllocation:
    if not is_valid_wallet(wallet):
        raise ValueError("Invalid Ethereum wallet address")
    credits = account.available
    if credits <= 0:
        raise ValueError("No credits available to claim")
    return AirdropAllocation(
        user_id=account.user_id,
        kem_amount=kem_tokens(credits, rate),
        credits_used=credits,
        ethereum_wallet=wallet,
        status="pending",
    )


def plan_admin_airdrop(
    accounts: Iterable[KemCredits],
    rate: float = DEFAULT_CONVERSION_RATE,
    min_credits: int = AIRDROP_MIN_CREDITS,
) -> List[AirdropAllocation]:
    return [
        AirdropAllocation(
            user_id=a.user_id,
            kem_amount=kem_tokens(a.credits_earned, rate),
            credits_used=a.credits_earned,
            ethereum_wallet=None,
            status="admin_distributed",
        )
        for a in accounts
        if a.credits_earned >= min_credits
    ]
