"""Stateless swap detection and proportional sizing for wallet mirroring.

All functions are pure computation over a jsonParsed ``getTransaction``
result. No I/O, no database access.
"""

from dataclasses import dataclass

from strategy_service.config import Settings
from strategy_service.utils.constants import (
    LAMPORTS_PER_SOL,
    NATIVE_DELTA_EPSILON,
    SOL_DECIMALS,
    SOL_MINT,
    TOKEN_DELTA_EPSILON,
)


# ---------------------------------------------------------------------------
# Balance deltas
# ---------------------------------------------------------------------------

@dataclass
class TokenChange:
    mint: str
    change: float  # UI units
    raw_change: int
    pre_balance: float  # UI units
    decimals: int


@dataclass
class NativeChange:
    change: float  # SOL
    pre_balance: float  # SOL
    lamport_change: int


def account_keys(tx: dict) -> list[str]:
    """Static account keys followed by any addresses loaded from lookup tables."""
    message = tx.get("transaction", {}).get("message", {})
    keys = []
    for key in message.get("accountKeys", []):
        keys.append(key["pubkey"] if isinstance(key, dict) else key)

    loaded = (tx.get("meta") or {}).get("loadedAddresses") or {}
    keys.extend(loaded.get("writable", []))
    keys.extend(loaded.get("readonly", []))
    return keys


def native_change(tx: dict, owner: str) -> NativeChange | None:
    meta = tx.get("meta")
    if not meta:
        return None
    keys = account_keys(tx)
    if owner not in keys:
        return None
    idx = keys.index(owner)
    pre = meta.get("preBalances", [])
    post = meta.get("postBalances", [])
    if idx >= len(pre) or idx >= len(post):
        return None
    delta = int(post[idx]) - int(pre[idx])
    return NativeChange(
        change=delta / LAMPORTS_PER_SOL,
        pre_balance=int(pre[idx]) / LAMPORTS_PER_SOL,
        lamport_change=delta,
    )


def _sum_by_mint(balances: list[dict], owner: str) -> dict[str, tuple[int, int]]:
    totals: dict[str, tuple[int, int]] = {}
    for bal in balances or []:
        if bal.get("owner") != owner:
            continue
        amount = bal.get("uiTokenAmount", {})
        raw = int(amount.get("amount", "0"))
        decimals = int(amount.get("decimals", 0))
        prev_raw, _ = totals.get(bal["mint"], (0, decimals))
        totals[bal["mint"]] = (prev_raw + raw, decimals)
    return totals


def token_changes(meta: dict, owner: str) -> list[TokenChange]:
    """Per-mint balance changes for token accounts owned by ``owner``."""
    pre = _sum_by_mint(meta.get("preTokenBalances"), owner)
    post = _sum_by_mint(meta.get("postTokenBalances"), owner)

    changes = []
    for mint in list(pre) + [m for m in post if m not in pre]:
        pre_raw, pre_dec = pre.get(mint, (0, None))
        post_raw, post_dec = post.get(mint, (0, None))
        decimals = pre_dec if pre_dec is not None else post_dec
        raw_change = post_raw - pre_raw
        if raw_change == 0:
            continue
        scale = 10 ** decimals
        changes.append(TokenChange(
            mint=mint,
            change=raw_change / scale,
            raw_change=raw_change,
            pre_balance=pre_raw / scale,
            decimals=decimals,
        ))
    return changes


def raw_token_deltas(meta: dict, owner: str) -> dict[str, int]:
    return {c.mint: c.raw_change for c in token_changes(meta, owner)}


# ---------------------------------------------------------------------------
# Swap detection
# ---------------------------------------------------------------------------

@dataclass
class DetectedSwap:
    input_mint: str
    output_mint: str
    their_amount: float  # UI units of the input asset
    their_pre_balance: float
    input_decimals: int
    output_decimals: int | None
    input_is_native: bool
    output_is_native: bool

    @property
    def pct_of_their_balance(self) -> float:
        if self.their_pre_balance <= 0:
            return 0.0
        return self.their_amount / self.their_pre_balance * 100


def detect_swap(tx: dict | None, owner: str) -> DetectedSwap | None:
    """Infer the input and output assets of a swap made by ``owner``.

    The first token that decreased (ignoring wrapped SOL) is the input and
    the first token that increased is the output. A native SOL move counts
    only when no token moved on that side. Returns None when either side is
    missing.
    """
    if not tx or not tx.get("meta"):
        return None
    meta = tx["meta"]
    if meta.get("err"):
        return None

    changes = token_changes(meta, owner)
    native = native_change(tx, owner)

    input_change = next(
        (c for c in changes if c.change < -TOKEN_DELTA_EPSILON and c.mint != SOL_MINT), None
    )
    output_change = next((c for c in changes if c.change > TOKEN_DELTA_EPSILON), None)

    if input_change is not None:
        input_mint = input_change.mint
        their_amount = -input_change.change
        their_pre = input_change.pre_balance
        input_decimals = input_change.decimals
        input_is_native = False
    elif native is not None and native.change < -NATIVE_DELTA_EPSILON:
        input_mint = SOL_MINT
        their_amount = -native.change
        their_pre = native.pre_balance
        input_decimals = SOL_DECIMALS
        input_is_native = True
    else:
        return None

    if output_change is not None:
        output_mint = output_change.mint
        output_decimals = output_change.decimals
        output_is_native = output_mint == SOL_MINT
    elif native is not None and native.change > NATIVE_DELTA_EPSILON:
        output_mint = SOL_MINT
        output_decimals = SOL_DECIMALS
        output_is_native = True
    else:
        return None

    if input_mint == output_mint:
        return None

    return DetectedSwap(
        input_mint=input_mint,
        output_mint=output_mint,
        their_amount=their_amount,
        their_pre_balance=their_pre,
        input_decimals=input_decimals,
        output_decimals=output_decimals,
        input_is_native=input_is_native,
        output_is_native=output_is_native,
    )


# ---------------------------------------------------------------------------
# Proportional sizing
# ---------------------------------------------------------------------------

@dataclass
class MirrorPolicy:
    dust_threshold_pct: float = 98.0
    min_native_amount: float = 0.005
    min_token_amount: float = 0.1
    min_native_reserve: float = 0.002
    native_fee_reserve: float = 0.00001  # SOL held back when mirroring native input

    @classmethod
    def from_settings(cls, settings: Settings) -> "MirrorPolicy":
        return cls(
            dust_threshold_pct=settings.dust_threshold_pct,
            min_native_amount=settings.min_native_amount,
            min_token_amount=settings.min_token_amount,
            min_native_reserve=settings.min_native_reserve,
            native_fee_reserve=settings.fee_reserve_lamports / LAMPORTS_PER_SOL,
        )


@dataclass
class MirrorSizing:
    should_mirror: bool
    amount: float = 0.0  # UI units of the input asset
    sell_entire_balance: bool = False
    pct_of_their_balance: float = 0.0
    skip_reason: str | None = None


def compute_mirror_amount(
    swap: DetectedSwap,
    our_balance: float,
    job_percentage: float,
    policy: MirrorPolicy,
    our_native_balance: float | None = None,
) -> MirrorSizing:
    """Size our side of a mirrored swap.

    Above the dust threshold the whole balance is mirrored, less the fee
    reserve when the input is native. Otherwise native inputs scale by both
    the job percentage and the share of their balance they spent, token
    inputs by the share alone. Amounts under the floor are raised to it when
    our spendable balance covers it.
    """
    pct = swap.pct_of_their_balance

    if our_balance <= 0:
        return MirrorSizing(False, pct_of_their_balance=pct, skip_reason="No balance of input token")

    available = our_balance
    if swap.input_is_native:
        available = our_balance - policy.native_fee_reserve
        if available <= 0:
            return MirrorSizing(
                False,
                pct_of_their_balance=pct,
                skip_reason=f"Insufficient SOL for fees: {our_balance:.6f} <= {policy.native_fee_reserve}",
            )
    else:
        native = our_native_balance if our_native_balance is not None else 0.0
        if native < policy.min_native_reserve:
            return MirrorSizing(
                False,
                pct_of_their_balance=pct,
                skip_reason=f"Insufficient SOL for fees: {native:.6f} < {policy.min_native_reserve}",
            )

    sell_entire = pct > policy.dust_threshold_pct
    if sell_entire:
        amount = available
    elif swap.input_is_native:
        amount = min(our_balance * (job_percentage / 100) * (pct / 100), available)
    else:
        amount = our_balance * (pct / 100)

    floor = policy.min_native_amount if swap.input_is_native else policy.min_token_amount
    if amount < floor:
        if available >= floor:
            amount = floor
        else:
            return MirrorSizing(
                False,
                pct_of_their_balance=pct,
                skip_reason=f"Balance {our_balance:.6f} below minimum trade size {floor}",
            )

    return MirrorSizing(
        True,
        amount=amount,
        sell_entire_balance=sell_entire,
        pct_of_their_balance=pct,
    )
