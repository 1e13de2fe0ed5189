"""Well-known Solana mints and unit conversions."""

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

LAMPORTS_PER_SOL = 1_000_000_000
SOL_DECIMALS = 9
USDC_DECIMALS = 6

# Decimals assumed when valuing holdings; unknown mints fall back to DEFAULT_TOKEN_DECIMALS
KNOWN_DECIMALS: dict[str, int] = {
    SOL_MINT: SOL_DECIMALS,
    USDC_MINT: USDC_DECIMALS,
    USDT_MINT: 6,
}
DEFAULT_TOKEN_DECIMALS = 6

# Price-feed symbols for mints we can price
MINT_SYMBOLS: dict[str, str] = {
    SOL_MINT: "sol",
    USDC_MINT: "usdc",
    USDT_MINT: "usdt",
}

# Balance moves smaller than these are treated as noise when reading a swap
TOKEN_DELTA_EPSILON = 0.000001
NATIVE_DELTA_EPSILON = 0.001


def to_raw(ui_amount: float, decimals: int) -> int:
    """Convert a human amount to integer smallest units (floored)."""
    return int(ui_amount * (10 ** decimals))


def to_ui(raw_amount: int, decimals: int) -> float:
    return raw_amount / (10 ** decimals)
