from decimal import Decimal, InvalidOperation

from .instructions import LAMPORTS_PER_SOL


def sol_to_lamports(amount: str) -> int:
    """Convert a SOL amount such as "1.5" or "1.5 SOL" to lamports."""
    text = str(amount).strip()
    if text.upper().endswith("SOL"):
        text = text[:-3].strip()
    try:
        value = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Invalid SOL amount '{amount}'") from None
    if not value.is_finite():
        raise ValueError(f"Invalid SOL amount '{amount}'")
    lamports = value * LAMPORTS_PER_SOL
    if value < 0 or lamports != lamports.to_integral_value():
        raise ValueError(f"Invalid SOL amount '{amount}'")
    return int(lamports)


def lamports_to_sol(lamports: int) -> str:
    sol = (Decimal(lamports) / LAMPORTS_PER_SOL).normalize()
    return f"{sol:f} SOL"
