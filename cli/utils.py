"""
Shared CLI utilities.
"""
from decimal import Decimal
from typing import Optional

from core.config import PRICE_IMPACT_HIGH, PRICE_IMPACT_WARNING


def prompt(prompt_text: str) -> str:
    """Prompt user for input with EOF handling."""
    try:
        return input(prompt_text)
    except EOFError:
        return ""


def input_float(prompt_text: str, default: Optional[float] = None) -> Optional[float]:
    """Prompt for float input with validation. Empty input returns the default."""
    val = prompt(prompt_text).strip()
    try:
        if val == "":
            return default
        return float(val)
    except ValueError:
        print("Invalid number.")
        return None


def input_yes(prompt_text: str, default: bool = False) -> bool:
    val = prompt(prompt_text).strip().lower()
    if val == "":
        return default
    return val in {"y", "yes"}


def impact_label(percent: float) -> str:
    if percent >= PRICE_IMPACT_HIGH:
        return "high"
    if percent >= PRICE_IMPACT_WARNING:
        return "elevated"
    return "low"


def format_units(amount: Decimal, places: int = 8) -> str:
    text = f"{amount:.{places}f}".rstrip("0").rstrip(".")
    return text or "0"
