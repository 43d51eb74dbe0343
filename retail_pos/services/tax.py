"""
Tax policies.

A tax policy is any callable taking a subtotal in cents and returning the
tax in cents. The sales service never looks inside it.
"""
from __future__ import annotations

from typing import Callable

from flask import current_app

TaxPolicy = Callable[[int], int]


def flat_rate_tax(rate_bps: int) -> TaxPolicy:
    """Percentage of the subtotal, rounded half-up to the cent (800 bps = 8%)."""
    if rate_bps < 0:
        raise ValueError("rate_bps must be >= 0")

    def _tax(subtotal_cents: int) -> int:
        return (subtotal_cents * rate_bps + 5_000) // 10_000

    return _tax


def no_tax(subtotal_cents: int) -> int:
    return 0


def default_tax_policy() -> TaxPolicy:
    rate_bps = current_app.config.get("TAX_RATE_BPS", 0)
    if not rate_bps:
        return no_tax
    return flat_rate_tax(rate_bps)
