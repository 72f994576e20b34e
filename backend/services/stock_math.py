"""
Stochastic price steps shared by the live price generator and history seeding.
"""
import math
import random
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")

# One trading session: 09:30 to 16:00
TRADING_DAY_MINUTES = 390

DRIFT = 0.0


def gbm_step(price: float, volatility: float, dt: float, rng: random.Random | None = None) -> float:
    """Advance ``price`` one geometric Brownian motion step.

    ``dt`` is the step length as a fraction of a trading day. Drift is fixed at
    zero; the normal draw comes from a Box-Muller transform of two uniforms.
    Returns the new price rounded to 2 decimals.
    """
    rng = rng or random
    u1 = 1.0 - rng.random()  # (0, 1], keeps log() finite
    u2 = rng.random()
    z = math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)

    change = math.exp((DRIFT - 0.5 * volatility * volatility) * dt + volatility * math.sqrt(dt) * z)
    return round(price * change, 2)


def uniform_step(price: Decimal, volatility: float, rng: random.Random | None = None) -> Decimal:
    """Perturb ``price`` by a uniform fraction in [-volatility, +volatility]."""
    rng = rng or random
    perturbation = rng.uniform(-volatility, volatility)
    return to_price(price * (Decimal(1) + Decimal(repr(perturbation))))


def to_price(value) -> Decimal:
    """Quantize a number to cents."""
    if not isinstance(value, Decimal):
        value = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def floor_price(value: Decimal, min_price: Decimal) -> Decimal:
    return max(to_price(value), to_price(min_price))
