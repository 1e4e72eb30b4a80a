from decimal import ROUND_HALF_UP, Decimal

from consultation_scheduler.core import config

CENT = Decimal('0.01')


def round_money(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def default_price(duration_minutes: int) -> Decimal:
    # SESSION_PRICE is quoted per 60 minutes
    return round_money(config.SESSION_PRICE * duration_minutes / 60)
