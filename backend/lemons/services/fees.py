"""Platform fee calculation"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.orm import Session

from lemons.core.config import settings
from lemons.core.metrics import fee_lookup_fallbacks_counter
from lemons.models.account import Account, SubscriptionTier

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10000


def tier_fee_bps(tier: Optional[str]) -> Optional[int]:
    """Fee rate for a subscription tier, None for an unknown tier"""
    rates = {
        SubscriptionTier.FREE: settings.FREE_TIER_FEE_BPS,
        SubscriptionTier.PRO: settings.PRO_TIER_FEE_BPS,
        SubscriptionTier.BUSINESS: settings.BUSINESS_TIER_FEE_BPS,
    }
    return rates.get(tier)


def calculate_platform_fee(amount_minor: int, fee_bps: int) -> int:
    """Platform fee in minor units: round(amount * bps / 10000), halves rounded up.

    Args:
        amount_minor: Charge amount in minor currency units (e.g. cents)
        fee_bps: Fee rate in basis points

    Returns:
        Non-negative integer fee in minor units
    """
    if amount_minor < 0 or fee_bps < 0:
        raise ValueError("Amount and fee rate must be non-negative")
    fee = (Decimal(amount_minor) * Decimal(fee_bps) / Decimal(BPS_DENOMINATOR)).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(fee)


def lookup_fee_bps(seller_id: str, db: Session) -> int:
    """Seller's fee rate in basis points, derived from their subscription tier.

    Never fails: any lookup problem degrades to DEFAULT_PLATFORM_FEE_BPS so
    checkout is not blocked by a fee-lookup outage.
    """
    try:
        tier = db.query(Account.subscription_tier).filter(Account.id == seller_id).scalar()
        bps = tier_fee_bps(tier)
        if bps is not None:
            return bps
        logger.warning(f"No fee rate for seller {seller_id} (tier={tier}), using default")
    except Exception as e:
        db.rollback()
        logger.warning(f"Fee rate lookup failed for seller {seller_id}, using default: {e}")

    fee_lookup_fallbacks_counter.inc()
    return settings.DEFAULT_PLATFORM_FEE_BPS
