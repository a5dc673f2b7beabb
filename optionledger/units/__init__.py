"""
Units module - Pure functions for option and offer contracts.

- Option units (calls/puts) with fully collateralized physical delivery
- Offer units that escrow an option's holder-right for resale

All unit factories and related functions are re-exported here for convenience.
"""

# Option units
from .option import (
    STATUS_CREATED,
    STATUS_INITED,
    STATUS_SOLD,
    STATUS_CANCELLED,
    STATUS_EXERCISED,
    STATUS_WITHDRAWN,
    compute_strike_value,
    option_legs,
    create_option_unit,
    compute_init,
    compute_buy,
    compute_adjust_premium,
    compute_transfer,
    compute_cancel,
    compute_exercise,
    compute_withdraw,
    get_option_status,
    get_option_intrinsic_value,
    get_option_moneyness,
    compute_fair_premium,
)

# Offer units
from .offer import (
    create_offer_unit,
    compute_accept,
    compute_cancel_offer,
    get_offer_status,
)

__all__ = [
    # Options
    'STATUS_CREATED', 'STATUS_INITED', 'STATUS_SOLD', 'STATUS_CANCELLED',
    'STATUS_EXERCISED', 'STATUS_WITHDRAWN',
    'compute_strike_value', 'option_legs', 'create_option_unit',
    'compute_init', 'compute_buy', 'compute_adjust_premium', 'compute_transfer',
    'compute_cancel', 'compute_exercise', 'compute_withdraw',
    'get_option_status', 'get_option_intrinsic_value', 'get_option_moneyness',
    'compute_fair_premium',
    # Offers
    'create_offer_unit', 'compute_accept', 'compute_cancel_offer', 'get_offer_status',
]
