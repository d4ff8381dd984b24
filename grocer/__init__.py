"""
grocer — cart reconciliation, pricing and order placement for a grocery storefront.

    from grocer import pricing as P   # Money and discounts
    from grocer import cart as K      # Reconciliation and cart service
    from grocer import promo as PR    # Promotion eligibility
    from grocer import checkout as C  # Quote, commit saga, order lifecycle
    from grocer import store          # Persistence protocols and backends
"""

from grocer import pricing
from grocer import cart
from grocer import promo
from grocer import checkout
from grocer import store
from grocer._errors import ErrorKind, ErrorCode, GrocerError, Errors
from grocer.domain import (
    Product,
    CartLine,
    Cart,
    UsageType,
    Promotion,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Address,
    Order,
)
from grocer.settings import OnPending, Settings
from grocer.storefront import Storefront

__version__ = "0.1.0"

__all__ = (
    "pricing",
    "cart",
    "promo",
    "checkout",
    "store",
    "ErrorKind",
    "ErrorCode",
    "GrocerError",
    "Errors",
    "Product",
    "CartLine",
    "Cart",
    "UsageType",
    "Promotion",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Address",
    "Order",
    "OnPending",
    "Settings",
    "Storefront",
)
