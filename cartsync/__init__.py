"""
cartsync — offline-first shopping cart with versioned remote sync.

    from cartsync import store as S      # Local cart state + durable mirror
    from cartsync import pricing as P    # Totals and discount codes
    from cartsync import sync as Y       # Push/pull, echo suppression, merge
    from cartsync import checkout as K   # Validation gate + order saga
"""

from cartsync import model
from cartsync import pricing
from cartsync import timers
from cartsync import store
from cartsync import sync
from cartsync import crosssell
from cartsync import analytics
from cartsync import estimate
from cartsync import checkout
from cartsync import transport
from cartsync._types import (
    Lazy,
    Pure,
    Clock,
    IdFactory,
    LineKey,
    LCR,
    NoError,
)
from cartsync.config import CartSettings, load_settings
from cartsync.engine import CartEngine
from cartsync.errors import CartError, CartErrorKind, CartErrors

__version__ = "0.1.0"

__all__ = (
    "model",
    "pricing",
    "timers",
    "store",
    "sync",
    "crosssell",
    "analytics",
    "estimate",
    "checkout",
    "transport",
    "Lazy",
    "Pure",
    "Clock",
    "IdFactory",
    "LineKey",
    "LCR",
    "NoError",
    "CartSettings",
    "load_settings",
    "CartEngine",
    "CartError",
    "CartErrorKind",
    "CartErrors",
)
