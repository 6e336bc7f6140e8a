"""
Checkout — server validation gate, then order + payment session with rollback.

    from cartsync import checkout as K

    checkout = K.CheckoutOrchestrator(api, store, context=K.CheckoutContext(user_id="u1"))
    outcome = await checkout.begin(K.PaymentProvider.STRIPE)
"""

from __future__ import annotations

from cartsync.checkout._saga import (
    Compensator,
    CompensationError,
    SagaStep,
    Then,
    SagaResult,
    SagaError,
    step,
    from_async,
    run_compensators,
    run_chain,
)
from cartsync.checkout._types import (
    PaymentProvider,
    CheckoutStatus,
    BlockReason,
    ValidatedLine,
    Adjustment,
    Rejection,
    ValidationReport,
    ValidateRequest,
    OrderRequest,
    OrderReceipt,
    SessionRequest,
    CheckoutSession,
    CheckoutContext,
    PendingNotice,
    CheckoutOutcome,
)
from cartsync.checkout._orchestrator import CheckoutApi, CheckoutOrchestrator

__all__ = (
    # Saga
    "Compensator",
    "CompensationError",
    "SagaStep",
    "Then",
    "SagaResult",
    "SagaError",
    "step",
    "from_async",
    "run_compensators",
    "run_chain",
    # Types
    "PaymentProvider",
    "CheckoutStatus",
    "BlockReason",
    "ValidatedLine",
    "Adjustment",
    "Rejection",
    "ValidationReport",
    "ValidateRequest",
    "OrderRequest",
    "OrderReceipt",
    "SessionRequest",
    "CheckoutSession",
    "CheckoutContext",
    "PendingNotice",
    "CheckoutOutcome",
    # Orchestrator
    "CheckoutApi",
    "CheckoutOrchestrator",
)
