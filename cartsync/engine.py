"""
CartEngine — wires every cart component around one LocalCartStore.

    engine = CartEngine.in_memory(service)
    engine.start()                       # inside the running loop
    engine.store.add_item(product)
    await engine.sign_in("u1")           # analytics identity → merge → sync
    outcome = await engine.checkout.begin(PaymentProvider.STRIPE)
    await engine.close()

Sign-in order matters: the guest/server merge runs before the live
subscription is attached, so the first delivered snapshot cannot race it.
"""

from __future__ import annotations

import random
from dataclasses import replace as dc_replace
from typing import Protocol

from kungfu import Error, Ok, Result

from cartsync._types import Clock, IdFactory, Unsubscribe, new_line_id, now_ms
from cartsync.analytics import AnalyticsBuffer, AnalyticsScope, EventSink
from cartsync.checkout import (
    CheckoutApi,
    CheckoutContext,
    CheckoutOrchestrator,
    PaymentProvider,
)
from cartsync.config import CartSettings, load_settings
from cartsync.crosssell import CrossSellSampler, ProductCatalog
from cartsync.errors import CartError
from cartsync.estimate import EstimateApi, EstimateDebouncer, HeartbeatApi, HeartbeatMonitor
from cartsync.model import DiscountCode
from cartsync.observability import configure_logging, get_logger
from cartsync.pricing import DiscountCatalog, DiscountSource, load_catalog
from cartsync.store import KeyValueStore, LocalCartStore, MemoryKeyValueStore, client_id
from cartsync.sync import CartApi, DocumentChannel, MergeOutcome, SyncCoordinator
from cartsync.transport import InMemoryCartService

logger = get_logger("cartsync.engine")


class CartBackend(CartApi, CheckoutApi, EstimateApi, HeartbeatApi, Protocol):
    """One service object answering every cart endpoint (HttpCartApi does)."""


class CartEngine:
    def __init__(
        self,
        settings: CartSettings,
        kv: KeyValueStore,
        *,
        api: CartBackend,
        channel: DocumentChannel,
        sink: EventSink,
        catalog: ProductCatalog,
        discounts: DiscountSource | None = None,
        clock: Clock = now_ms,
        id_factory: IdFactory = new_line_id,
        rng: random.Random | None = None,
    ) -> None:
        configure_logging(settings.log_level, settings.log_format)
        self._settings = settings
        self._discount_source = discounts
        self._discounts = DiscountCatalog()
        self._unwatch: Unsubscribe | None = None

        self.analytics = AnalyticsBuffer(
            sink,
            kv,
            storage_key=settings.events_storage_key,
            flush_delay=settings.analytics_flush_seconds,
            clock=clock,
        )
        self.store = LocalCartStore(
            kv,
            storage_key=settings.cart_storage_key,
            default_currency=settings.default_currency,
            events=self.analytics,
            clock=clock,
            id_factory=id_factory,
        )
        self.store.load()

        self.sync = SyncCoordinator(
            self.store,
            api,
            channel,
            client_id=client_id(kv, settings.client_id_storage_key),
            push_delay=settings.push_debounce_seconds,
            events=self.analytics,
        )
        self.crosssell = CrossSellSampler(
            catalog,
            limit=settings.crosssell_limit,
            per_category=settings.crosssell_per_category,
            max_categories=settings.crosssell_max_categories,
            pool_size=settings.crosssell_pool_size,
            rng=rng,
        )
        self.estimates = EstimateDebouncer(
            api,
            self.store,
            delay=settings.estimate_debounce_seconds,
            events=self.analytics,
        )
        self.heartbeat = HeartbeatMonitor(
            api,
            self.store,
            interval=settings.heartbeat_interval_seconds,
            events=self.analytics,
            user_id_provider=lambda: self.sync.user_id,
        )
        self.checkout = CheckoutOrchestrator(
            api,
            self.store,
            events=self.analytics,
            highlight_clear=settings.highlight_clear_seconds,
        )

    @classmethod
    def in_memory(
        cls,
        service: InMemoryCartService,
        *,
        settings: CartSettings | None = None,
        kv: KeyValueStore | None = None,
        clock: Clock = now_ms,
        rng: random.Random | None = None,
    ) -> CartEngine:
        """Every collaborator played by one in-process service."""
        return cls(
            settings or load_settings(),
            kv or MemoryKeyValueStore(),
            api=service,
            channel=service,
            sink=service,
            catalog=service,
            discounts=service,
            clock=clock,
            rng=rng,
        )

    # ─── Introspection ─────────────────────────────────────────────────────────

    @property
    def settings(self) -> CartSettings:
        return self._settings

    @property
    def discounts(self) -> DiscountCatalog:
        return self._discounts

    @property
    def user_id(self) -> str | None:
        return self.sync.user_id

    # ─── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the state-driven side effects. Needs a running loop."""
        if self._unwatch is not None:
            return
        self._unwatch = self.crosssell.watch(self.store)
        self.estimates.start()
        self.heartbeat.start()

    async def sign_in(self, user_id: str) -> Result[MergeOutcome, CartError]:
        await self.analytics.set_identity(user_id)
        self.checkout.set_context(_with_user(self.checkout.context, user_id))

        merged = await self.sync.merge_on_sign_in(user_id)
        self.sync.attach(user_id)
        await self.load_discounts()

        match merged:
            case Ok(outcome):
                logger.info("engine.signed_in", user_id=user_id, merge=outcome.kind.name)
            case Error(e):
                logger.warning("engine.sign_in_merge_failed", user_id=user_id, error=str(e))
        return merged

    async def sign_out(self) -> None:
        user_id = self.sync.user_id
        self.sync.detach()
        await self.analytics.flush()
        await self.analytics.set_identity(None)
        self.checkout.set_context(_with_user(self.checkout.context, None))
        self._discounts = DiscountCatalog()
        logger.info("engine.signed_out", user_id=user_id)

    def set_seller(
        self,
        seller_user_id: str | None,
        site_id: str | None = None,
        *,
        allowed_providers: frozenset[PaymentProvider] = frozenset(PaymentProvider),
    ) -> None:
        """Scope analytics and checkout to the storefront being shopped."""
        self.analytics.set_scope(AnalyticsScope(seller_user_id=seller_user_id, site_id=site_id))
        self.checkout.set_context(
            CheckoutContext(
                user_id=self.checkout.context.user_id,
                seller_user_id=seller_user_id,
                site_id=site_id,
                allowed_providers=allowed_providers,
            )
        )

    async def close(self) -> None:
        """Cancel timers, detach sync, flush analytics."""
        if self._unwatch is not None:
            self._unwatch()
            self._unwatch = None
        self.estimates.stop()
        self.heartbeat.stop()
        self.checkout.close()
        self.sync.detach()
        await self.crosssell.settle()
        await self.analytics.flush()

    # ─── Discounts ─────────────────────────────────────────────────────────────

    async def load_discounts(self) -> Result[DiscountCatalog, CartError]:
        user_id = self.sync.user_id
        if self._discount_source is None or user_id is None:
            return Ok(self._discounts)
        match await load_catalog(self._discount_source, user_id, self.checkout.context.site_id):
            case Ok(catalog):
                self._discounts = catalog
                return Ok(catalog)
            case Error(e):
                logger.warning("engine.discounts_failed", error=str(e))
                return Error(e)

    def apply_code(self, code: str) -> Result[DiscountCode, CartError]:
        match self.store.apply_code(self._discounts, code):
            case Ok(applied):
                return Ok(applied)
            case Error(e):
                self.analytics.emit("cart_promo_rejected", {"code": code, "reason": e.reason})
                return Error(e)


def _with_user(context: CheckoutContext, user_id: str | None) -> CheckoutContext:
    return dc_replace(context, user_id=user_id)


__all__ = ("CartBackend", "CartEngine")
