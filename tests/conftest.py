import itertools

import pytest

from cartsync.model import DiscountCode, DiscountKind, Product
from cartsync.store import LocalCartStore, MemoryKeyValueStore
from cartsync.transport import InMemoryCartService


class FakeClock:
    """Epoch-ms clock that advances 10ms per read unless frozen."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 10):
        self.now = start
        self.step = step

    def __call__(self) -> int:
        self.now += self.step
        return self.now


class RecordingEvents:
    def __init__(self):
        self.events = []

    def emit(self, name, payload=None):
        self.events.append((name, dict(payload or {})))

    def names(self):
        return [name for name, _ in self.events]

    def named(self, name):
        return [payload for n, payload in self.events if n == name]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ids():
    counter = itertools.count(1)
    return lambda: f"line-{next(counter)}"


@pytest.fixture
def events():
    return RecordingEvents()


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv, events, clock, ids):
    return LocalCartStore(kv, events=events, clock=clock, id_factory=ids)


@pytest.fixture
def mug():
    return Product("p-mug", "Mug", 1000, image="mug.png", category="kitchen", stock=5,
                   weight_grams=400, tax_code="general")


@pytest.fixture
def tea():
    return Product("p-tea", "Tea", 450, category="kitchen", stock=20, weight_grams=100)


@pytest.fixture
def lamp():
    return Product("p-lamp", "Lamp", 3200, category="lighting", weight_grams=1500)


@pytest.fixture
def save10():
    return DiscountCode("SAVE10", DiscountKind.PERCENT, 10)


@pytest.fixture
def five_off():
    return DiscountCode("FIVEOFF", DiscountKind.FIXED_AMOUNT, 500)


@pytest.fixture
def service(clock, mug, tea, lamp, save10, five_off):
    kettle = Product("p-kettle", "Kettle", 2500, category="kitchen", stock=3)
    pan = Product("p-pan", "Pan", 1800, category="kitchen")
    bulb = Product("p-bulb", "Bulb", 300, category="lighting")
    return InMemoryCartService(
        products=[mug, tea, lamp, kettle, pan, bulb],
        global_discounts=[save10],
        site_discounts={"site-1": [five_off]},
        connected_sellers=["seller-1"],
        clock=clock,
    )
