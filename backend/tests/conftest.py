import heapq
import itertools
import os
import sys
import pytest

# Ensure the backend root (containing the `guessr` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from guessr import create_app, socketio
from guessr.errors import TransientSupplyFailure
from guessr.models import Card
from guessr.services.cards.sources import CardSource
from guessr.services.rounds.scheduler import TimerHandle


ANIMALS = [
    ('Red fox', 'Vulpes vulpes'),
    ('Golden eagle', 'Aquila chrysaetos'),
    ('Snow leopard', 'Panthera uncia'),
    ('Giant panda', 'Ailuropoda melanoleuca'),
    ('Harbor seal', 'Phoca vitulina'),
    ('Barn owl', 'Tyto alba'),
]


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    ROUND_SIZE = 3
    FAST_DURATION_SEC = 10
    NORMAL_DURATION_SEC = 20
    SLOW_DURATION_SEC = 30
    REVEAL_DURATION_SEC = 30
    IMAGE_WATCHDOG_SEC = 10
    IMAGE_SKIP_LIMIT = 20
    QUEUE_LOW_WATER = 2
    QUEUE_BATCH_SIZE = 4
    PRELOAD_LOOKAHEAD = 2
    SUPPLY_ATTEMPTS_PER_SOURCE = 1
    CARD_SOURCES = 'gbif,inaturalist'
    PROVIDER_TIMEOUT_SEC = 1
    GBIF_API_URL = 'https://gbif.test/v1/occurrence/search'
    INAT_API_URL = 'https://inat.test/v1/observations'
    ROUND_ABANDON_GRACE_SEC = 5
    TIMER_HEARTBEAT_SEC = 0


class ManualScheduler:
    """Deterministic scheduler: time only moves when a test calls advance().

    Spawned work runs immediately unless ``defer_spawn`` is set, in which
    case it waits in ``tasks`` until ``run_tasks()``.
    """

    def __init__(self):
        self.now = 0.0
        self.defer_spawn = False
        self.tasks = []
        self._pending = []
        self._seq = itertools.count()

    def call_later(self, delay, callback, *args, name='timer'):
        handle = TimerHandle(name, delay)
        heapq.heappush(self._pending, (self.now + delay, next(self._seq), handle, callback, args))
        return handle

    def spawn(self, fn, *args):
        if self.defer_spawn:
            self.tasks.append((fn, args))
        else:
            fn(*args)

    def run_tasks(self):
        tasks, self.tasks = self.tasks, []
        for fn, args in tasks:
            fn(*args)

    def advance(self, seconds):
        target = self.now + seconds
        while self._pending and self._pending[0][0] <= target:
            due, _, handle, callback, args = heapq.heappop(self._pending)
            self.now = due
            if not handle.cancelled:
                callback(*args)
        self.now = target

    def active(self, kind=None):
        return [
            entry[2] for entry in self._pending
            if not entry[2].cancelled and (kind is None or entry[2].name.endswith(f"kind={kind}"))
        ]


def build_card(n, name=None, scientific=None):
    common, sci = ANIMALS[n % len(ANIMALS)]
    return Card(
        image_url=f"https://img.test/{n}.jpg",
        common_name=common if name is None else name,
        scientific_name=sci if scientific is None else scientific,
        license='CC BY',
        source=f"https://obs.test/{n}",
        attributions=('Observer: tester', 'iNaturalist'),
    )


class StubSource(CardSource):
    """Card source whose records are already Cards.

    ``batches`` are returned in order, one per call; after that each call
    returns ``count`` brand new cards when ``endless`` is set, else [].
    ``error`` makes every call raise TransientSupplyFailure.
    """

    _numbers = itertools.count(1000)

    def __init__(self, name='stub', batches=None, endless=False, error=None):
        self.name = name
        self.batches = list(batches or [])
        self.endless = endless
        self.error = error
        self.calls = []

    def fetch_batch(self, count):
        self.calls.append(count)
        if self.error:
            raise TransientSupplyFailure(self.name, self.error)
        if self.batches:
            return self.batches.pop(0)
        if self.endless:
            return [build_card(next(self._numbers)) for _ in range(count)]
        return []

    def normalize(self, record):
        return record if isinstance(record, Card) else None


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def make_card():
    return build_card


@pytest.fixture()
def stub_source():
    return StubSource


@pytest.fixture()
def card_sources():
    return [StubSource('primary', endless=True)]


@pytest.fixture()
def flask_app(scheduler, card_sources):
    application = create_app(TestConfig)
    registry = application.extensions['guessr_rounds']
    registry.scheduler = scheduler
    registry.sources_factory = lambda: list(card_sources)
    with application.app_context():
        yield application
        for round_id in list(registry._rounds):
            registry.discard(round_id)


@pytest.fixture()
def registry(flask_app):
    return flask_app.extensions['guessr_rounds']


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
