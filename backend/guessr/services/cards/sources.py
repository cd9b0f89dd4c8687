"""Card sources: the providers behind the supply queue, in fallback order.

A source only knows how to pull one page of raw records from its API and
how to normalize a record. Anything that goes wrong on the wire is
reported as ``TransientSupplyFailure`` so the queue can fall through to
the next source.
"""

import random
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from guessr.errors import TransientSupplyFailure
from guessr.models import Card
from .normalize import normalize_gbif_occurrence, normalize_inat_observation

# Lower bound per request; small pages repeat too often.
MIN_PAGE = 60


class CardSource(ABC):
    name = 'source'

    @abstractmethod
    def fetch_batch(self, count: int) -> List[Dict[str, Any]]:
        """Return up to ``count`` raw records (may return fewer or none)."""

    @abstractmethod
    def normalize(self, record: Dict[str, Any]) -> Optional[Card]:
        pass


class HttpCardSource(CardSource):
    """Shared request/decoding logic for JSON search APIs."""

    max_page = 100
    user_agent = 'animal-guessr/1.0'

    def __init__(self, url: str, timeout: float = 10, session: Optional[requests.Session] = None, rng=None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.rng = rng or random.Random()

    def page_size(self, count: int) -> int:
        return min(max(count, MIN_PAGE), self.max_page)

    @abstractmethod
    def params(self, count: int) -> List[tuple]:
        pass

    def fetch_batch(self, count):
        try:
            res = self.session.get(
                self.url,
                params=self.params(count),
                timeout=self.timeout,
                headers={'Accept': 'application/json', 'User-Agent': self.user_agent},
            )
        except requests.RequestException as exc:
            raise TransientSupplyFailure(self.name, f"request failed: {exc}") from exc
        if res.status_code != 200:
            raise TransientSupplyFailure(self.name, f"HTTP {res.status_code}")
        try:
            payload = res.json()
        except ValueError as exc:
            raise TransientSupplyFailure(self.name, 'malformed JSON') from exc
        results = payload.get('results') if isinstance(payload, dict) else None
        if not isinstance(results, list):
            raise TransientSupplyFailure(self.name, "payload has no 'results' list")
        return results


class GBIFSource(HttpCardSource):
    """Random window of animal occurrences with still images.

    kingdomKey=1 is Animalia; hasCoordinate filters out a lot of junk.
    GBIF has no random ordering, so the offset is randomized instead.
    """

    name = 'gbif'
    max_page = 120
    max_offset = 200000

    def params(self, count):
        return [
            ('kingdomKey', '1'),
            ('mediaType', 'StillImage'),
            ('hasCoordinate', 'true'),
            ('limit', str(self.page_size(count))),
            ('offset', str(self.rng.randint(0, self.max_offset))),
        ]

    def normalize(self, record):
        return normalize_gbif_occurrence(record)


class INaturalistSource(HttpCardSource):
    """Research grade observations with reusable photo licenses."""

    name = 'inaturalist'
    max_page = 100

    def params(self, count):
        return [
            ('per_page', str(self.page_size(count))),
            ('has[]', 'photos'),
            ('quality_grade', 'research'),
            ('photo_license', 'cc0,cc-by,cc-by-sa,cc-by-nc'),
            ('order_by', 'random'),
            ('order', 'desc'),
            ('locale', 'en'),
            ('preferred_place_id', '1'),
        ]

    def normalize(self, record):
        return normalize_inat_observation(record)


FALLBACK_CARDS = (
    Card(
        image_url='https://upload.wikimedia.org/wikipedia/commons/7/73/Lion_waiting_in_Namibia.jpg',
        common_name='Lion',
        scientific_name='Panthera leo',
        license='CC BY-SA',
        source='https://commons.wikimedia.org',
        attributions=('Wikimedia Commons',),
    ),
    Card(
        image_url='https://upload.wikimedia.org/wikipedia/commons/3/3a/Cat03.jpg',
        common_name='Domestic cat',
        scientific_name='Felis catus',
        license='CC BY-SA',
        source='https://commons.wikimedia.org',
        attributions=('Wikimedia Commons',),
    ),
    Card(
        image_url='https://upload.wikimedia.org/wikipedia/commons/1/16/2012_Vulpes_vulpes_01.jpg',
        common_name='Red fox',
        scientific_name='Vulpes vulpes',
        license='CC BY-SA',
        source='https://commons.wikimedia.org',
        attributions=('Wikimedia Commons',),
    ),
    Card(
        image_url='https://upload.wikimedia.org/wikipedia/commons/6/6e/Okapia_johnstoni_-Marwell_Wildlife%2C_UK-8a.jpg',
        common_name='Okapi',
        scientific_name='Okapia johnstoni',
        license='CC BY-SA',
        source='https://en.wikipedia.org/wiki/Okapi',
        attributions=('Wikimedia contributors',),
    ),
)

SOURCE_CLASSES = {
    GBIFSource.name: GBIFSource,
    INaturalistSource.name: INaturalistSource,
}


def build_sources(config, session: Optional[requests.Session] = None) -> List[CardSource]:
    """Instantiate the configured source chain, in fallback order."""
    names = [n.strip().lower() for n in str(config.get('CARD_SOURCES', '')).split(',') if n.strip()]
    urls = {
        GBIFSource.name: config.get('GBIF_API_URL'),
        INaturalistSource.name: config.get('INAT_API_URL'),
    }
    timeout = int(config.get('PROVIDER_TIMEOUT_SEC', 10))
    session = session or requests.Session()
    sources = []
    for name in names:
        if name not in SOURCE_CLASSES:
            raise KeyError(f"Card source '{name}' not found. Available: {list(SOURCE_CLASSES)}")
        sources.append(SOURCE_CLASSES[name](urls[name], timeout=timeout, session=session))
    return sources
