import logging
import random
import threading
from collections import deque
from typing import Iterable, List, Optional, Sequence

from guessr.errors import TransientSupplyFailure
from guessr.models import Card
from .sources import CardSource

# Ask providers for this many records per card we want; many get rejected.
OVERSIZE_FACTOR = 3


class SupplyQueue:
    """Buffered, de-duplicated pool of cards for one round session.

    Refills walk the source chain in order and stop at the first source
    that contributes at least one new card. When every source comes up
    empty the static fallback pool is used, repeating its cards if the
    session has already seen them all, so a round can always continue
    while that pool is non-empty.

    Only one refill runs at a time. ``ensure(..., wait=True)`` either
    performs the refill inline or waits for the one already in flight.
    """

    def __init__(
        self,
        sources: Sequence[CardSource],
        scheduler,
        fallback_cards: Iterable[Card] = (),
        low_water: int = 6,
        batch_size: int = 20,
        attempts_per_source: int = 1,
        wait_timeout: float = 60,
        rng: Optional[random.Random] = None,
        logger=None,
    ):
        self.sources = list(sources)
        self.fallback_cards = tuple(fallback_cards)
        self.low_water = low_water
        self.batch_size = batch_size
        self.attempts_per_source = max(1, attempts_per_source)
        self.wait_timeout = wait_timeout
        self._scheduler = scheduler
        self._rng = rng or random.Random()
        self._logger = logger or logging.getLogger(__name__)
        self._cards = deque()
        self._seen = set()
        self._lock = threading.Lock()
        self._refill_done = threading.Condition(self._lock)
        self._refilling = False
        self._closed = False

    def __len__(self):
        with self._lock:
            return len(self._cards)

    @property
    def closed(self) -> bool:
        return self._closed

    def ensure(self, min_size: int, wait: bool = False) -> None:
        with self._lock:
            if self._closed or len(self._cards) >= min_size:
                return
            if self._refilling:
                if wait:
                    self._refill_done.wait_for(lambda: not self._refilling, timeout=self.wait_timeout)
                return
            self._refilling = True
        if wait:
            self._refill()
        else:
            self._scheduler.spawn(self._refill)

    def top_up(self) -> None:
        self.ensure(self.low_water)

    def take(self) -> Optional[Card]:
        self.ensure(1, wait=True)
        with self._lock:
            return self._cards.popleft() if self._cards else None

    def peek(self, n: int) -> List[Card]:
        with self._lock:
            return list(self._cards)[:max(0, n)]

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._cards.clear()
            self._refill_done.notify_all()

    def _refill(self) -> List[Card]:
        try:
            return self._collect(self.batch_size)
        finally:
            with self._lock:
                self._refilling = False
                self._refill_done.notify_all()

    def _collect(self, want: int) -> List[Card]:
        for source in self.sources:
            for attempt in range(1, self.attempts_per_source + 1):
                if self._closed:
                    return []
                try:
                    records = source.fetch_batch(want * OVERSIZE_FACTOR)
                except TransientSupplyFailure as exc:
                    self._logger.warning(f"[supply-fail] source={source.name} attempt={attempt} reason={exc.reason}")
                    continue
                cards = [card for card in map(source.normalize, records) if card is not None]
                added = self._accept(cards, want)
                if added:
                    self._logger.info(
                        f"[supply-refill] source={source.name} records={len(records)} normalized={len(cards)} added={len(added)}"
                    )
                    return added
                self._logger.info(f"[supply-empty] source={source.name} attempt={attempt} records={len(records)}")
            self._logger.info(f"[supply-fallback] source={source.name} yielded nothing usable")

        added = self._accept(self.fallback_cards, want)
        if not added:
            added = self._accept(self.fallback_cards, want, allow_repeats=True)
        self._logger.warning(f"[supply-static] using fallback pool added={len(added)}")
        return added

    def _accept(self, cards: Iterable[Card], want: int, allow_repeats: bool = False) -> List[Card]:
        """De-duplicate, shuffle and enqueue up to ``want`` cards."""
        with self._lock:
            if self._closed:
                return []
            queued = {c.image_url for c in self._cards}
            batch_urls = set()
            fresh = []
            for card in cards:
                url = card.image_url
                if not url or not card.common_name:
                    continue
                if url in batch_urls or url in queued:
                    continue
                if url in self._seen and not allow_repeats:
                    continue
                batch_urls.add(url)
                fresh.append(card)
            # Fisher-Yates; hides provider ordering (same taxa clustered together)
            self._rng.shuffle(fresh)
            fresh = fresh[:want]
            self._seen.update(c.image_url for c in fresh)
            self._cards.extend(fresh)
            return fresh
