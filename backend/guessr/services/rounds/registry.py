import threading
import uuid
from functools import partial
from typing import Dict, Optional

from guessr import socketio
from guessr.models import Phase, resolve_mode
from guessr.services.cards.sources import FALLBACK_CARDS, build_sources
from guessr.services.cards.supply import SupplyQueue
from .engine import RoundEngine
from .scheduler import StageScheduler

TERMINAL_PHASES = (Phase.FINISHED, Phase.FAILED)


class RoundRegistry:
    """Live rounds for this process.

    A round is owned by one client: creating a new round for the same
    ``client_id`` (mode re-selection) closes the previous one. A round is
    closed ``ROUND_ABANDON_GRACE_SEC`` after it was last left unwatched
    (created and never joined, or every watching socket gone), and the
    same delay after it reaches ``finished`` or ``failed`` whether or not
    anyone is watching.

    ``scheduler`` and ``sources_factory`` are plain attributes so tests
    can swap in deterministic versions.
    """

    def __init__(self, app=None):
        self._rounds: Dict[str, RoundEngine] = {}
        self._by_client: Dict[str, str] = {}
        self._watchers: Dict[str, int] = {}
        self._abandon_timers = {}
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.config = app.config
        self.logger = app.logger
        self.scheduler = StageScheduler(
            socketio, logger=app.logger, heartbeat_sec=int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
        )
        self.sources_factory = partial(build_sources, app.config)
        self.fallback_cards = FALLBACK_CARDS
        app.extensions['guessr_rounds'] = self

    def durations(self, mode: str) -> dict:
        cfg = self.config
        return {
            'question': int(cfg.get(f"{resolve_mode(mode).upper()}_DURATION_SEC", 20)),
            'reveal': int(cfg.get('REVEAL_DURATION_SEC', 30)),
            'image_watchdog': int(cfg.get('IMAGE_WATCHDOG_SEC', 10)),
        }

    def new_supply(self, batch_size: Optional[int] = None) -> SupplyQueue:
        cfg = self.config
        return SupplyQueue(
            self.sources_factory(),
            self.scheduler,
            fallback_cards=self.fallback_cards,
            low_water=int(cfg.get('QUEUE_LOW_WATER', 6)),
            batch_size=batch_size or int(cfg.get('QUEUE_BATCH_SIZE', 20)),
            attempts_per_source=int(cfg.get('SUPPLY_ATTEMPTS_PER_SOURCE', 1)),
            logger=self.logger,
        )

    def create(self, mode: Optional[str] = None, client_id: Optional[str] = None) -> RoundEngine:
        mode = resolve_mode(mode)
        round_id = uuid.uuid4().hex[:12]
        durations = self.durations(mode)
        engine = RoundEngine(
            round_id,
            mode,
            self.new_supply(),
            self.scheduler,
            round_size=int(self.config.get('ROUND_SIZE', 10)),
            question_seconds=durations['question'],
            reveal_seconds=durations['reveal'],
            watchdog_seconds=durations['image_watchdog'],
            preload_lookahead=int(self.config.get('PRELOAD_LOOKAHEAD', 8)),
            max_image_skips=int(self.config.get('IMAGE_SKIP_LIMIT', 20)),
            on_change=partial(self._on_state, round_id),
            on_preload=partial(self._emit_preload, round_id),
            logger=self.logger,
        )
        with self._lock:
            previous = self._by_client.get(client_id) if client_id else None
            self._rounds[round_id] = engine
            if client_id:
                self._by_client[client_id] = round_id
        if previous:
            self.discard(previous)
        self.logger.info(f"[round-create] round={round_id} mode={mode} client={client_id}")
        # Unwatched until a socket joins
        self._arm_abandon(round_id)
        engine.start()
        return engine

    def get(self, round_id: str) -> Optional[RoundEngine]:
        with self._lock:
            return self._rounds.get(round_id)

    def discard(self, round_id: str) -> bool:
        with self._lock:
            engine = self._rounds.pop(round_id, None)
            for client, rid in list(self._by_client.items()):
                if rid == round_id:
                    del self._by_client[client]
            self._watchers.pop(round_id, None)
            pending = self._abandon_timers.pop(round_id, None)
        if pending:
            pending.cancel()
        if engine is None:
            return False
        engine.close()
        return True

    # ---- Socket watchers ----

    def attach(self, round_id: str) -> None:
        with self._lock:
            self._watchers[round_id] = self._watchers.get(round_id, 0) + 1
            engine = self._rounds.get(round_id)
            if engine is None or engine.state.phase in TERMINAL_PHASES:
                return
            pending = self._abandon_timers.pop(round_id, None)
        if pending:
            pending.cancel()

    def detach(self, round_id: str) -> None:
        with self._lock:
            remaining = max(0, self._watchers.get(round_id, 0) - 1)
            self._watchers[round_id] = remaining
        if not remaining:
            self._arm_abandon(round_id)

    def _arm_abandon(self, round_id: str) -> None:
        grace = int(self.config.get('ROUND_ABANDON_GRACE_SEC', 5))
        handle = self.scheduler.call_later(grace, self._abandon, round_id, name=f"round={round_id} kind=abandon")
        with self._lock:
            if round_id not in self._rounds:
                previous = handle
            else:
                previous = self._abandon_timers.get(round_id)
                self._abandon_timers[round_id] = handle
        if previous:
            previous.cancel()

    def _abandon(self, round_id: str) -> None:
        with self._lock:
            engine = self._rounds.get(round_id)
            if engine is None:
                return
            terminal = engine.state.phase in TERMINAL_PHASES
            if self._watchers.get(round_id, 0) > 0 and not terminal:
                return
            self._abandon_timers.pop(round_id, None)
        if self.discard(round_id):
            tag = 'round-expired' if terminal else 'round-abandoned'
            self.logger.info(f"[{tag}] round={round_id}")

    # ---- Notifications ----

    def _on_state(self, round_id: str, payload: dict) -> None:
        self._emit_state(round_id, payload)
        if payload['phase'] in (Phase.FINISHED.value, Phase.FAILED.value):
            self._arm_abandon(round_id)

    def _emit_state(self, round_id: str, payload: dict) -> None:
        socketio.emit('state_update', payload, to=f"round:{round_id}", namespace='/ws')

    def _emit_preload(self, round_id: str, urls: list) -> None:
        socketio.emit('preload_images', {'round_id': round_id, 'urls': urls}, to=f"round:{round_id}", namespace='/ws')


def get_registry(app) -> RoundRegistry:
    return app.extensions['guessr_rounds']
