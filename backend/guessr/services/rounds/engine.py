import logging
import threading
from typing import Callable, Optional

from guessr.models import HistoryEntry, Phase, RoundState
from .scoring import score

# Timer kinds
QUESTION = 'question'
REVEAL = 'reveal'
WATCHDOG = 'watchdog'

EMPTY_SUPPLY_MESSAGE = 'No cards available. Try again.'
IMAGES_FAILED_MESSAGE = 'Images failed to load. Try again.'


class RoundEngine:
    """State machine for one timed round.

    loading -> question (waiting for image) -> question (countdown)
    -> revealed (countdown) -> question | finished

    Every entry point and every timer callback takes the engine lock, so
    transitions are applied one at a time. Timers are cancelled on each
    phase change by bumping a per-kind generation number; a callback
    carrying an older generation does nothing. Image signals name the
    image they are about, and one that does not match the current card is
    ignored, so a late image_error or watchdog cannot skip the card that
    already replaced its target.

    At most ``max_image_skips`` cards are skipped in a row before the round
    fails; a loaded image or a scored question resets the count.
    """

    def __init__(
        self,
        round_id: str,
        mode: str,
        supply,
        scheduler,
        round_size: int = 10,
        question_seconds: int = 20,
        reveal_seconds: int = 30,
        watchdog_seconds: int = 10,
        preload_lookahead: int = 8,
        max_image_skips: int = 20,
        on_change: Optional[Callable[[dict], None]] = None,
        on_preload: Optional[Callable[[list], None]] = None,
        logger=None,
    ):
        self.supply = supply
        self.scheduler = scheduler
        self.question_seconds = question_seconds
        self.reveal_seconds = reveal_seconds
        self.watchdog_seconds = watchdog_seconds
        self.preload_lookahead = preload_lookahead
        self.max_image_skips = max_image_skips
        self.state = RoundState(
            round_id=round_id,
            mode=mode,
            round_size=round_size,
            question_time_left=question_seconds,
            post_reveal_time_left=reveal_seconds,
        )
        self._on_change = on_change
        self._on_preload = on_preload
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._timers = {}
        self._generations = {QUESTION: 0, REVEAL: 0, WATCHDOG: 0}
        self._skips = 0
        self._started = False
        self._closed = False

    @property
    def round_id(self) -> str:
        return self.state.round_id

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> dict:
        with self._lock:
            return self.state.to_dict()

    # ---- Transition entry points ----

    def start(self) -> bool:
        with self._lock:
            if self._closed or self._started:
                return False
            self._started = True
            self._enter_question()
            return True

    def set_guess(self, text: str) -> bool:
        with self._lock:
            if self._closed or self.state.phase != Phase.QUESTION:
                return False
            self.state.guess = text or ''
            return True

    def submit_guess(self, guess: Optional[str] = None) -> bool:
        """Score the current question. Ignored unless a question is open."""
        with self._lock:
            if self._closed or self.state.phase != Phase.QUESTION or self.state.current_card is None:
                return False
            if guess is not None:
                self.state.guess = guess
            self._reveal()
            return True

    def request_next(self) -> bool:
        with self._lock:
            if self._closed or self.state.phase != Phase.REVEALED:
                return False
            self._advance_after_reveal()
            return True

    def image_ready(self, image_url: Optional[str] = None) -> bool:
        with self._lock:
            st = self.state
            if self._closed or st.phase != Phase.QUESTION or st.image_ready:
                return False
            if not self._is_current_image(image_url):
                return False
            self._disarm(WATCHDOG)
            self._skips = 0
            st.image_ready = True
            st.question_time_left = self.question_seconds
            self._arm(QUESTION, 1, self._on_question_tick)
            self._logger.info(
                f"[timer-set] round={self.round_id} kind=question q={st.question_index} duration={self.question_seconds}s"
            )
            self._notify()
            return True

    def image_error(self, image_url: Optional[str] = None) -> bool:
        with self._lock:
            if self._closed or self.state.phase != Phase.QUESTION:
                return False
            if not self._is_current_image(image_url):
                return False
            return self._skip_card('image-error')

    def close(self) -> None:
        """Cancel every timer and release the card queue. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._cancel_timers()
            self._closed = True
            self.supply.close()
            self._logger.info(f"[round-closed] round={self.round_id} phase={self.state.phase.value}")

    # ---- Timer callbacks ----

    def _on_watchdog(self, generation: int) -> None:
        with self._lock:
            if not self._is_live(WATCHDOG, generation):
                self._logger.info(f"[timer-abort] round={self.round_id} kind=watchdog stale")
                return
            self._timers.pop(WATCHDOG, None)
            if self.state.phase != Phase.QUESTION or self.state.image_ready:
                return
            self._skip_card('watchdog')

    def _on_question_tick(self, generation: int) -> None:
        with self._lock:
            if not self._is_live(QUESTION, generation):
                self._logger.info(f"[timer-abort] round={self.round_id} kind=question stale")
                return
            st = self.state
            st.question_time_left = max(0, st.question_time_left - 1)
            if st.question_time_left == 0:
                self._timers.pop(QUESTION, None)
                self._logger.info(f"[timer-fire] round={self.round_id} kind=question q={st.question_index} auto-submit")
                self._reveal()
                return
            self._arm(QUESTION, 1, self._on_question_tick)
            self._notify()

    def _on_reveal_tick(self, generation: int) -> None:
        with self._lock:
            if not self._is_live(REVEAL, generation):
                self._logger.info(f"[timer-abort] round={self.round_id} kind=reveal stale")
                return
            st = self.state
            st.post_reveal_time_left = max(0, st.post_reveal_time_left - 1)
            if st.post_reveal_time_left == 0:
                self._timers.pop(REVEAL, None)
                self._logger.info(f"[timer-fire] round={self.round_id} kind=reveal q={st.question_index} auto-next")
                self._advance_after_reveal()
                return
            self._arm(REVEAL, 1, self._on_reveal_tick)
            self._notify()

    # ---- Transitions (lock held) ----

    def _enter_question(self) -> None:
        self._cancel_timers()
        st = self.state
        st.phase = Phase.LOADING
        st.current_card = None
        st.guess = ''
        st.image_ready = False
        st.question_time_left = self.question_seconds
        st.post_reveal_time_left = self.reveal_seconds
        if len(self.supply) == 0:
            # Blocking fetch ahead; let the client show a loading state
            self._notify()

        card = self.supply.take()
        if card is None:
            st.phase = Phase.FAILED
            st.error = EMPTY_SUPPLY_MESSAGE
            self._logger.error(f"[supply-exhausted] round={self.round_id} q={st.question_index}")
            self._notify()
            return

        st.current_card = card
        st.phase = Phase.QUESTION
        self._arm(WATCHDOG, self.watchdog_seconds, self._on_watchdog)
        self.supply.top_up()
        self._preload()
        self._logger.info(f"[question] round={self.round_id} q={st.question_index} image={card.image_url}")
        self._notify()

    def _reveal(self) -> None:
        self._disarm(QUESTION)
        self._disarm(WATCHDOG)
        self._skips = 0
        st = self.state
        card = st.current_card
        points, exact = score(card.common_name, st.guess)
        st.history.append(HistoryEntry.record(card, st.guess, exact, points))
        st.points += points
        st.phase = Phase.REVEALED
        st.post_reveal_time_left = self.reveal_seconds
        self._arm(REVEAL, 1, self._on_reveal_tick)
        self._logger.info(
            f"[reveal] round={self.round_id} q={st.question_index} points={points} exact={exact} total={st.points}"
        )
        self._notify()

    def _advance_after_reveal(self) -> None:
        self._disarm(REVEAL)
        st = self.state
        if st.is_last_question:
            self._cancel_timers()
            st.phase = Phase.FINISHED
            self.supply.close()
            self._logger.info(f"[finish] round={self.round_id} points={st.points} questions={len(st.history)}")
            self._notify()
            return
        st.question_index += 1
        self._enter_question()

    def _skip_card(self, reason: str) -> bool:
        st = self.state
        card = st.current_card
        self._skips += 1
        self._logger.info(
            f"[image-skip] round={self.round_id} q={st.question_index} reason={reason} "
            f"skips={self._skips} image={card.image_url if card else None}"
        )
        if self._skips > self.max_image_skips:
            self._cancel_timers()
            st.phase = Phase.FAILED
            st.current_card = None
            st.error = IMAGES_FAILED_MESSAGE
            self._logger.error(f"[image-skip-limit] round={self.round_id} q={st.question_index} skips={self._skips}")
            self._notify()
            return True
        self._enter_question()
        return True

    # ---- Helpers ----

    def _is_current_image(self, image_url: Optional[str]) -> bool:
        card = self.state.current_card
        return card is not None and (image_url is None or image_url == card.image_url)

    def _arm(self, kind: str, delay: float, callback: Callable[[int], None]) -> None:
        self._disarm(kind)
        generation = self._generations[kind]
        self._timers[kind] = self.scheduler.call_later(
            delay, callback, generation, name=f"round={self.round_id} kind={kind}"
        )

    def _disarm(self, kind: str) -> None:
        handle = self._timers.pop(kind, None)
        if handle is not None:
            handle.cancel()
        self._generations[kind] += 1

    def _cancel_timers(self) -> None:
        for kind in (QUESTION, REVEAL, WATCHDOG):
            self._disarm(kind)

    def _is_live(self, kind: str, generation: int) -> bool:
        return not self._closed and self._generations[kind] == generation

    def _notify(self) -> None:
        if self._on_change:
            self._on_change(self.state.to_dict())

    def _preload(self) -> None:
        if not self._on_preload or self.preload_lookahead <= 0:
            return
        urls = [c.image_url for c in self.supply.peek(self.preload_lookahead)]
        if urls:
            self._on_preload(urls)
