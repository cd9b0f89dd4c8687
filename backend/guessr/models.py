from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class Phase(str, Enum):
    LOADING = 'loading'
    QUESTION = 'question'
    REVEALED = 'revealed'
    FINISHED = 'finished'
    FAILED = 'failed'  # supply exhausted; client shows "try again"


MODES = ('fast', 'normal', 'slow')
DEFAULT_MODE = 'normal'


def resolve_mode(mode: Optional[str]) -> str:
    """Normalize a requested speed mode, falling back to normal."""
    mode = (mode or DEFAULT_MODE).strip().lower()
    return mode if mode in MODES else DEFAULT_MODE


@dataclass(frozen=True)
class Card:
    image_url: str
    common_name: str
    scientific_name: str
    license: str
    source: str
    attributions: Tuple[str, ...] = ()

    def to_dict(self, reveal=True):
        payload = {
            'imageUrl': self.image_url,
            'license': self.license,
            'source': self.source,
            'attributions': list(self.attributions),
        }
        if reveal:
            payload['commonName'] = self.common_name
            payload['scientificName'] = self.scientific_name
        return payload


@dataclass(frozen=True)
class HistoryEntry:
    image_url: str
    common_name: str
    scientific_name: str
    source: str
    license: str
    attributions: Tuple[str, ...]
    guess: str
    correct: bool
    points: int

    @classmethod
    def record(cls, card: Card, guess: str, correct: bool, points: int) -> 'HistoryEntry':
        return cls(
            image_url=card.image_url,
            common_name=card.common_name,
            scientific_name=card.scientific_name,
            source=card.source,
            license=card.license,
            attributions=card.attributions,
            guess=guess,
            correct=correct,
            points=points,
        )

    def to_dict(self):
        return {
            'imageUrl': self.image_url,
            'commonName': self.common_name,
            'scientificName': self.scientific_name,
            'source': self.source,
            'license': self.license,
            'attributions': list(self.attributions),
            'guess': self.guess,
            'correct': self.correct,
            'points': self.points,
        }


@dataclass
class RoundState:
    round_id: str
    mode: str
    round_size: int
    question_time_left: int
    post_reveal_time_left: int
    question_index: int = 0
    points: int = 0
    history: List[HistoryEntry] = field(default_factory=list)
    phase: Phase = Phase.LOADING
    current_card: Optional[Card] = None
    guess: str = ''
    image_ready: bool = False
    error: Optional[str] = None

    @property
    def is_last_question(self) -> bool:
        return self.question_index + 1 >= self.round_size

    def to_dict(self):
        # The answer stays hidden until the question has been scored
        reveal = self.phase in (Phase.REVEALED, Phase.FINISHED)
        return {
            'round_id': self.round_id,
            'mode': self.mode,
            'phase': self.phase.value,
            'question_index': self.question_index,
            'round_size': self.round_size,
            'points': self.points,
            'guess': self.guess,
            'image_ready': self.image_ready,
            'question_time_left': self.question_time_left,
            'post_reveal_time_left': self.post_reveal_time_left,
            'current_card': self.current_card.to_dict(reveal=reveal) if self.current_card else None,
            'history': [h.to_dict() for h in self.history],
            'error': self.error,
        }
