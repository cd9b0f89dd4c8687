import re
from typing import List, Sequence, Tuple

EXACT_POINTS = 10
MIN_TOKEN_LENGTH = 3
STOPWORDS = frozenset({
    'the', 'a', 'an', 'of', 'and', '&',
    'common', 'eastern', 'western', 'northern', 'southern',
})

_NON_WORD = re.compile(r'[^a-z\s-]')


def tokenize(text: str) -> List[str]:
    """Split a name into the lowercase words that count for scoring."""
    words = _NON_WORD.sub(' ', (text or '').lower()).split()
    return [w for w in words if w not in STOPWORDS and len(w) >= MIN_TOKEN_LENGTH]


def lcs_length(a: Sequence[str], b: Sequence[str]) -> int:
    m, n = len(a), len(b)
    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        for j in range(1, n + 1):
            if a[i - 1] == b[j - 1]:
                dp[i][j] = dp[i - 1][j - 1] + 1
            else:
                dp[i][j] = max(dp[i - 1][j], dp[i][j - 1])
    return dp[m][n]


def score(answer: str, guess: str) -> Tuple[int, bool]:
    """Score a free-text guess against the canonical answer.

    Returns (points, exact). An exact, correctly ordered match of every
    meaningful answer word is worth 10; otherwise each answer word the
    guess recalls in the right relative order is worth 1. Guess words
    that are not in the answer are ignored, and repeats count once.
    """
    answer_tokens = tokenize(answer)
    if not answer_tokens:
        return 0, False

    seen = set()
    filtered = []
    for token in tokenize(guess):
        if token in answer_tokens and token not in seen:
            seen.add(token)
            filtered.append(token)
    filtered = filtered[:len(answer_tokens)]

    if filtered == answer_tokens:
        return EXACT_POINTS, True
    return lcs_length(answer_tokens, filtered), False
