"""Word-level helpers shared by the coordinator and the session store.

Positions in a text are always word indices into ``split_words(text)``;
character offsets only appear as budgets for the quiz excerpt.
"""

CHUNK_SIZE = 50
QUIZ_WINDOW_BEHIND_CHARS = 2000
QUIZ_WINDOW_AHEAD_CHARS = 500
DEFAULT_TITLE = 'Listening Session'
TITLE_MAX_LENGTH = 60


def split_words(text):
    """Splits text on any run of whitespace, dropping empty tokens."""
    return text.split() if text else []


def chunk_at(words, start, size=CHUNK_SIZE):
    """Returns the slice of words spoken as one utterance starting at ``start``."""
    return words[start:start + size]


def derive_title(text):
    """Uses the first non-empty line as the session title, shortened to fit."""
    for line in text.strip().splitlines():
        first = line.strip()
        if first:
            if len(first) > TITLE_MAX_LENGTH:
                return first[:TITLE_MAX_LENGTH - 3] + '...'
            return first
    return DEFAULT_TITLE


def estimate_duration_seconds(text):
    return -(-len(split_words(text)) // 2)


def quiz_window(words, cursor, behind_chars=QUIZ_WINDOW_BEHIND_CHARS, ahead_chars=QUIZ_WINDOW_AHEAD_CHARS):
    """
    Builds the excerpt a quiz is generated from.

    Whole words before ``cursor`` are collected backwards until adding another
    would exceed ``behind_chars``; whole words from ``cursor`` onwards are added
    within ``ahead_chars``. When nothing has been heard yet the excerpt falls
    back to the opening ``behind_chars`` worth of words.
    """
    cursor = max(0, min(cursor, len(words)))

    behind = _take_within(reversed(words[:cursor]), behind_chars)
    behind.reverse()
    ahead = _take_within(words[cursor:], ahead_chars)

    if not behind:
        ahead = _take_within(words, behind_chars)
    return ' '.join(behind + ahead)


def _take_within(words, budget):
    taken = []
    used = 0
    for word in words:
        cost = len(word) + (1 if taken else 0)
        if used + cost > budget:
            break
        taken.append(word)
        used += cost
    return taken
