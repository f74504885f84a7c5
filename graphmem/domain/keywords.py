"""Keyword extraction for connection discovery.

Lower-cases, strips non-alphanumeric characters, splits on whitespace and
drops stop words and tokens shorter than 3 characters.
"""

import re

MIN_KEYWORD_LENGTH = 3

_NON_ALNUM = re.compile(r"[\W_]+")

# Common English stop words
STOP_WORDS: frozenset[str] = frozenset({
    "the", "be", "to", "of", "and", "a", "in", "that", "have", "i",
    "it", "for", "not", "on", "with", "he", "as", "you", "do", "at",
    "this", "but", "his", "by", "from", "they", "we", "say", "her", "she",
    "or", "an", "will", "my", "one", "all", "would", "there", "their", "what",
    "so", "up", "out", "if", "about", "who", "get", "which", "go", "me",
    "when", "make", "can", "like", "time", "no", "just", "him", "know", "take",
    "people", "into", "year", "your", "good", "some", "could", "them", "see", "other",
    "than", "then", "now", "look", "only", "come", "its", "over", "think", "also",
    "back", "after", "use", "two", "how", "our", "work", "first", "well", "way",
    "even", "new", "want", "because", "any", "these", "give", "day", "most", "us",
    "is", "was", "are", "been", "has", "had", "were", "said", "did", "having",
    "may", "am", "should", "too", "very",
})


def tokenize(text: str | None) -> list[str]:
    """Split text into lowercase alphanumeric tokens (order preserved)."""
    if not text:
        return []
    return _NON_ALNUM.sub(" ", text.lower()).split()


def extract_keywords(content: str | None) -> frozenset[str]:
    """Extract the deduplicated keyword set of a piece of text.

    Args:
        content: Arbitrary text (None is treated as empty)

    Returns:
        Frozen set of lowercase keywords
    """
    return frozenset(
        token
        for token in tokenize(content)
        if len(token) >= MIN_KEYWORD_LENGTH and token not in STOP_WORDS
    )
