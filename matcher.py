"""Exact and fuzzy matching of utterances against the trigger lexicon."""

from __future__ import annotations

import math
from typing import Sequence

from lexicon import TRIGGER_PHRASES
from models import MatchDecision

WORD_DISTANCE_RATIO = 0.4
PHRASE_MATCH_RATIO = 0.6
MIN_FUZZY_WORD_LENGTH = 3


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance with unit insert/delete/substitute costs."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def words_are_similar(word1: str, word2: str) -> bool:
    if word1 == word2:
        return True
    if word1 in word2 or word2 in word1:
        return True
    if len(word1) < MIN_FUZZY_WORD_LENGTH or len(word2) < MIN_FUZZY_WORD_LENGTH:
        return False
    allowed = math.floor(max(len(word1), len(word2)) * WORD_DISTANCE_RATIO)
    return levenshtein_distance(word1, word2) <= allowed


def fuzzy_phrase_match(utterance: str, phrase: str) -> bool:
    """True when enough of the phrase's words have a similar word in the utterance."""
    utterance_words = utterance.split()
    phrase_words = phrase.split()
    if not utterance_words or not phrase_words:
        return False

    hits = sum(
        1
        for phrase_word in phrase_words
        if any(words_are_similar(phrase_word, word) for word in utterance_words)
    )
    return hits >= len(phrase_words) * PHRASE_MATCH_RATIO


def match_trigger(
    utterance: str,
    phrases: Sequence[str] = TRIGGER_PHRASES,
) -> MatchDecision:
    text = utterance.lower().strip()
    if not text:
        return MatchDecision(matched=False)

    for phrase in phrases:
        if phrase in text:
            return MatchDecision(matched=True, phrase=phrase)

    # Fuzzy pass only runs once no phrase matched exactly.
    for phrase in phrases:
        if fuzzy_phrase_match(text, phrase):
            return MatchDecision(matched=True, phrase=phrase)

    return MatchDecision(matched=False)
