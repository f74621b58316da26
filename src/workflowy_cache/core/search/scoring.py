"""Fuzzy relevance scoring: phrase, word and trigram signals."""

import re

# Composite score weights.
PHRASE_WEIGHT = 0.45
NOTE_PHRASE_FACTOR = 0.8
NAME_WORDS_WEIGHT = 0.30
ANY_WORDS_WEIGHT = 0.10
TRIGRAM_WEIGHT = 0.15

# Whole-query trigram similarity only counts against names up to this length.
TRIGRAM_MAX_NAME_LENGTH = 80

# Per-word match ladder.
EXACT_SCORE = 1.0
QUERY_PREFIX_SCORE = 0.9
TOKEN_PREFIX_SCORE = 0.8
SUBSTRING_SCORE = 0.3
TRIGRAM_FLOOR = 0.4
TRIGRAM_FACTOR = 0.7
MIN_PREFIX_LENGTH = 3

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def normalize(text: str) -> str:
    """Lower-case and collapse whitespace."""
    return " ".join(text.lower().split())


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def trigrams(text: str) -> set[str]:
    padded = f"  {normalize(text)} "
    return {padded[i : i + 3] for i in range(len(padded) - 2)}


def trigram_similarity(a: str, b: str) -> float:
    """Dice coefficient over the 3-character windows of two strings."""
    ta, tb = trigrams(a), trigrams(b)
    if not ta or not tb:
        return 0.0
    return 2 * len(ta & tb) / (len(ta) + len(tb))


def word_match_score(word: str, tokens: list[str]) -> float:
    """Best match of one query word against a list of candidate tokens.

    Exact token > query word is a token prefix > token is a query-word prefix
    > query word inside a longer token (kept low so "body" barely matches
    "somebody") > trigram similarity above a floor, scaled down.
    """
    best = 0.0
    for token in tokens:
        if token == word:
            return EXACT_SCORE
        if len(word) >= MIN_PREFIX_LENGTH and token.startswith(word):
            score = QUERY_PREFIX_SCORE
        elif len(token) >= MIN_PREFIX_LENGTH and word.startswith(token):
            score = TOKEN_PREFIX_SCORE
        elif word in token:
            score = SUBSTRING_SCORE
        else:
            sim = trigram_similarity(word, token)
            score = sim * TRIGRAM_FACTOR if sim > TRIGRAM_FLOOR else 0.0
        best = max(best, score)
    return best


def _all_words_score(words: list[str], tokens: list[str]) -> float:
    """Mean word score if every word matches something, else 0."""
    if not words or not tokens:
        return 0.0
    scores = [word_match_score(w, tokens) for w in words]
    if min(scores) <= 0.0:
        return 0.0
    return sum(scores) / len(scores)


def score_text(query: str, name: str, note: str = "") -> float:
    """Composite relevance of a node's name and note to the query, roughly in [0, 1]."""
    phrase = normalize(query)
    words = tokenize(query)
    if not phrase:
        return 0.0

    name_norm = normalize(name)
    note_norm = normalize(note)
    name_tokens = tokenize(name)

    score = 0.0
    if phrase in name_norm:
        score += PHRASE_WEIGHT
    elif phrase in note_norm:
        score += PHRASE_WEIGHT * NOTE_PHRASE_FACTOR

    score += NAME_WORDS_WEIGHT * _all_words_score(words, name_tokens)
    score += ANY_WORDS_WEIGHT * _all_words_score(words, name_tokens + tokenize(note))

    if name_norm and len(name_norm) <= TRIGRAM_MAX_NAME_LENGTH:
        score += TRIGRAM_WEIGHT * trigram_similarity(phrase, name_norm)

    return score
