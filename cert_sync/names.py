"""Supplier-name canonicalisation and similarity scoring.

Two names refer to the same supplier when their skeleton keys are equal, or
close enough under :func:`calculate_similarity` / :func:`word_overlap_score`.
The skeleton key ignores case, accents, punctuation, word order, legal-entity
suffixes and a small set of business filler words.
"""

from __future__ import annotations

import re
import unicodedata

from rapidfuzz.distance import Levenshtein

# NFD leaves these as single code points, so they are mapped by hand.
CHAR_SUBSTITUTIONS = {
    "ı": "i",
    "ß": "ss",
    "ł": "l",
    "ø": "o",
    "đ": "d",
    "æ": "ae",
    "œ": "oe",
    "þ": "th",
}

LEGAL_SUFFIXES = frozenset(
    {
        # English
        "company", "co", "corp", "corporation", "inc", "incorporated", "ltd", "limited",
        "llc", "llp", "lp", "plc", "pvt", "private", "pte", "pty",
        # German / Austrian
        "gmbh", "ag", "kg", "ohg", "gbr", "ev", "mbh", "kgaa", "ug",
        # French
        "sa", "sarl", "sas", "sasu", "snc", "eurl",
        # Italian
        "spa", "srl",
        # Spanish / Portuguese
        "sl", "slu", "sau", "lda", "ltda",
        # Dutch / Belgian
        "bv", "nv", "vof", "cv", "bvba",
        # Nordic
        "ab", "as", "asa", "oy", "oyj", "aps",
        # Turkish
        "anonim", "sirketi", "tic", "ticaret", "san", "sanayi", "sti",
        # Polish / Czech
        "sp", "zoo", "spzoo", "spolka", "sro",
        # Chinese
        "有限公司", "股份有限公司", "集团",
    }
)

NOISE_WORDS = frozenset(
    {
        "international", "intl", "trading", "group", "holding", "holdings",
        "industries", "industrial", "manufacturing", "mfg", "products", "services",
        "solutions", "enterprise", "enterprises", "packaging", "paper", "plastic",
        "plastics", "chemicals",
    }
)

NON_WORD_RE = re.compile(r"[\W_]+", re.UNICODE)

CONTAINMENT_SCORE = 0.9
FUZZY_TOKEN_THRESHOLD = 0.8
FUZZY_TOKEN_CREDIT = 0.8
OVERLAP_SCALE = 0.85
OVERLAP_CEILING = 0.95


def strip_diacritics(value: str) -> str:
    value = "".join(CHAR_SUBSTITUTIONS.get(char, char) for char in value)
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def skeleton_key(name) -> str:
    if name is None:
        return ""
    key = str(name).strip().lower()
    if not key:
        return ""
    key = strip_diacritics(key)
    key = NON_WORD_RE.sub(" ", key)
    words = []
    for word in key.split():
        if word in LEGAL_SUFFIXES or word in NOISE_WORDS:
            continue
        if len(word) <= 1 or word.isdigit():
            continue
        words.append(word)
    words.sort()
    return " ".join(words)


def calculate_similarity(key1: str, key2: str) -> float:
    if key1 == key2:
        return 1.0
    if not key1 or not key2:
        return 0.0
    # Not length-normalised: a short key contained in a long one still scores 0.9.
    if key1 in key2 or key2 in key1:
        return CONTAINMENT_SCORE
    distance = Levenshtein.distance(key1, key2)
    return 1.0 - distance / max(len(key1), len(key2))


def word_overlap_score(key1: str, key2: str) -> tuple[float, float]:
    """Return ``(raw, adjusted)`` token-overlap scores for two skeleton keys.

    The key with fewer tokens is measured against the other one. Exact token
    hits count 1.0, near hits (similarity >= 0.8) count 0.8. ``adjusted`` is
    ``min(raw * 0.85, 0.95)``, which is what gets compared with the match
    threshold.
    """
    tokens1 = key1.split()
    tokens2 = key2.split()
    if not tokens1 or not tokens2:
        return 0.0, 0.0
    if len(tokens2) < len(tokens1):
        shorter, longer = tokens2, tokens1
    else:
        shorter, longer = tokens1, tokens2
    longer_set = set(longer)

    total = 0.0
    for token in shorter:
        if token in longer_set:
            total += 1.0
            continue
        best = max(calculate_similarity(token, other) for other in longer)
        if best >= FUZZY_TOKEN_THRESHOLD:
            total += FUZZY_TOKEN_CREDIT
    raw = total / len(shorter)
    return raw, min(raw * OVERLAP_SCALE, OVERLAP_CEILING)
