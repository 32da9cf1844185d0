"""Case-folded lexical tokenization shared by indexing and querying."""

import re
from collections import Counter
from typing import Dict, List, Set, Tuple

# Word characters only: whitespace, punctuation and "_" all delimit terms,
# so "quarterly_report-v2.txt" yields quarterly / report / v2 / txt.
TOKEN_PATTERN = re.compile(r"[^\W_]+", re.UNICODE)

MAX_TERM_LENGTH = 64


def tokenize(text: str) -> List[str]:
    """Split text into case-folded terms, in order."""
    return [
        match.group(0).casefold()
        for match in TOKEN_PATTERN.finditer(text)
        if len(match.group(0)) <= MAX_TERM_LENGTH
    ]


def term_positions(text: str) -> Dict[str, List[int]]:
    """Map each term to the token offsets where it occurs."""
    positions: Dict[str, List[int]] = {}
    for offset, term in enumerate(tokenize(text)):
        positions.setdefault(term, []).append(offset)
    return positions


def name_terms(file_name: str) -> Counter:
    """Terms contributed by a file name (always indexed)."""
    return Counter(tokenize(file_name))


def query_terms(query: str) -> Tuple[str, ...]:
    """Distinct query terms, in first-seen order."""
    return tuple(dict.fromkeys(tokenize(query)))


def surface_tokens(text: str) -> Set[str]:
    """Distinct tokens with their original case, for case-sensitive checks."""
    return {
        match.group(0)
        for match in TOKEN_PATTERN.finditer(text)
        if len(match.group(0)) <= MAX_TERM_LENGTH
    }


def query_words(query: str) -> Tuple[str, ...]:
    """Distinct query tokens with their original case, in first-seen order."""
    return tuple(dict.fromkeys(
        match.group(0)
        for match in TOKEN_PATTERN.finditer(query)
        if len(match.group(0)) <= MAX_TERM_LENGTH
    ))
