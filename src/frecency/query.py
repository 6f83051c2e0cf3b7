"""
Whitespace word splitting and by-word prefix matching of queries.

Usage:
    from frecency.query import is_sub_query

    is_sub_query("tea des", "design team")  # True
"""

from __future__ import annotations


def split_words(text: str) -> list[str]:
    """Lowercases the text and splits it on runs of whitespace."""
    return text.lower().split()


def is_sub_query(candidate: str, query: str) -> bool:
    """
    By-word prefix match of ``candidate`` against ``query``, ignoring order.

    Every word of the candidate must be a prefix of a distinct word of the
    query. For example "de tea" and "team desi" are both sub-queries of
    "design team", while "design team team" is not.

    Both word lists are sorted in descending order and each candidate word
    consumes the first remaining query word it prefixes.
    """
    candidate_words = sorted(split_words(candidate), reverse=True)
    query_words = sorted(split_words(query), reverse=True)

    for word in candidate_words:
        for index, query_word in enumerate(query_words):
            if query_word.startswith(word):
                # Consume the match so it can't be reused by another word.
                del query_words[index]
                break
        else:
            return False

    return True
