"""
Tokenizers - Shared text splitting for indexing and routing

Three audiences, three tokenizers:
- tokenize_terms: BM25 index and query terms (lowercase word runs)
- query_tokens / phrase_tokens: specialist router signal matching
- tokenize_name: identifiers in any naming convention (IDs, titles)

Naming conventions are formatting, not content: "sam-coder",
"SamCoder" and "sam_coder" all carry the tokens [sam, coder].
"""

import re
from typing import List


TERM_PATTERN = re.compile(r'[a-z0-9][a-z0-9_]*')

# Router tokens shorter than this are treated as stop-word noise
MIN_ROUTER_TOKEN_LENGTH = 4


def tokenize_terms(text: str) -> List[str]:
    """
    Tokenize text for the lexical index.

    Lowercases and keeps runs of letters, digits and underscores so
    that API names such as "FindSet" or "SetLoadFields" stay whole.
    Order and duplicates are preserved (term frequency matters).

    Examples:
        >>> tokenize_terms("Use FindSet, then Next()")
        ['use', 'findset', 'then', 'next']
    """
    if not text:
        return []
    return TERM_PATTERN.findall(text.lower())


def query_tokens(query: str) -> List[str]:
    """
    Split a router query into meaningful tokens.

    Splits on whitespace and commas, strips punctuation, and drops
    tokens of three characters or fewer.

    Examples:
        >>> query_tokens("How do I speed up slow reports?")
        ['speed', 'slow', 'reports']
    """
    if not query:
        return []
    tokens = []
    for raw in re.split(r'[\s,]+', query.lower()):
        token = re.sub(r'[^a-z0-9]', '', raw)
        if len(token) >= MIN_ROUTER_TOKEN_LENGTH:
            tokens.append(token)
    return tokens


def phrase_tokens(phrase: str) -> List[str]:
    """Tokenize an expertise/domain phrase ("api-design" -> ['design'])."""
    if not phrase:
        return []
    words = re.sub(r'[-_]', ' ', phrase.lower()).split()
    return [w for w in words if len(w) >= MIN_ROUTER_TOKEN_LENGTH]


def tokens_related(left: str, right: str) -> bool:
    """True when either token contains the other."""
    return left in right or right in left


def tokenize_name(name: str) -> List[str]:
    """
    Split an identifier from any naming convention into tokens.

    Handles camelCase, PascalCase, snake_case, kebab-case and
    acronyms (HTMLParser -> html, parser). Tokens shorter than
    two characters are dropped.

    Examples:
        >>> tokenize_name("sam-coder")
        ['sam', 'coder']
        >>> tokenize_name("PerformanceOptimization")
        ['performance', 'optimization']
    """
    if not name:
        return []

    cleaned = re.sub(r'^_+', '', name)
    cleaned = re.sub(r'_+$', '', cleaned)

    # HTMLParser -> HTML_Parser
    cleaned = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1_\2', cleaned)
    # getUserProfile -> get_User_Profile
    cleaned = re.sub(r'([a-z])([A-Z])', r'\1_\2', cleaned)

    tokens = re.split(r'[^a-zA-Z0-9]+', cleaned)
    return [t.lower() for t in tokens if len(t) >= 2]
