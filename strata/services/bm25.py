"""
FieldedBM25 - Weighted multi-field BM25 ranking

BM25F-style scoring: each document has the same named fields; a term's
frequency and the document length are combined across fields using the
field weights before the usual BM25 saturation is applied.

    wtf(t, d) = sum_f  w_f * tf(t, d.f)
    wdl(d)    = sum_f  w_f * len(d.f)
    idf(t)    = ln((N - df(t) + 0.5) / (df(t) + 0.5) + 1)
    score     = sum_t  idf(t) * wtf * (k1 + 1) / (wtf + k1 * (1 - b + b * wdl / avg_wdl))

The index is built once: add_document() for every document, then
consolidate(). It is never updated afterwards; rebuild a new one instead.
"""

import math
from collections import Counter, defaultdict
from typing import Callable, Dict, List, Tuple

from ..core.tokenizer import tokenize_terms


class FieldedBM25:
    """
    Immutable-after-consolidate BM25F index.

    Args:
        field_weights: Field name -> weight; every document supplies all fields
        k1: Term-frequency saturation
        b: Length normalization strength
        tokenizer: Text -> list of terms
    """

    def __init__(
        self,
        field_weights: Dict[str, float],
        k1: float = 1.2,
        b: float = 0.75,
        tokenizer: Callable[[str], List[str]] = tokenize_terms
    ):
        if not field_weights:
            raise ValueError("At least one field weight is required")
        self.field_weights = dict(field_weights)
        self.k1 = k1
        self.b = b
        self.tokenizer = tokenizer

        self._doc_ids: List[str] = []
        self._doc_lengths: List[float] = []
        self._postings: Dict[str, List[Tuple[int, float]]] = defaultdict(list)
        self._idf: Dict[str, float] = {}
        self._avg_length = 0.0
        self._consolidated = False

    def add_document(self, doc_id: str, fields: Dict[str, str]) -> None:
        """
        Add a document.

        Raises:
            ValueError: A configured field is missing or an unknown field is given
            RuntimeError: The index is already consolidated
        """
        if self._consolidated:
            raise RuntimeError("Index is consolidated; build a new one to add documents")

        missing = set(self.field_weights) - set(fields)
        unknown = set(fields) - set(self.field_weights)
        if missing or unknown:
            raise ValueError(
                f"Document {doc_id!r} fields do not match index fields "
                f"(missing: {sorted(missing)}, unknown: {sorted(unknown)})"
            )

        weighted_tf: Counter = Counter()
        weighted_length = 0.0
        for name, weight in self.field_weights.items():
            terms = self.tokenizer(fields[name] or "")
            weighted_length += weight * len(terms)
            for term, count in Counter(terms).items():
                weighted_tf[term] += weight * count

        index = len(self._doc_ids)
        self._doc_ids.append(doc_id)
        self._doc_lengths.append(weighted_length)
        for term, wtf in weighted_tf.items():
            self._postings[term].append((index, wtf))

    def consolidate(self) -> None:
        """Freeze the index and compute collection statistics."""
        total = len(self._doc_ids)
        self._avg_length = (sum(self._doc_lengths) / total) if total else 0.0
        self._idf = {
            term: math.log((total - len(postings) + 0.5) / (len(postings) + 0.5) + 1.0)
            for term, postings in self._postings.items()
        }
        self._postings = dict(self._postings)
        self._consolidated = True

    @property
    def consolidated(self) -> bool:
        return self._consolidated

    @property
    def vocabulary_size(self) -> int:
        return len(self._postings)

    def __len__(self) -> int:
        return len(self._doc_ids)

    def search(self, query: str, limit: int = 10) -> List[Tuple[str, float]]:
        """
        Rank documents for a query.

        Returns (doc_id, raw_score) pairs with score > 0, best first.
        Ties keep insertion order.
        """
        if not self._consolidated:
            raise RuntimeError("Index must be consolidated before searching")
        if limit <= 0 or not self._doc_ids:
            return []

        avg_length = self._avg_length or 1.0
        k1, b = self.k1, self.b
        scores: Dict[int, float] = defaultdict(float)

        for term in dict.fromkeys(self.tokenizer(query or "")):
            postings = self._postings.get(term)
            if not postings:
                continue
            idf = self._idf[term]
            for index, wtf in postings:
                norm = k1 * (1.0 - b + b * self._doc_lengths[index] / avg_length)
                scores[index] += idf * wtf * (k1 + 1.0) / (wtf + norm)

        ranked = sorted(
            ((index, score) for index, score in scores.items() if score > 0),
            key=lambda item: (-item[1], item[0])
        )
        return [(self._doc_ids[index], score) for index, score in ranked[:limit]]
