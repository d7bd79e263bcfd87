"""
Specialist Router - Route a free-text request to the best specialists

Two paths:

1. Name match (fast path). "sam", "sam-coder" or "Ask Sam about X"
   finds the specialist directly at a fixed 0.95 confidence.

2. Scored match. Query tokens (length > 3) are compared against each
   specialist's signals; every signal class adds a fixed weight:

       keyword set hit (per token)          +0.15
       primary expertise (per item)         +0.15
       secondary expertise (per item)       +0.10
       domain (per item)                    +0.10
       when-to-use scenario (per item)      +0.15
       role                                 +0.20
       current domain in specialist domains +0.15

   The sum is capped at 1.0; scores under 0.1 are dropped.

With no query at all the router still answers with the generalists.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Set, Iterable, TYPE_CHECKING

from ..core.specialist import Specialist
from ..core.tokenizer import query_tokens, phrase_tokens, tokens_related, tokenize_name

if TYPE_CHECKING:
    from .relevance import RelevanceIndex

logger = logging.getLogger(__name__)


NAME_MATCH_CONFIDENCE = 0.95
DEFAULT_CONFIDENCE = 0.5
DEFAULT_SPECIALIST_IDS = ("sam-coder", "alex-architect", "chris-config")

KEYWORD_WEIGHT = 0.15
PRIMARY_EXPERTISE_WEIGHT = 0.15
SECONDARY_EXPERTISE_WEIGHT = 0.10
DOMAIN_WEIGHT = 0.10
SCENARIO_WEIGHT = 0.15
ROLE_WEIGHT = 0.20
CURRENT_DOMAIN_WEIGHT = 0.15

MAX_CONFIDENCE = 1.0
MIN_CONFIDENCE = 0.1
GENERIC_REASON_THRESHOLD = 0.3
RELATED_TOPIC_COUNT = 3


class MatchType:
    NAME_MATCH = "name_match"
    CONTENT_MATCH = "content_match"
    DEFAULT = "default"


@dataclass
class DiscoveryContext:
    """What the caller knows about the request."""
    query: Optional[str] = None
    current_domain: Optional[str] = None
    include_topics: bool = False


@dataclass
class SpecialistSuggestion:
    """A ranked specialist with the reasons it was picked."""
    specialist: Specialist
    confidence: float
    reasons: List[str] = field(default_factory=list)
    keywords_matched: List[str] = field(default_factory=list)
    domain_match: Optional[str] = None
    match_type: str = MatchType.CONTENT_MATCH
    related_topics: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "specialist_id": self.specialist.specialist_id,
            "title": self.specialist.title,
            "role": self.specialist.role,
            "confidence": round(self.confidence, 4),
            "reasons": list(self.reasons),
            "keywords_matched": list(self.keywords_matched),
            "domain_match": self.domain_match,
            "match_type": self.match_type,
            "related_topics": list(self.related_topics),
        }


def _words(text: str, separators: str = r'\s+') -> List[str]:
    """Lowercase split with punctuation stripped from each word."""
    words = []
    for raw in re.split(separators, (text or "").lower()):
        word = re.sub(r'[^a-z0-9]', '', raw)
        if word:
            words.append(word)
    return words


def build_keyword_set(specialist: Specialist) -> Set[str]:
    """Every word a query token can hit for this specialist."""
    keywords: Set[str] = {
        specialist.specialist_id.lower(),
        specialist.specialist_id.lower().replace('-', ' ', 1),
    }
    keywords.update(tokenize_name(specialist.specialist_id))
    keywords.update(_words(specialist.title))
    keywords.update(_words(specialist.role))
    for phrase in specialist.expertise.primary + specialist.expertise.secondary:
        keywords.update(_words(phrase, r'[-\s]+'))
    for domain in specialist.domains:
        keywords.update(_words(domain, r'[-\s]+'))
    for scenario in specialist.when_to_use:
        keywords.update(_words(scenario))
    for trait in specialist.persona.personality:
        keywords.update(_words(trait, r'[-\s]+'))
    return keywords


def _phrase_matches(phrase: str, tokens: List[str]) -> bool:
    """True when any query token relates to any token of the phrase."""
    phrase_words = phrase_tokens(phrase)
    return any(tokens_related(word, token) for token in tokens for word in phrase_words)


class SpecialistRouter:
    """
    Scores requests against a loaded specialist set.

    Args:
        specialists: Specialist profiles (deduplicated by ID upstream)
        topic_index: Optional relevance index for related-topic hints
    """

    def __init__(self, specialists: Iterable[Specialist], topic_index: Optional['RelevanceIndex'] = None):
        self.specialists: List[Specialist] = list(specialists)
        self.topic_index = topic_index
        self._keywords: Dict[str, Set[str]] = {
            s.specialist_id: build_keyword_set(s) for s in self.specialists
        }

    def suggest_specialists(
        self,
        context: DiscoveryContext,
        max_suggestions: int = 3
    ) -> List[SpecialistSuggestion]:
        """
        Rank specialists for a request.

        Returns:
            Up to max_suggestions suggestions, best first. Never empty
            for a missing query when a default specialist is loaded.
        """
        query = (context.query or "").strip()
        if not query:
            return self._default_suggestions()[:max_suggestions]

        name_match = self.find_specialist_by_name(query)
        if name_match is not None:
            suggestions = [SpecialistSuggestion(
                specialist=name_match,
                confidence=NAME_MATCH_CONFIDENCE,
                reasons=["Direct name match"],
                keywords_matched=[self._matched_name(query, name_match)],
                match_type=MatchType.NAME_MATCH,
            )]
        else:
            tokens = query_tokens(query)
            suggestions = []
            for specialist in self.specialists:
                suggestion = self._score(specialist, tokens, context)
                if suggestion.confidence >= MIN_CONFIDENCE:
                    suggestions.append(suggestion)
            suggestions.sort(key=lambda s: -s.confidence)
            suggestions = suggestions[:max_suggestions]

        if context.include_topics:
            self._attach_related_topics(query, suggestions)
        return suggestions

    def get_best_specialist(self, context: DiscoveryContext) -> Optional[SpecialistSuggestion]:
        suggestions = self.suggest_specialists(context, 1)
        return suggestions[0] if suggestions else None

    def _score(self, specialist: Specialist, tokens: List[str], context: DiscoveryContext) -> SpecialistSuggestion:
        confidence = 0.0
        reasons: List[str] = []
        keywords_matched: List[str] = []
        domain_match: Optional[str] = None

        keywords = self._keywords.get(specialist.specialist_id, set())
        for token in tokens:
            if token in keywords:
                keywords_matched.append(token)
                confidence += KEYWORD_WEIGHT

        for expertise in specialist.expertise.primary:
            if _phrase_matches(expertise, tokens):
                confidence += PRIMARY_EXPERTISE_WEIGHT
                reasons.append(f"Primary expertise in {expertise}")
                domain_match = expertise

        for expertise in specialist.expertise.secondary:
            if _phrase_matches(expertise, tokens):
                confidence += SECONDARY_EXPERTISE_WEIGHT
                reasons.append(f"Secondary expertise in {expertise}")
                domain_match = domain_match or expertise

        for domain in specialist.domains:
            if _phrase_matches(domain, tokens):
                confidence += DOMAIN_WEIGHT
                reasons.append(f"Domain specialist for {domain}")
                domain_match = domain_match or domain

        for scenario in specialist.when_to_use:
            if _phrase_matches(scenario, tokens):
                confidence += SCENARIO_WEIGHT
                reasons.append(f"Ideal for {scenario}")

        if specialist.role and _phrase_matches(specialist.role, tokens):
            confidence += ROLE_WEIGHT
            reasons.append(f"Role matches: {specialist.role}")

        if context.current_domain and context.current_domain in specialist.domains:
            confidence += CURRENT_DOMAIN_WEIGHT
            reasons.append(f"Active in current domain: {context.current_domain}")

        confidence = min(confidence, MAX_CONFIDENCE)
        if confidence > GENERIC_REASON_THRESHOLD and not reasons:
            reasons.append("Good keyword and expertise match")

        return SpecialistSuggestion(
            specialist=specialist,
            confidence=confidence,
            reasons=reasons,
            keywords_matched=keywords_matched,
            domain_match=domain_match,
            match_type=MatchType.CONTENT_MATCH,
        )

    def _default_suggestions(self) -> List[SpecialistSuggestion]:
        by_id = {s.specialist_id: s for s in self.specialists}
        return [
            SpecialistSuggestion(
                specialist=by_id[specialist_id],
                confidence=DEFAULT_CONFIDENCE,
                reasons=["Popular general-purpose specialist"],
                match_type=MatchType.DEFAULT,
            )
            for specialist_id in DEFAULT_SPECIALIST_IDS
            if specialist_id in by_id
        ]

    def _attach_related_topics(self, query: str, suggestions: List[SpecialistSuggestion]) -> None:
        if self.topic_index is None or not suggestions:
            return
        matches = self.topic_index.search(query, limit=10)
        for suggestion in suggestions:
            domains = set(suggestion.specialist.domains)
            suggestion.related_topics = [
                m.topic_id for m in matches if m.domain in domains
            ][:RELATED_TOPIC_COUNT]

    def find_specialist_by_name(self, name: str) -> Optional[Specialist]:
        """
        Find a specialist from a name or a request mentioning one.

        Order: exact ID, ID containing the text, first name ("sam" for
        sam-coder), title containing the text. Failing those, each word
        of a longer request is tried as an exact ID or first name.
        """
        search_term = (name or "").lower().strip()
        if not search_term:
            return None

        for predicate in (
            lambda s: s.specialist_id.lower() == search_term,
            lambda s: search_term in s.specialist_id.lower(),
            lambda s: s.first_name.lower() == search_term,
            lambda s: search_term in (s.title or "").lower(),
        ):
            for specialist in self.specialists:
                if predicate(specialist):
                    return specialist

        words = _words(search_term, r'[\s,]+') if ' ' in search_term else []
        for word in words:
            for specialist in self.specialists:
                if word == specialist.specialist_id.lower() or word == specialist.first_name.lower():
                    return specialist
        return None

    @staticmethod
    def _matched_name(query: str, specialist: Specialist) -> str:
        for word in _words(query):
            if word in (specialist.first_name.lower(), specialist.specialist_id.lower()):
                return word
        return query.strip().split()[0].lower()

    def get_specialist_by_id(self, specialist_id: str) -> Optional[Specialist]:
        for specialist in self.specialists:
            if specialist.specialist_id == specialist_id:
                return specialist
        return None

    def get_specialists_by_domain(self, domain: str) -> List[Specialist]:
        """Specialists listing the domain in their expertise or domains."""
        return [
            s for s in self.specialists
            if domain in s.expertise.primary
            or domain in s.expertise.secondary
            or domain in s.domains
        ]

    def get_specialists_by_category(self) -> Dict[str, List[Specialist]]:
        """Group by first declared domain ('general' when none)."""
        categories: Dict[str, List[Specialist]] = {}
        for specialist in self.specialists:
            category = specialist.domains[0] if specialist.domains else "general"
            categories.setdefault(category, []).append(specialist)
        return categories

    def list_specialists(self) -> List[Dict[str, str]]:
        return [
            {"id": s.specialist_id, "title": s.title or s.specialist_id, "role": s.role}
            for s in self.specialists
        ]


def _example_query(specialist: Specialist) -> str:
    if specialist.when_to_use:
        return f"Help me with {specialist.when_to_use[0].lower()}"
    if specialist.expertise.primary:
        return f"I need help with {specialist.expertise.primary[0].lower()}"
    return f"I need help with {(specialist.role or 'development').lower()}"


def format_suggestions(suggestions: List[SpecialistSuggestion]) -> str:
    """Render suggestions as markdown."""
    if not suggestions:
        return "No specific specialist recommendations. Try describing the problem in more detail."

    lines = ["**Specialist Recommendations:**", ""]
    for suggestion in suggestions:
        specialist = suggestion.specialist
        name = specialist.title or specialist.specialist_id
        lines.append(f"{specialist.emoji} **{name}** ({round(suggestion.confidence * 100)}% match)")
        for reason in suggestion.reasons:
            lines.append(f"   - {reason}")
        if suggestion.keywords_matched:
            lines.append(f"   - Keywords: {', '.join(suggestion.keywords_matched)}")
        if suggestion.related_topics:
            lines.append(f"   - Related topics: {', '.join(suggestion.related_topics)}")
        lines.append(f"   - Try: \"{_example_query(specialist)}\"")
        lines.append("")
    return "\n".join(lines)
