"""
Specialist - Named expertise profiles a request can be routed to

Specialists are markdown files with YAML frontmatter, loaded from the
`specialists/` directory of each layer:

    ---
    specialist_id: sam-coder
    title: Sam Coder
    role: Implementation Specialist
    expertise:
      primary: [code-generation]
      secondary: [refactoring]
    domains: [development]
    when_to_use: [Writing new code quickly]
    persona:
      personality: [pragmatic]
      communication_style: direct
    ---
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List

from .topic import TopicParseError, split_frontmatter, as_list


DEFAULT_EMOJI = "\N{ROBOT FACE}"
DEFAULT_ROLE = "Specialist"
DEFAULT_TEAM = "General"


@dataclass
class SpecialistPersona:
    personality: List[str] = field(default_factory=list)
    communication_style: str = ""
    greeting: str = ""


@dataclass
class SpecialistExpertise:
    primary: List[str] = field(default_factory=list)
    secondary: List[str] = field(default_factory=list)


@dataclass
class SpecialistCollaboration:
    natural_handoffs: List[str] = field(default_factory=list)
    team_consultations: List[str] = field(default_factory=list)


@dataclass
class Specialist:
    """A routable expertise profile."""
    specialist_id: str
    title: str
    role: str = DEFAULT_ROLE
    emoji: str = DEFAULT_EMOJI
    team: str = DEFAULT_TEAM
    persona: SpecialistPersona = field(default_factory=SpecialistPersona)
    expertise: SpecialistExpertise = field(default_factory=SpecialistExpertise)
    domains: List[str] = field(default_factory=list)
    when_to_use: List[str] = field(default_factory=list)
    collaboration: SpecialistCollaboration = field(default_factory=SpecialistCollaboration)
    related_specialists: List[str] = field(default_factory=list)
    content: str = ""
    source_layer: Optional[str] = None

    @property
    def first_name(self) -> str:
        """ID segment before the first '-' (sam-coder -> sam)."""
        return self.specialist_id.split('-')[0]

    @classmethod
    def from_dict(cls, data: Dict[str, Any], content: str = "") -> 'Specialist':
        persona = data.get("persona") or {}
        expertise = data.get("expertise") or {}
        collaboration = data.get("collaboration") or {}

        return cls(
            specialist_id=str(data["specialist_id"]),
            title=str(data["title"]),
            role=str(data.get("role") or DEFAULT_ROLE),
            emoji=str(data.get("emoji") or DEFAULT_EMOJI),
            team=str(data.get("team") or DEFAULT_TEAM),
            persona=SpecialistPersona(
                personality=as_list(persona.get("personality")),
                communication_style=str(persona.get("communication_style") or ""),
                greeting=str(persona.get("greeting") or ""),
            ),
            expertise=SpecialistExpertise(
                primary=as_list(expertise.get("primary")),
                secondary=as_list(expertise.get("secondary")),
            ),
            domains=as_list(data.get("domains")),
            when_to_use=as_list(data.get("when_to_use")),
            collaboration=SpecialistCollaboration(
                natural_handoffs=as_list(collaboration.get("natural_handoffs")),
                team_consultations=as_list(collaboration.get("team_consultations")),
            ),
            related_specialists=as_list(data.get("related_specialists")),
            content=content,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "specialist_id": self.specialist_id,
            "title": self.title,
            "role": self.role,
            "emoji": self.emoji,
            "team": self.team,
            "persona": {
                "personality": list(self.persona.personality),
                "communication_style": self.persona.communication_style,
                "greeting": self.persona.greeting,
            },
            "expertise": {
                "primary": list(self.expertise.primary),
                "secondary": list(self.expertise.secondary),
            },
            "domains": list(self.domains),
            "when_to_use": list(self.when_to_use),
            "collaboration": {
                "natural_handoffs": list(self.collaboration.natural_handoffs),
                "team_consultations": list(self.collaboration.team_consultations),
            },
            "related_specialists": list(self.related_specialists),
        }


def parse_specialist(text: str) -> Specialist:
    """
    Parse a specialist document.

    Raises:
        TopicParseError: No frontmatter, or specialist_id/title missing
    """
    parts = split_frontmatter(text)
    if parts is None:
        raise TopicParseError("Missing frontmatter block")
    data, body = parts

    if not data.get("specialist_id") or not data.get("title"):
        raise TopicParseError("Specialist requires specialist_id and title")

    for section in ("persona", "expertise", "collaboration"):
        if data.get(section) is not None and not isinstance(data[section], dict):
            raise TopicParseError(f"{section} must be a mapping")

    return Specialist.from_dict(data, content=body.strip())


def load_specialist_file(file_path: Path) -> Specialist:
    """Load a specialist definition from disk."""
    return parse_specialist(Path(file_path).read_text(encoding='utf-8'))
