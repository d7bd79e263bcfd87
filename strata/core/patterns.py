"""
Construct Patterns - Detect API calls and keywords in code snippets

A snippet is scanned against an ordered library of named regular
expressions ("constructs"). The distinct matched names, in library
order, drive relevance search: code calling .FindSet( twice and
.CalcFields( once yields the construct set [FindSet, CalcFields].

Pattern compilation is fallible. Patterns supplied as data (config or
topic frontmatter) go through compile_pattern(), which never raises:
an invalid regex becomes NEVER_MATCH and a warning is logged.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Iterable, Tuple, Pattern

from .tokenizer import tokenize_terms

logger = logging.getLogger(__name__)


# Matches nothing, including the empty string
NEVER_MATCH = re.compile(r'(?!)')

# (name, regex) in detection order; all case-insensitive
CONSTRUCT_PATTERNS: Tuple[Tuple[str, str], ...] = (
    ("FindSet", r'\.FindSet\s*\('),
    ("FindFirst", r'\.FindFirst\s*\('),
    ("FindLast", r'\.FindLast\s*\('),
    ("Next", r'\.Next\s*\('),
    ("repeat", r'\brepeat\b'),
    ("until", r'\buntil\b'),
    ("SetLoadFields", r'\.SetLoadFields\s*\('),
    ("SetRange", r'\.SetRange\s*\('),
    ("SetFilter", r'\.SetFilter\s*\('),
    ("CalcFields", r'\.CalcFields\s*\('),
    ("CalcSums", r'\.CalcSums\s*\('),
    ("Insert", r'\.Insert\s*\('),
    ("Modify", r'\.Modify\s*\('),
    ("Delete", r'\.Delete\s*\('),
    ("DeleteAll", r'\.DeleteAll\s*\('),
    ("ModifyAll", r'\.ModifyAll\s*\('),
    ("TestField", r'\.TestField\s*\('),
    ("FieldError", r'\.FieldError\s*\('),
    ("Validate", r'\.Validate\s*\('),
    ("Error", r'\bError\s*\('),
    ("Confirm", r'\bConfirm\s*\('),
    ("Message", r'\bMessage\s*\('),
    ("Dialog", r'\bDialog\.'),
    ("HttpClient", r'\bHttpClient\b'),
    ("JsonToken", r'\bJsonToken\b'),
    ("EventSubscriber", r'\[EventSubscriber\b'),
    ("IntegrationEvent", r'\[IntegrationEvent\b'),
    ("Codeunit.Run", r'Codeunit\.Run\s*\('),
)

OBJECT_TYPE_PATTERN = re.compile(
    r'^\s*(codeunit|page|table|report|query|xmlport|enum|interface|permissionset|profile)\s+\d+',
    re.IGNORECASE | re.MULTILINE,
)

LOOP_PATTERNS = (
    re.compile(r'\brepeat\b[\s\S]*?\buntil\b', re.IGNORECASE),
    re.compile(r'\bwhile\b[\s\S]*?\bdo\b', re.IGNORECASE),
    re.compile(r'\bfor\b[\s\S]*?\bto\b', re.IGNORECASE),
)
FIELD_ACCESS_PATTERN = re.compile(r'\.\s*"[^"]+"')
NEGATED_CONDITION_PATTERN = re.compile(r'\bif\s+not\b', re.IGNORECASE)
SECURITY_PATTERN = re.compile(r'User\.|Permission|Security', re.IGNORECASE)

RECORD_OPERATIONS = frozenset({"FindSet", "FindFirst", "FindLast", "Insert", "Modify", "Delete"})
VALIDATION_CALLS = frozenset({"TestField", "FieldError", "Validate"})
ERROR_HANDLING_CALLS = frozenset({"Error", "Codeunit.Run"})


@dataclass
class PatternResult:
    """Outcome of compiling a detection pattern."""
    name: str
    pattern: Pattern
    ok: bool = True
    error: Optional[str] = None


def compile_pattern(name: str, source: str, flags: int = re.IGNORECASE) -> PatternResult:
    """
    Compile a named detection pattern without raising.

    Invalid patterns degrade to NEVER_MATCH so detection keeps working
    for every other pattern.
    """
    try:
        return PatternResult(name=name, pattern=re.compile(source, flags))
    except (re.error, TypeError) as e:
        logger.warning("Invalid detection pattern %r (%r): %s", name, source, e)
        return PatternResult(name=name, pattern=NEVER_MATCH, ok=False, error=str(e))


class ConstructLibrary:
    """
    Ordered set of compiled construct patterns.

    The built-in library covers the common record, validation and
    integration calls; extra patterns from configuration are appended
    after it (a name already in the library replaces its regex).
    """

    def __init__(self, patterns: Iterable[PatternResult]):
        self._patterns: List[PatternResult] = list(patterns)

    @classmethod
    def default(cls) -> 'ConstructLibrary':
        return cls(compile_pattern(name, source) for name, source in CONSTRUCT_PATTERNS)

    def with_patterns(self, extra: Dict[str, str]) -> 'ConstructLibrary':
        """Return a new library extended with name -> regex entries."""
        if not extra:
            return self
        compiled = {name: compile_pattern(name, source) for name, source in extra.items()}
        merged = [compiled.pop(p.name, p) for p in self._patterns]
        merged.extend(compiled.values())
        return ConstructLibrary(merged)

    @property
    def names(self) -> List[str]:
        return [p.name for p in self._patterns]

    @property
    def invalid(self) -> List[PatternResult]:
        return [p for p in self._patterns if not p.ok]

    def detect(self, code: str) -> List[str]:
        """Distinct construct names present in code, in library order."""
        return [p.name for p in self._patterns if p.pattern.search(code)]

    def __len__(self) -> int:
        return len(self._patterns)


DEFAULT_LIBRARY = ConstructLibrary.default()


@dataclass
class CodeCharacteristics:
    """What a code snippet looks like to the relevance index."""
    constructs: List[str] = field(default_factory=list)
    object_type: Optional[str] = None
    has_loops: bool = False
    has_field_access: bool = False
    has_record_operations: bool = False
    has_validation: bool = False
    has_error_handling: bool = False
    has_security_calls: bool = False
    tokens: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "constructs": list(self.constructs),
            "object_type": self.object_type,
            "has_loops": self.has_loops,
            "has_field_access": self.has_field_access,
            "has_record_operations": self.has_record_operations,
            "has_validation": self.has_validation,
            "has_error_handling": self.has_error_handling,
            "has_security_calls": self.has_security_calls,
        }


def detect_object_type(code: str) -> Optional[str]:
    """Object type declared on the first matching line, lowercased."""
    match = OBJECT_TYPE_PATTERN.search(code)
    return match.group(1).lower() if match else None


def extract_code_characteristics(
    code: str,
    library: Optional[ConstructLibrary] = None
) -> CodeCharacteristics:
    """
    Scan a snippet for constructs, object type and semantic flags.

    Args:
        code: Source snippet (or free text; it simply yields no constructs)
        library: Construct library to use (default: built-in)

    Returns:
        CodeCharacteristics with deduplicated constructs in library order
    """
    library = library or DEFAULT_LIBRARY
    code = code or ""
    constructs = library.detect(code)
    found = set(constructs)

    return CodeCharacteristics(
        constructs=constructs,
        object_type=detect_object_type(code),
        has_loops=any(p.search(code) for p in LOOP_PATTERNS),
        has_field_access=bool(FIELD_ACCESS_PATTERN.search(code)),
        has_record_operations=bool(found & RECORD_OPERATIONS),
        has_validation=bool(found & VALIDATION_CALLS),
        has_error_handling=bool(found & ERROR_HANDLING_CALLS) or bool(NEGATED_CONDITION_PATTERN.search(code)),
        has_security_calls=bool(SECURITY_PATTERN.search(code)),
        tokens=tokenize_terms(code),
    )
