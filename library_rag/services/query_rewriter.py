"""
Query rewriting for catalog searches.

Turns a raw patron query into search terms through a chain of pure stages:

1. normalize (lowercase, strip punctuation except hyphens, collapse spaces)
2. conceptual match against ordered natural-language intent patterns
3. spelling correction from a fixed misspelling table
4. abbreviation expansion (skipped when a conceptual match was found)
5. related terms and subject headings from fixed keyword tables
6. optional language-model enhancement

Every lookup table is immutable module data; the stages are plain functions so
each can be exercised on its own. ``QueryRewriter.rewrite`` never raises.
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Pattern, Tuple

import structlog

from ..core.exceptions import CatalogAssistantError

logger = structlog.get_logger(__name__)


# ────────────────────────────────────────────────────────────
#  Lookup tables
# ────────────────────────────────────────────────────────────

ABBREVIATIONS: Mapping[str, str] = MappingProxyType({
    "AI": "artificial intelligence",
    "ML": "machine learning",
    "NLP": "natural language processing",
    "DL": "deep learning",
    "IR": "information retrieval",
    "IS": "information science",
    "LIS": "library and information science",
    "MLIS": "master of library and information science",
    "OPAC": "online public access catalog",
    "ILL": "interlibrary loan",
    "DOI": "digital object identifier",
    "ISBN": "international standard book number",
    "ISSN": "international standard serial number",
    "LC": "library of congress",
    "LCSH": "library of congress subject headings",
    "DDC": "dewey decimal classification",
    "MARC": "machine readable cataloging",
    "RDA": "resource description and access",
    "FRBR": "functional requirements for bibliographic records",
    "OAI": "open archives initiative",
    "PMH": "protocol for metadata harvesting",
    "XML": "extensible markup language",
    "API": "application programming interface",
    "URI": "uniform resource identifier",
    "URL": "uniform resource locator",
    "HTTP": "hypertext transfer protocol",
    "HTTPS": "hypertext transfer protocol secure",
    "FTP": "file transfer protocol",
    "TCP": "transmission control protocol",
    "IP": "internet protocol",
    "DNS": "domain name system",
    "SQL": "structured query language",
    "NOSQL": "not only structured query language",
    "JSON": "javascript object notation",
    "CSV": "comma separated values",
    "PDF": "portable document format",
    "DOC": "document",
    "HTML": "hypertext markup language",
    "CSS": "cascading style sheets",
    "JS": "javascript",
})

SUBJECT_MAPPINGS: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "programming": ("Computer programming", "Software engineering", "Programming languages"),
    "databases": ("Database management", "Database design", "Information storage and retrieval"),
    "web development": ("Web site development", "Web programming", "Internet programming"),
    "libraries": ("Library science", "Libraries", "Library administration"),
    "research": ("Research", "Research methodology", "Academic research"),
    "education": ("Education", "Teaching", "Learning"),
    "technology": ("Technology", "Information technology", "Computer science"),
    "digital": ("Digital libraries", "Digital preservation", "Digital humanities"),
    "social media": ("Social media", "Online social networks", "Social networking"),
    "privacy": ("Privacy", "Data protection", "Information privacy"),
    "security": ("Computer security", "Information security", "Cybersecurity"),
    "ethics": ("Ethics", "Computer ethics", "Information ethics"),
    "management": ("Management", "Information management", "Knowledge management"),
})

RELATED_TERMS: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "computer": ("computing", "technology"),
    "data": ("information", "dataset"),
    "analysis": ("analytics", "evaluation"),
    "system": ("systems", "framework"),
    "method": ("methodology", "approach"),
    "study": ("research", "investigation"),
    "digital": ("electronic", "online"),
    "information": ("data", "knowledge"),
    "management": ("administration", "governance"),
    "design": ("development", "architecture"),
})

SPELL_CORRECTIONS: Mapping[str, str] = MappingProxyType({
    "algorythm": "algorithm",
    "machien": "machine",
    "learnign": "learning",
    "databse": "database",
    "progaming": "programming",
    "libary": "library",
    "reserach": "research",
    "tecnology": "technology",
    "compter": "computer",
    "infromation": "information",
})

COMMON_TOPICS: Tuple[str, ...] = (
    "artificial intelligence",
    "machine learning",
    "data science",
    "digital libraries",
    "information systems",
    "computer science",
    "library science",
    "research methods",
    "database design",
    "web development",
)


@dataclass(frozen=True)
class ConceptualMapping:
    """Natural-language intent mapped to a fixed set of search terms."""

    patterns: Tuple[Pattern[str], ...]
    search_terms: Tuple[str, ...]
    description: str

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)

    def to_dict(self) -> Dict[str, Any]:
        return {"searchTerms": list(self.search_terms), "description": self.description}


def _patterns(*sources: str) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(s, re.IGNORECASE) for s in sources)


# First match wins, so order matters.
CONCEPTUAL_MAPPINGS: Tuple[ConceptualMapping, ...] = (
    ConceptualMapping(
        patterns=_patterns(
            r"book.*where.*kids.*want.*become.*wizards?",
            r"story.*children.*becoming.*wizards?",
            r"young.*people.*learning.*magic",
            r"kids.*wizards?.*school",
            r"harry.*potter",
        ),
        search_terms=("Harry Potter", "wizard", "magic", "school", "children", "young adult"),
        description="Harry Potter series and similar wizard school stories",
    ),
    ConceptualMapping(
        patterns=_patterns(
            r"dystopian.*future.*teens?",
            r"post.*apocalyptic.*young.*adult",
            r"survival.*games.*teenagers",
        ),
        search_terms=("dystopian", "young adult", "survival", "future", "teenagers"),
        description="Dystopian young adult fiction",
    ),
    ConceptualMapping(
        patterns=_patterns(r"vampire.*romance", r"supernatural.*love.*story"),
        search_terms=("vampire", "supernatural", "romance", "fantasy"),
        description="Supernatural romance novels",
    ),
    ConceptualMapping(
        patterns=_patterns(
            r"detective.*mystery.*solving",
            r"crime.*investigation",
            r"murder.*mystery",
        ),
        search_terms=("detective", "mystery", "crime", "investigation", "police"),
        description="Detective and mystery fiction",
    ),
)


# ────────────────────────────────────────────────────────────
#  Pure stages
# ────────────────────────────────────────────────────────────

_PUNCT_RE = re.compile(r"[^\w\s-]")
_SPACE_RE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    text = _PUNCT_RE.sub(" ", (query or "").strip().lower())
    return _SPACE_RE.sub(" ", text).strip()


def find_conceptual_match(
    query: str,
    mappings: Tuple[ConceptualMapping, ...] = CONCEPTUAL_MAPPINGS,
) -> Optional[ConceptualMapping]:
    text = _SPACE_RE.sub(" ", (query or "").strip())
    for mapping in mappings:
        if mapping.matches(text):
            logger.debug("conceptual_match", description=mapping.description)
            return mapping
    return None


def correct_spelling(query: str) -> str:
    corrected = query
    for wrong, right in SPELL_CORRECTIONS.items():
        corrected = re.sub(rf"\b{wrong}\b", right, corrected, flags=re.IGNORECASE)
    return corrected


def expand_abbreviations(query: str) -> str:
    expanded = query
    seen = set()
    for word in query.split(" "):
        key = word.upper()
        if not word or key in seen or key not in ABBREVIATIONS:
            continue
        seen.add(key)
        expanded = re.sub(
            rf"\b{re.escape(word)}\b",
            f"{word} {ABBREVIATIONS[key]}",
            expanded,
            flags=re.IGNORECASE,
        )
    return expanded


def related_terms(query: str) -> List[str]:
    terms: List[str] = []
    for word in query.lower().split(" "):
        for term in RELATED_TERMS.get(word, ()):
            if term not in terms:
                terms.append(term)
    return terms


def subject_headings(query: str) -> List[str]:
    headings: List[str] = []
    lowered = query.lower()
    for key, subjects in SUBJECT_MAPPINGS.items():
        if key in lowered:
            headings.extend(s for s in subjects if s not in headings)
    return headings


def search_variations(query: str, related: List[str]) -> List[str]:
    variations = [query]
    if " " in query:
        variations.append(f'"{query}"')
    variations.extend(f"{query} {term}" for term in related[:3])

    words = query.split(" ")
    if len(words) > 1:
        variations.append(" AND ".join(words))
        variations.append(" OR ".join(words))
    for word in words:
        if len(word) > 4:
            variations.append(query.replace(word, f"{word}*", 1))

    return list(dict.fromkeys(variations))


def search_strategy(query: str, preferences: Optional[Dict[str, Any]] = None) -> List[str]:
    preferences = preferences or {}
    strategies = ["Start with broad terms, then narrow down"]
    if len(query.split(" ")) == 1:
        strategies.append("Consider adding related terms or context")
    else:
        strategies.append("Try individual keywords if no results found")

    level = preferences.get("academicLevel")
    if level == "graduate":
        strategies.append("Focus on peer-reviewed sources and recent publications")
    elif level == "undergraduate":
        strategies.append("Include textbooks and introductory materials")

    if preferences.get("timeframe") == "recent":
        strategies.append("Limit search to last 5 years for current information")
    return strategies


# ────────────────────────────────────────────────────────────
#  Result
# ────────────────────────────────────────────────────────────

@dataclass
class QueryRewrite:
    original_query: str
    processed_query: str
    expanded_query: str
    related_terms: List[str] = field(default_factory=list)
    subject_headings: List[str] = field(default_factory=list)
    search_variations: List[str] = field(default_factory=list)
    search_strategy: List[str] = field(default_factory=list)
    conceptual_match: Optional[ConceptualMapping] = None
    corrected_spelling: bool = False
    expanded_abbreviations: bool = False
    ai_enhancement: Optional[Dict[str, Any]] = None
    is_fallback: bool = False
    processing_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalQuery": self.original_query,
            "processedQuery": self.processed_query,
            "expandedQuery": self.expanded_query,
            "correctedSpelling": self.corrected_spelling,
            "expandedAbbreviations": self.expanded_abbreviations,
            "conceptualMatch": self.conceptual_match.to_dict() if self.conceptual_match else None,
            "relatedTerms": list(self.related_terms),
            "subjectHeadings": list(self.subject_headings),
            "searchVariations": list(self.search_variations),
            "searchStrategy": list(self.search_strategy),
            "aiEnhancement": self.ai_enhancement,
            "processingTime": self.processing_time_ms,
        }


def fallback_rewrite(query: str) -> QueryRewrite:
    """Deterministic rewrite from normalization, spelling and abbreviations only."""
    processed = correct_spelling(normalize_query(query))
    return QueryRewrite(
        original_query=query,
        processed_query=processed,
        expanded_query=expand_abbreviations(processed),
        search_variations=[query],
        search_strategy=["Use basic keyword search", "Try related terms if needed"],
        is_fallback=True,
    )


class QueryRewriter:
    """Rewrites patron queries; the language model is used only when available."""

    def __init__(self, llm: Any = None):
        self.llm = llm

    async def rewrite(
        self,
        query: str,
        context: str = "",
        preferences: Optional[Dict[str, Any]] = None,
    ) -> QueryRewrite:
        start = time.perf_counter()
        preferences = preferences or {}
        try:
            result = self.rewrite_deterministic(query, preferences)
        except Exception as e:
            logger.error("query_rewrite_failed", error=str(e), exc_info=True)
            return fallback_rewrite(query)

        if result.conceptual_match is None and self.llm is not None and self.llm.is_available():
            result.ai_enhancement = await self._ai_enhancement(
                result.processed_query, context, preferences
            )

        result.processing_time_ms = (time.perf_counter() - start) * 1000
        return result

    def rewrite_deterministic(
        self, query: str, preferences: Optional[Dict[str, Any]] = None
    ) -> QueryRewrite:
        normalized = normalize_query(query)
        processed = normalized

        match = find_conceptual_match(query)
        if match is not None:
            processed = " ".join(match.search_terms)

        processed = correct_spelling(processed)
        expanded = processed if match is not None else expand_abbreviations(processed)
        related = related_terms(processed)

        return QueryRewrite(
            original_query=query,
            processed_query=processed,
            expanded_query=expanded,
            related_terms=related,
            subject_headings=subject_headings(processed),
            search_variations=search_variations(processed, related),
            search_strategy=search_strategy(processed, preferences),
            conceptual_match=match,
            corrected_spelling=match is None and processed != normalized,
            expanded_abbreviations=expanded != processed,
        )

    async def _ai_enhancement(
        self, query: str, context: str, preferences: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        prompt = (
            "As a research librarian, enhance this search query for a library catalog:\n\n"
            f'Query: "{query}"\n'
            f'Context: "{context}"\n'
            f"User Preferences: {json.dumps(preferences, default=str)}\n\n"
            "Provide enhancements in JSON format:\n"
            "{\n"
            '  "enhancedKeywords": ["additional relevant keywords"],\n'
            '  "conceptualTerms": ["broader conceptual terms"],\n'
            '  "specificTerms": ["more specific variants"],\n'
            '  "disciplinaryConnections": ["related academic disciplines"],\n'
            '  "searchTips": ["specific search strategy recommendations"],\n'
            '  "potentialChallenges": ["possible search difficulties to anticipate"]\n'
            "}"
        )
        try:
            payload = await self.llm.generate_json(prompt, temperature=0.5)
        except CatalogAssistantError as e:
            logger.warning("ai_enhancement_failed", error=str(e))
            return None
        return payload if isinstance(payload, dict) else None


def get_query_suggestions(partial_query: str, limit: int = 5) -> List[str]:
    """Suggest completions for a partially typed query."""
    partial = (partial_query or "").lower()
    suggestions: List[str] = []
    for abbr, full in ABBREVIATIONS.items():
        if abbr.lower().startswith(partial) or partial in full:
            suggestions.append(full)
    suggestions.extend(topic for topic in SUBJECT_MAPPINGS if partial in topic)
    suggestions.extend(topic for topic in COMMON_TOPICS if partial in topic)
    return list(dict.fromkeys(suggestions))[:limit]


def analyze_query_complexity(query: str) -> Dict[str, Any]:
    words = (query or "").split()
    has_special = any(w.upper() in ABBREVIATIONS for w in words)
    complexity: Dict[str, Any] = {
        "wordCount": len(words),
        "hasSpecialTerms": has_special,
        "hasMultipleConcepts": len(words) > 3,
        "difficulty": "medium",
        "recommendations": [],
    }
    if len(words) == 1:
        complexity["difficulty"] = "simple"
        complexity["recommendations"].append("Consider adding more specific terms")
    elif len(words) > 5:
        complexity["difficulty"] = "complex"
        complexity["recommendations"].append("Try breaking into multiple simpler searches")
    if has_special:
        complexity["recommendations"].append(
            "Specialized terminology detected - good for precise searches"
        )
    return complexity
