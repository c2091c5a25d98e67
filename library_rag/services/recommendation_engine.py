"""
Research recommendations derived from a final result set.

Every section is computed deterministically from fixed tables and the results
themselves. The language model, when available, only adds related queries and
an optional strategy narrative on top of that.
"""

from __future__ import annotations

import time
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..core.exceptions import CatalogAssistantError
from ..models.catalog import CatalogResult

logger = structlog.get_logger(__name__)

MAX_RELATED_QUERIES = 10

SUBJECT_HIERARCHY: Dict[str, Dict[str, Any]] = {
    "Computer Science": {
        "children": [
            "Artificial Intelligence", "Machine Learning", "Database Systems",
            "Software Engineering", "Human-Computer Interaction",
        ],
        "parent": "Technology",
    },
    "Artificial Intelligence": {
        "children": ["Machine Learning", "Natural Language Processing", "Computer Vision", "Robotics"],
        "parent": "Computer Science",
    },
    "Machine Learning": {
        "children": ["Deep Learning", "Neural Networks", "Data Mining", "Pattern Recognition"],
        "parent": "Artificial Intelligence",
    },
    "Information Science": {
        "children": ["Information Retrieval", "Knowledge Management", "Digital Libraries", "Information Systems"],
        "parent": "Library Science",
    },
    "Library Science": {
        "children": ["Information Science", "Cataloging", "Collection Development", "Reference Services"],
        "parent": None,
    },
    "Database Systems": {
        "children": ["Database Design", "Query Processing", "Data Warehousing", "NoSQL"],
        "parent": "Computer Science",
    },
}

RESEARCH_METHODOLOGIES: Dict[str, Dict[str, Any]] = {
    "quantitative": {
        "description": "Statistical analysis and numerical data",
        "keywords": ("survey", "experiment", "statistics", "measurement"),
        "recommendedSources": ["research articles", "statistical reports", "empirical studies"],
    },
    "qualitative": {
        "description": "In-depth understanding through non-numerical data",
        "keywords": ("interview", "case study", "ethnography", "observation"),
        "recommendedSources": ["case studies", "interviews", "field studies"],
    },
    "mixed-methods": {
        "description": "Combination of quantitative and qualitative approaches",
        "keywords": ("triangulation", "convergent", "sequential"),
        "recommendedSources": ["comprehensive studies", "multi-method research"],
    },
    "systematic-review": {
        "description": "Comprehensive review of existing literature",
        "keywords": ("meta-analysis", "systematic", "literature review"),
        "recommendedSources": ["review articles", "meta-analyses", "bibliographies"],
    },
}

EXPECTED_FORMATS = ("book", "article", "thesis", "conference", "report", "website")

MISSING_FORMAT_ADVICE: Dict[str, str] = {
    "article": "Search academic databases for peer-reviewed articles",
    "thesis": "Check institutional repositories for theses and dissertations",
    "conference": "Look for conference proceedings for latest research",
    "report": "Find industry or government reports for practical insights",
    "website": "Consider authoritative websites and online resources",
}

DISCIPLINE_KEYWORDS: Dict[str, tuple] = {
    "Psychology": ("psychology", "cognitive", "behavior", "mental"),
    "Sociology": ("social", "society", "community", "cultural"),
    "Economics": ("economic", "finance", "market", "business"),
    "Engineering": ("engineering", "technical", "system", "design"),
    "Education": ("education", "teaching", "learning", "pedagogy"),
    "Medicine": ("medical", "health", "clinical", "patient"),
    "Law": ("legal", "law", "policy", "regulation"),
}

AUTHORITY_PUBLISHERS = (
    "oxford", "cambridge", "harvard", "mit", "stanford", "princeton",
    "academic press", "springer", "elsevier", "wiley", "sage", "ieee", "acm",
)

ACADEMIC_CONTEXT_WORDS = ("research", "thesis", "dissertation")
URGENT_CONTEXT_WORDS = ("urgent", "deadline")


def _is_authority_publisher(publisher: Optional[str]) -> bool:
    if not publisher:
        return False
    lowered = publisher.lower()
    return any(name in lowered for name in AUTHORITY_PUBLISHERS)


def _dedupe(items: Sequence[str]) -> List[str]:
    seen = set()
    unique = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


def hierarchical_queries(query: str) -> List[str]:
    """Parent and child topics for every hierarchy subject named in *query*."""
    lowered = query.lower()
    queries: List[str] = []
    for subject, node in SUBJECT_HIERARCHY.items():
        if subject.lower() not in lowered:
            continue
        if node["parent"]:
            queries.append(node["parent"])
        for child in node["children"]:
            queries.append(child)
            queries.append(f"{child} {query}")
    return queries


def estimate_timeline(user_context: str) -> Dict[str, Any]:
    context = (user_context or "").lower()
    if any(word in context for word in ACADEMIC_CONTEXT_WORDS):
        return {
            "total": "6-12 weeks",
            "phases": {
                "Literature review": "2-3 weeks",
                "Source analysis": "2-3 weeks",
                "Synthesis": "1-2 weeks",
                "Writing": "1-4 weeks",
            },
        }
    return {
        "total": "1-3 weeks",
        "phases": {
            "Initial search": "1-2 days",
            "Source review": "3-5 days",
            "Final selection": "1-2 days",
        },
    }


def required_skills(query: str, user_context: str) -> List[str]:
    skills = ["Information literacy", "Source evaluation"]
    context = (user_context or "").lower()
    lowered = query.lower()
    if "research" in context or "academic" in context:
        skills += ["Academic writing", "Citation management"]
    if "data" in lowered or "statistics" in lowered:
        skills += ["Data analysis", "Statistical interpretation"]
    if "technology" in lowered or "digital" in lowered:
        skills += ["Digital literacy", "Technology evaluation"]
    return skills


def fallback_recommendations(query: str) -> Dict[str, Any]:
    return {
        "relatedQueries": [f"{query} review", f"recent {query}", f"{query} methodology"],
        "topicExpansion": {
            "broaderTopics": ["Related research area"],
            "narrowerTopics": ["Specific aspect of topic"],
            "relatedFields": ["Connected disciplines"],
            "emergingAreas": [],
        },
        "methodologyGuidance": {
            "recommendedApproach": "systematic-review",
            "relevantMethodologies": [
                {
                    "method": "literature-review",
                    "description": "Comprehensive review of existing sources",
                    "recommendedSources": ["academic articles", "books", "reports"],
                }
            ],
        },
        "sourceDiversification": {
            "recommendations": [
                "Seek multiple source types",
                "Include recent publications",
                "Check authoritative publishers",
            ]
        },
        "nextSteps": {
            "immediate": ["Review available results", "Expand search terms"],
            "shortTerm": ["Develop search strategy", "Evaluate sources"],
            "longTerm": ["Synthesize findings"],
            "prioritized": ["Review available results", "Expand search terms", "Develop search strategy"],
        },
        "fallback": True,
    }


class RecommendationEngine:
    def __init__(self, llm: Any = None, current_year: Optional[int] = None):
        self.llm = llm
        self._fixed_year = current_year

    @property
    def current_year(self) -> int:
        return self._fixed_year or datetime.now().year

    def _llm_ready(self) -> bool:
        return self.llm is not None and self.llm.is_available()

    def _is_recent(self, result: CatalogResult, within: int = 3) -> bool:
        return bool(result.year) and result.year >= self.current_year - within

    async def generate(
        self,
        results: Sequence[CatalogResult],
        query: str,
        user_context: str = "",
        search_history: Optional[Sequence[Any]] = None,
    ) -> Dict[str, Any]:
        start = time.perf_counter()
        results = list(results)
        user_context = user_context or ""
        try:
            recommendations = {
                "relatedQueries": await self.related_queries(query, results, user_context),
                "topicExpansion": self.topic_expansion(query, results),
                "methodologyGuidance": self.methodology_guidance(query, user_context),
                "sourceDiversification": self.source_diversification(results),
                "researchStrategy": await self.research_strategy(query, results, user_context),
                "expertRecommendations": self.expert_recommendations(results),
                "interdisciplinaryConnections": self.interdisciplinary_connections(query, results),
                "nextSteps": self.next_steps(results, user_context, search_history or []),
            }
        except Exception as e:
            logger.error("recommendation_generation_failed", error=str(e), exc_info=True)
            return fallback_recommendations(query)

        recommendations["processingTime"] = round((time.perf_counter() - start) * 1000, 2)
        return recommendations

    # ────────────────────────────────────────────────────────────
    #  Related queries
    # ────────────────────────────────────────────────────────────

    async def related_queries(self, query: str, results: List[CatalogResult], user_context: str = "") -> List[str]:
        lowered = query.lower()
        candidates: List[str] = []

        for result in results[:3]:
            for word in (result.title or "").lower().split():
                if len(word) > 3 and word not in lowered:
                    candidates.append(f"{query} {word}")
            for subject in result.subjects:
                if subject.lower() not in lowered:
                    candidates.append(f'{query} "{subject}"')
                    candidates.append(subject)

        candidates += hierarchical_queries(query)
        candidates += [
            f"recent research {query}",
            f"{query} trends",
            f"{query} future",
            f"{query} methodology",
            f"{query} case study",
            f"{query} review",
        ]

        if self._llm_ready():
            candidates += await self._ai_related_queries(query, results, user_context)

        return _dedupe(candidates)[:MAX_RELATED_QUERIES]

    async def _ai_related_queries(self, query: str, results: List[CatalogResult], user_context: str) -> List[str]:
        sample = "; ".join(f"{r.title} by {r.author}" for r in results[:3])
        prompt = (
            "Based on this search query and results, suggest 5 related search queries:\n\n"
            f'Original Query: "{query}"\n'
            f'User Context: "{user_context}"\n'
            f"Sample Results: {sample}\n\n"
            "Provide related queries that would help expand or refine the research: broader perspective "
            "queries, more specific queries, alternative approaches, current trends and methodological "
            "variations.\n\n"
            'Return as a JSON array: ["query1", "query2", "query3", "query4", "query5"]'
        )
        try:
            suggestions = await self.llm.generate_json(prompt, temperature=0.7)
        except CatalogAssistantError as e:
            logger.warning("ai_related_queries_failed", error=str(e))
            return []
        if not isinstance(suggestions, list):
            return []
        return [str(s).strip() for s in suggestions if isinstance(s, str) and s.strip()]

    # ────────────────────────────────────────────────────────────
    #  Deterministic sections
    # ────────────────────────────────────────────────────────────

    def topic_expansion(self, query: str, results: List[CatalogResult]) -> Dict[str, List[str]]:
        lowered = query.lower()
        frequency = Counter(s for r in results for s in r.subjects)
        common = [subject for subject, _ in frequency.most_common(5)]

        broader: List[str] = []
        narrower: List[str] = []
        for subject, node in SUBJECT_HIERARCHY.items():
            key = subject.lower()
            if key in lowered or any(key in c.lower() for c in common):
                if node["parent"] and node["parent"] not in broader:
                    broader.append(node["parent"])
                narrower += [child for child in node["children"] if child not in narrower]

        recent_subjects = _dedupe([s for r in results if self._is_recent(r) for s in r.subjects])
        return {
            "broaderTopics": broader,
            "narrowerTopics": narrower,
            "relatedFields": common,
            "emergingAreas": recent_subjects[:3],
        }

    @staticmethod
    def methodology_guidance(query: str, user_context: str = "") -> Dict[str, Any]:
        haystacks = (query.lower(), (user_context or "").lower())
        relevant = []
        for method, data in RESEARCH_METHODOLOGIES.items():
            relevance = sum(1 for kw in data["keywords"] if any(kw in h for h in haystacks))
            if relevance:
                relevant.append(
                    {
                        "method": method,
                        "description": data["description"],
                        "relevance": relevance,
                        "recommendedSources": list(data["recommendedSources"]),
                    }
                )
        relevant.sort(key=lambda m: -m["relevance"])

        return {
            "recommendedApproach": relevant[0]["method"] if relevant else "systematic-review",
            "relevantMethodologies": relevant,
            "researchQuestions": [
                f"What are the current trends in {query}?",
                f"How has {query} evolved over time?",
                f"What are the main challenges in {query}?",
                f"What methodologies are used to study {query}?",
            ],
            "dataCollectionTips": [
                "Start with recent systematic reviews",
                "Check multiple databases for comprehensive coverage",
                "Include both academic and practical sources",
                "Consider grey literature for emerging topics",
            ],
        }

    def source_diversification(self, results: List[CatalogResult]) -> Dict[str, Any]:
        current = Counter(r.format or "book" for r in results)
        missing = [fmt for fmt in EXPECTED_FORMATS if fmt not in current]
        return {
            "currentTypes": dict(current),
            "missingTypes": missing,
            "recommendations": [MISSING_FORMAT_ADVICE[fmt] for fmt in missing if fmt in MISSING_FORMAT_ADVICE],
            "qualityIndicators": [
                {"indicator": "Recent sources", "present": any(self._is_recent(r) for r in results)},
                {
                    "indicator": "Authority publishers",
                    "present": any(_is_authority_publisher(r.publisher) for r in results),
                },
                {"indicator": "Proper identifiers", "present": any(r.isbn for r in results)},
            ],
        }

    async def research_strategy(self, query: str, results: List[CatalogResult], user_context: str = "") -> Dict[str, Any]:
        if not results:
            phase1 = "Broaden search terms and explore related topics"
        elif len(results) < 5:
            phase1 = "Expand search with alternative terms and sources"
        else:
            phase1 = "Review and synthesize current findings"

        strategy: Dict[str, Any] = {
            "phase1": phase1,
            "phase2": "Focused investigation",
            "phase3": "Synthesis and analysis",
            "timeline": estimate_timeline(user_context),
            "resources": self.recommend_resources(results),
            "skills": required_skills(query, user_context),
            "challenges": self.potential_challenges(query, results),
        }

        if self._llm_ready():
            ai_strategy = await self._ai_research_strategy(query, results, user_context)
            if ai_strategy is not None:
                strategy["aiRecommendations"] = ai_strategy
        return strategy

    async def _ai_research_strategy(
        self, query: str, results: List[CatalogResult], user_context: str
    ) -> Optional[Dict[str, Any]]:
        summary = "; ".join(f"{r.title} ({r.year or 'n.d.'})" for r in results[:5])
        prompt = (
            "Develop a research strategy for this topic:\n\n"
            f'Topic: "{query}"\n'
            f'Context: "{user_context}"\n'
            f"Current Results: {summary}\n\n"
            "Provide a structured research strategy in JSON format with the keys overallApproach, "
            "keyQuestions (list), searchStrategy (list), sourceTypes (list), timelinePhases (list), "
            "qualityChecks (list) and synthesisApproach."
        )
        try:
            payload = await self.llm.generate_json(prompt, temperature=0.5)
        except CatalogAssistantError as e:
            logger.warning("ai_research_strategy_failed", error=str(e))
            return None
        return payload if isinstance(payload, dict) else None

    def recommend_resources(self, results: List[CatalogResult]) -> List[str]:
        resources = []
        if results:
            resources.append("Start with highest-rated results from current search")
            if not any(self._is_recent(r) for r in results):
                resources.append("Seek more recent sources for current perspectives")
        resources += [
            "Check multiple academic databases",
            "Include grey literature (reports, working papers)",
            "Consult subject-specific encyclopedias",
            "Review bibliographies of key sources",
        ]
        return resources

    def potential_challenges(self, query: str, results: List[CatalogResult]) -> List[str]:
        challenges = []
        if not results:
            challenges.append("Limited available sources - may need to broaden scope")
        elif len(results) > 50:
            challenges.append("Information overload - need better filtering strategies")

        old = [r for r in results if r.year and r.year < self.current_year - 10]
        if results and len(old) > len(results) * 0.7:
            challenges.append("Many older sources - current information may be limited")

        words = query.split()
        if len(words) == 1:
            challenges.append("Very broad topic - may need more specific focus")
        elif len(words) > 6:
            challenges.append("Very specific query - may need to simplify")
        return challenges

    @staticmethod
    def expert_recommendations(results: List[CatalogResult]) -> Dict[str, Any]:
        authors = Counter(r.author for r in results if r.has_author)
        institutions = _dedupe(
            [r.publisher for r in results if r.publisher and ("University" in r.publisher or "Institute" in r.publisher)]
        )
        return {
            "identifiedAuthors": [
                {"author": author, "publications": count} for author, count in authors.most_common(5)
            ],
            "suggestedExperts": [],
            "institutions": institutions[:5],
            "researchGroups": [],
        }

    @staticmethod
    def interdisciplinary_connections(query: str, results: List[CatalogResult]) -> Dict[str, Any]:
        subjects = [s.lower() for r in results for s in r.subjects]
        lowered = query.lower()
        disciplines = []
        for discipline, keywords in DISCIPLINE_KEYWORDS.items():
            relevance = sum(
                1 for kw in keywords if kw in lowered or any(kw in subject for subject in subjects)
            )
            if relevance:
                disciplines.append({"discipline": discipline, "relevance": relevance})
        disciplines.sort(key=lambda d: -d["relevance"])
        return {
            "relatedDisciplines": disciplines[:5],
            "crossoverTopics": [],
            "methodologicalConnections": [],
            "applicationAreas": [],
        }

    @staticmethod
    def next_steps(
        results: List[CatalogResult],
        user_context: str = "",
        search_history: Sequence[Any] = (),
    ) -> Dict[str, List[str]]:
        if not results:
            immediate = ["Broaden search terms", "Try alternative keywords", "Check spelling and terminology"]
        elif len(results) < 3:
            immediate = ["Expand search with related terms", "Search additional databases"]
        else:
            immediate = ["Review top 3-5 most relevant results", "Check bibliographies for additional sources"]

        if len(search_history) >= 3:
            immediate.append("Compare findings across your recent searches")

        short_term = [
            "Develop a systematic search strategy",
            "Create a source evaluation framework",
            "Set up citation management system",
        ]
        long_term = [
            "Synthesize findings across sources",
            "Identify research gaps",
            "Consider primary research opportunities",
        ]

        context = (user_context or "").lower()
        if any(word in context for word in URGENT_CONTEXT_WORDS):
            prioritized = immediate + short_term[:2]
        else:
            prioritized = immediate[:2] + short_term[:3] + long_term[:1]

        return {
            "immediate": immediate,
            "shortTerm": short_term,
            "longTerm": long_term,
            "prioritized": prioritized,
        }
