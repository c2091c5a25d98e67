import pytest

from conftest import FakeLLM
from library_rag.services.query_rewriter import (
    QueryRewriter,
    analyze_query_complexity,
    correct_spelling,
    expand_abbreviations,
    fallback_rewrite,
    find_conceptual_match,
    get_query_suggestions,
    normalize_query,
    search_variations,
    subject_headings,
)


def test_normalize_strips_punctuation_but_keeps_hyphens():
    assert normalize_query("  Post-Modern   Libraries?! ") == "post-modern libraries"


def test_harry_potter_maps_to_wizard_school_terms():
    rewrite = QueryRewriter().rewrite_deterministic("harry potter")

    terms = rewrite.processed_query.lower().split()
    for term in ("wizard", "magic", "school"):
        assert term in terms
    assert rewrite.expanded_query == rewrite.processed_query
    assert rewrite.conceptual_match is not None
    assert rewrite.expanded_abbreviations is False


def test_described_plot_matches_conceptual_mapping():
    match = find_conceptual_match("a book where kids want to become wizards")
    assert match is not None
    assert "wizard" in match.search_terms


def test_first_conceptual_mapping_wins():
    match = find_conceptual_match("murder mystery with harry potter")
    assert match.description.startswith("Harry Potter")


def test_conceptual_match_skips_abbreviation_expansion():
    rewrite = QueryRewriter().rewrite_deterministic("kids wizards school AI")
    assert "artificial intelligence" not in rewrite.expanded_query


def test_abbreviation_expansion_keeps_original_token():
    assert expand_abbreviations("ml basics") == "ml machine learning basics"


def test_spelling_correction_is_whole_word():
    assert correct_spelling("machien learnign") == "machine learning"
    assert correct_spelling("libaryish") == "libaryish"


def test_rewrite_reports_spelling_and_related_terms():
    rewrite = QueryRewriter().rewrite_deterministic("compter databse design")

    assert rewrite.processed_query == "computer database design"
    assert rewrite.corrected_spelling is True
    assert "computing" in rewrite.related_terms
    assert "development" in rewrite.related_terms


def test_subject_headings_from_keyword_table():
    headings = subject_headings("privacy in digital archives")
    assert "Information privacy" in headings
    assert "Digital preservation" in headings


def test_search_variations_are_unique_and_start_with_query():
    variations = search_variations("library science", ["research"])
    assert variations[0] == "library science"
    assert '"library science"' in variations
    assert "library AND science" in variations
    assert len(variations) == len(set(variations))


def test_fallback_rewrite_is_deterministic():
    rewrite = fallback_rewrite("Reserach on OPAC")
    assert rewrite.is_fallback
    assert rewrite.processed_query == "research on opac"
    assert "online public access catalog" in rewrite.expanded_query


@pytest.mark.asyncio
async def test_rewrite_never_raises(monkeypatch):
    rewriter = QueryRewriter()

    def _boom(*args, **kwargs):
        raise RuntimeError("table corrupted")

    monkeypatch.setattr(rewriter, "rewrite_deterministic", _boom)

    rewrite = await rewriter.rewrite("Databse systems")
    assert rewrite.is_fallback
    assert rewrite.processed_query == "database systems"


@pytest.mark.asyncio
async def test_ai_enhancement_attached_when_model_available():
    llm = FakeLLM(rules=[("enhance this search query", {"enhancedKeywords": ["metadata"]})])

    rewrite = await QueryRewriter(llm).rewrite("cataloging standards")

    assert rewrite.ai_enhancement == {"enhancedKeywords": ["metadata"]}
    assert rewrite.to_dict()["aiEnhancement"] == {"enhancedKeywords": ["metadata"]}


@pytest.mark.asyncio
async def test_ai_enhancement_failure_is_absorbed():
    rewrite = await QueryRewriter(FakeLLM()).rewrite("cataloging standards")
    assert rewrite.ai_enhancement is None
    assert rewrite.processed_query == "cataloging standards"


@pytest.mark.asyncio
async def test_no_model_call_for_conceptual_match():
    llm = FakeLLM(rules=[("enhance this search query", {"x": 1})])
    await QueryRewriter(llm).rewrite("harry potter")
    assert llm.prompts == []


def test_query_suggestions_are_limited():
    suggestions = get_query_suggestions("data", limit=3)
    assert len(suggestions) <= 3
    assert all("data" in s for s in suggestions)


def test_query_complexity():
    assert analyze_query_complexity("databases")["difficulty"] == "simple"
    complex_query = analyze_query_complexity("history of SQL query planners in relational systems")
    assert complex_query["difficulty"] == "complex"
    assert complex_query["hasSpecialTerms"] is True
