import asyncio

import pytest

from conftest import FakeLLM, build_result
from library_rag.core.exceptions import CollaboratorUnavailable
from library_rag.services.result_augmenter import (
    ResultAugmenter,
    is_authority_publisher,
    quality_class,
    relevance_class,
)

YEAR = 2024


def _augmenter(**kwargs):
    kwargs.setdefault("ai_insights", False)
    return ResultAugmenter(current_year=YEAR, **kwargs)


def _rich(**overrides):
    data = dict(
        isbn="978-0-00-000000-0",
        description="An introduction to the principles of metadata for digital libraries and archives.",
        subjects=["Library Science", "Metadata"],
        publisher="Oxford University Press",
        year=2022,
    )
    data.update(overrides)
    return build_result("rich", **data)


def test_quality_score_is_fraction_of_indicators():
    augmenter = _augmenter()
    rich = augmenter.assess_quality(_rich())
    bare = augmenter.assess_quality(build_result("bare", publisher="", year=None))

    assert rich.score == 1.0
    assert rich.quality_class == "high-quality"
    assert bare.score == 0.0
    assert bare.quality_class == "basic-quality"
    assert "Limited description available - may need additional research" in bare.recommendations


def test_quality_is_monotone_in_indicators():
    augmenter = _augmenter()
    scores = [
        augmenter.assess_quality(build_result("1", publisher="", year=None)).score,
        augmenter.assess_quality(build_result("2", year=None)).score,
        augmenter.assess_quality(build_result("3", year=1990)).score,
        augmenter.assess_quality(build_result("4", year=2020)).score,
        augmenter.assess_quality(build_result("5", year=2020, isbn="x")).score,
    ]
    assert all(0.0 <= s <= 1.0 for s in scores)
    assert scores == sorted(scores)
    assert scores[-1] > scores[0]


def test_reading_level_defaults_to_intermediate():
    level = _augmenter().assess_reading_level(build_result("x", title="Maps", description=""))
    assert level.primary == "intermediate"
    assert level.confidence == 0.5


def test_reading_level_confidence_is_clamped():
    result = build_result(
        "x",
        title="Introduction and Basics",
        description="fundamentals overview primer guide",
    )
    level = _augmenter().assess_reading_level(result)
    assert level.primary == "beginner"
    assert level.confidence == 1.0


def test_relevance_weights_title_description_subjects():
    result = build_result(
        "x",
        title="Digital Libraries",
        description="A study of archives",
        subjects=["Digital preservation"],
    )
    relevance = _augmenter().analyze_relevance(result, "digital archives")

    assert relevance.title == 0.5
    assert relevance.description == 0.5
    assert relevance.subjects == 0.5
    assert relevance.overall == pytest.approx(0.5)
    assert relevance.relevance_class == "moderately-relevant"
    assert relevance.matched_terms == ["digital", "archives"]


def test_recency_classes():
    augmenter = _augmenter()
    assert augmenter.assess_recency(2023)["class"] == "very-recent"
    assert augmenter.assess_recency(2020)["class"] == "recent"
    assert augmenter.assess_recency(2015)["class"] == "moderate"
    assert augmenter.assess_recency(1980)["class"] == "older"
    assert augmenter.assess_recency(None)["class"] == "unknown"


def test_class_thresholds():
    assert quality_class(0.6) == "good-quality"
    assert quality_class(0.4) == "moderate-quality"
    assert relevance_class(0.7) == "highly-relevant"
    assert is_authority_publisher("MIT Press")
    assert not is_authority_publisher(None)


@pytest.mark.asyncio
async def test_augment_empty_list():
    collection = await _augmenter().augment([], "anything")
    assert collection.results == []
    assert collection.collection_insights is None


@pytest.mark.asyncio
async def test_augment_attaches_signals_and_collection_insights():
    results = [_rich(), build_result("b", year=1990)]
    collection = await _augmenter().augment(results, "metadata", "research project")

    assert collection.results is results
    rich = results[0].augmentation
    assert rich.quality_score == 1.0
    assert "Suitable for research purposes" in rich.usage_recommendations
    assert rich.format_insights["format"] == "book"

    insights = collection.collection_insights
    assert insights["overallQuality"]["distribution"]["high"] == 1
    assert insights["temporalDistribution"]["distribution"]["older"] == 1
    assert "Consider broadening search terms to find more resources" in insights["recommendations"]
    assert 0.0 <= insights["diversityAnalysis"]["diversityScore"] <= 1.0

    serialized = results[0].to_dict()["augmentation"]
    assert serialized["qualityIndicators"]["class"] == "high-quality"


@pytest.mark.asyncio
async def test_single_result_failure_is_isolated(monkeypatch):
    augmenter = _augmenter()
    original = augmenter.assess_quality

    def flaky(result):
        if result.id == "bad":
            raise RuntimeError("broken record")
        return original(result)

    monkeypatch.setattr(augmenter, "assess_quality", flaky)
    results = [build_result("good"), build_result("bad", title="Introduction to Maps")]

    collection = await augmenter.augment(results, "maps")

    assert collection.results[0].augmentation.error is None
    bad = collection.results[1].augmentation
    assert bad.error == "broken record"
    assert bad.basic_insights["estimatedLevel"] == "beginner"
    assert bad.to_dict() == {"error": "broken record", "basicInsights": bad.basic_insights}


@pytest.mark.asyncio
async def test_ai_insight_failure_leaves_siblings_untouched():
    def reply(prompt):
        if '"Title fail"' in prompt:
            raise CollaboratorUnavailable("language_model")
        return {"contentSummary": "ok"}

    augmenter = _augmenter(llm=FakeLLM(rules=[("Analyze this library resource", reply)]), ai_insights=True)
    results = [build_result("ok"), build_result("fail")]

    await augmenter.augment(results, "maps")

    assert results[0].augmentation.ai_insights == {"contentSummary": "ok"}
    assert results[1].augmentation.ai_insights is None
    assert results[1].augmentation.quality is not None


@pytest.mark.asyncio
async def test_ai_insight_timeout_is_absorbed(monkeypatch):
    augmenter = _augmenter(llm=FakeLLM(), ai_insights=True, timeout=0.01)

    async def slow(*args):
        await asyncio.sleep(1)

    monkeypatch.setattr(augmenter, "_ai_insight", slow)
    results = [build_result("x")]

    await augmenter.augment(results, "maps")

    assert results[0].augmentation.ai_insights is None


@pytest.mark.parametrize("length, expected", [(49, False), (50, True)])
def test_description_indicator_threshold(length, expected):
    result = build_result("d", description="d" * length)
    assert _augmenter().quality_indicators(result)["hasDescription"] is expected
