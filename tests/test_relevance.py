"""
Tests for RelevanceIndex - ranking resolved topics against code

These tests validate:
- The best match is normalized to 1.0
- Per-topic thresholds replace the global minimum score
- Legacy, object type, category, domain, tag and difficulty filters
- Lazy building and failed rebuilds
- Matched signals reported per topic
"""

import pytest

from strata.core.resolver import ResolutionResult
from strata.core.topic import Difficulty, RelevanceSignals, Topic
from strata.services.relevance import (
    IndexBuildError, RelevanceIndex, SearchOptions, extract_content_summary, topic_document,
)


LOOP_CODE = '''
if SalesLine.FindSet() then
    repeat
        SalesLine.CalcFields(Amount);
    until SalesLine.Next() = 0;
'''


class StaticTopics:
    """In-memory topic source: every topic comes from one layer."""

    def __init__(self, topics):
        self.topics = {topic.id: topic for topic in topics}
        self.fail = False

    def get_all_topic_ids(self):
        if self.fail:
            raise RuntimeError("source offline")
        return sorted(self.topics)

    def resolve(self, topic_id):
        topic = self.topics.get(topic_id)
        return ResolutionResult(topic=topic, source_layer="test") if topic else None


def make_topic(topic_id, title, constructs=None, keywords=None, legacy=False, content="Body text here.",
               domain=("performance",), **fields):
    signals = None if legacy else RelevanceSignals(constructs=list(constructs or []), keywords=list(keywords or []))
    return Topic(id=topic_id, title=title, content=content, domain=list(domain),
                 relevance_signals=signals, **fields)


def loop_topics(**beta_fields):
    return [
        make_topic("performance/alpha", "Alpha", constructs=["FindSet", "CalcFields", "repeat"]),
        make_topic("performance/beta", "Beta", constructs=["FindSet"], **beta_fields),
        make_topic("performance/gamma", "Gamma", constructs=["Insert"]),
    ]


class TestNormalization:
    """Scores relative to the best hit."""

    def test_top_result_is_one(self):
        index = RelevanceIndex(StaticTopics(loop_topics()))
        matches = index.find_relevant_topics(LOOP_CODE, min_score=0.0)

        assert matches[0].topic_id == "performance/alpha"
        assert matches[0].relevance_score == 1.0
        assert all(0.0 < m.relevance_score <= 1.0 for m in matches)

    def test_sorted_descending(self):
        index = RelevanceIndex(StaticTopics(loop_topics()))
        scores = [m.relevance_score for m in index.find_relevant_topics(LOOP_CODE, min_score=0.0)]
        assert scores == sorted(scores, reverse=True)

    def test_unrelated_topic_not_returned(self):
        index = RelevanceIndex(StaticTopics(loop_topics()))
        ids = [m.topic_id for m in index.find_relevant_topics(LOOP_CODE, min_score=0.0)]
        assert "performance/gamma" not in ids

    def test_default_min_score_drops_weak_hits(self):
        """Beta matches one construct of four and falls under 0.3."""
        index = RelevanceIndex(StaticTopics(loop_topics()))
        ids = [m.topic_id for m in index.find_relevant_topics(LOOP_CODE)]
        assert ids == ["performance/alpha"]

    def test_top_is_one_after_filtering(self):
        """Normalization uses the best hit that survives the filters."""
        index = RelevanceIndex(StaticTopics(loop_topics(category="database")))
        matches = index.find_relevant_topics(LOOP_CODE, category="database", min_score=0.0)
        assert [m.topic_id for m in matches] == ["performance/beta"]
        assert matches[0].relevance_score == 1.0


class TestThresholds:
    """Per-topic relevance_threshold."""

    def test_high_threshold_excludes(self):
        """A weak match is dropped when its own threshold is 0.9."""
        plain = RelevanceIndex(StaticTopics(loop_topics()))
        strict = RelevanceIndex(StaticTopics(loop_topics(relevance_threshold=0.9)))

        assert "performance/beta" in [m.topic_id for m in plain.find_relevant_topics(LOOP_CODE, min_score=0.0)]
        assert "performance/beta" not in [m.topic_id for m in strict.find_relevant_topics(LOOP_CODE, min_score=0.0)]

    def test_low_threshold_overrides_min_score(self):
        """A topic's threshold replaces the global minimum, in both directions."""
        lenient = RelevanceIndex(StaticTopics(loop_topics(relevance_threshold=0.1)))
        ids = [m.topic_id for m in lenient.find_relevant_topics(LOOP_CODE, min_score=0.3)]
        assert ids == ["performance/alpha", "performance/beta"]

    def test_threshold_applies_to_top_result(self):
        """Even the 1.0 match passes any threshold."""
        index = RelevanceIndex(StaticTopics([make_topic("t/only", "Only", constructs=["FindSet"],
                                                        relevance_threshold=1.0)]))
        assert [m.topic_id for m in index.find_relevant_topics("Rec.FindSet();")] == ["t/only"]


class TestFilters:
    """Caller-side filtering."""

    def test_exclude_legacy(self):
        topics = [
            make_topic("performance/calc", "CalcFields", constructs=["CalcFields"]),
            make_topic("performance/old", "Old notes", legacy=True, content="CalcFields inside loops is slow."),
        ]
        index = RelevanceIndex(StaticTopics(topics))

        with_legacy = [m.topic_id for m in index.find_relevant_topics(LOOP_CODE, min_score=0.0)]
        without = [m.topic_id for m in index.find_relevant_topics(LOOP_CODE, min_score=0.0,
                                                                  include_legacy_topics=False)]

        assert "performance/old" in with_legacy
        assert without == ["performance/calc"]

    def test_object_type_filter(self):
        topics = [
            make_topic("t/report-only", "Report", constructs=["FindSet"], applicable_object_types=["report"]),
            make_topic("t/any", "Any", constructs=["FindSet"]),
            make_topic("t/codeunit", "Codeunit", constructs=["FindSet"], applicable_object_types=["codeunit"]),
        ]
        index = RelevanceIndex(StaticTopics(topics))
        ids = {m.topic_id for m in index.find_relevant_topics("Rec.FindSet();", object_type="Codeunit",
                                                               min_score=0.0)}
        assert ids == {"t/any", "t/codeunit"}

    def test_category_filter(self):
        topics = [
            make_topic("t/db", "Database", constructs=["FindSet"], category="database"),
            make_topic("t/quality", "Quality", constructs=["FindSet"], category="quality"),
        ]
        index = RelevanceIndex(StaticTopics(topics))
        matches = index.find_relevant_topics("Rec.FindSet();", category="quality", min_score=0.0)
        assert [m.topic_id for m in matches] == ["t/quality"]
        assert matches[0].relevance_score == 1.0

    def test_domain_filter(self):
        """Any of a topic's domains matches, case-insensitively."""
        topics = [
            make_topic("t/perf", "Perf", constructs=["FindSet"]),
            make_topic("t/errors", "Errors", constructs=["FindSet"], domain=["error-handling", "data-access"]),
        ]
        index = RelevanceIndex(StaticTopics(topics))
        matches = index.find_relevant_topics("Rec.FindSet();", domain="Data-Access", min_score=0.0)
        assert [m.topic_id for m in matches] == ["t/errors"]
        assert matches[0].relevance_score == 1.0

    def test_tags_filter_requires_every_tag(self):
        topics = [
            make_topic("t/both", "Both", constructs=["FindSet"], tags=["loops", "Records"]),
            make_topic("t/loops", "Loops", constructs=["FindSet"], tags=["loops"]),
            make_topic("t/none", "None", constructs=["FindSet"]),
        ]
        index = RelevanceIndex(StaticTopics(topics))

        one = {m.topic_id for m in index.find_relevant_topics("Rec.FindSet();", tags=["loops"], min_score=0.0)}
        two = [m.topic_id for m in index.find_relevant_topics("Rec.FindSet();", tags=["loops", "records"],
                                                              min_score=0.0)]

        assert one == {"t/both", "t/loops"}
        assert two == ["t/both"]

    def test_difficulty_filter(self):
        topics = [
            make_topic("t/basic", "Basic", constructs=["FindSet"], difficulty=Difficulty.BEGINNER),
            make_topic("t/deep", "Deep", constructs=["FindSet"], difficulty=Difficulty.EXPERT),
            make_topic("t/unrated", "Unrated", constructs=["FindSet"]),
        ]
        index = RelevanceIndex(StaticTopics(topics))
        matches = index.find_relevant_topics("Rec.FindSet();", difficulty="Expert", min_score=0.0)
        assert [m.topic_id for m in matches] == ["t/deep"]

    def test_tags_alone_make_a_query(self):
        """With no query text, search looks for the requested tags."""
        topics = [
            make_topic("t/locks", "Locks", constructs=["LockTable"], tags=["locking"]),
            make_topic("t/loops", "Loops", constructs=["FindSet"], tags=["loops"]),
        ]
        index = RelevanceIndex(StaticTopics(topics))
        assert [m.topic_id for m in index.search("", tags=["locking"])] == ["t/locks"]

    def test_limit(self):
        topics = [make_topic(f"t/{i}", f"Topic {i}", constructs=["FindSet"]) for i in range(6)]
        topics.append(make_topic("t/other", "Other", constructs=["Insert"]))
        index = RelevanceIndex(StaticTopics(topics))
        assert len(index.find_relevant_topics("Rec.FindSet();", limit=3)) == 3

    def test_options_object_with_override(self):
        """Keyword overrides replace single fields of a SearchOptions."""
        index = RelevanceIndex(StaticTopics(loop_topics()))
        options = SearchOptions(limit=1, min_score=0.0)
        assert len(index.find_relevant_topics(LOOP_CODE, options)) == 1
        assert len(index.find_relevant_topics(LOOP_CODE, options, limit=5)) == 2
        assert options.limit == 1

    def test_unknown_option(self):
        index = RelevanceIndex(StaticTopics(loop_topics()))
        with pytest.raises(TypeError):
            index.find_relevant_topics(LOOP_CODE, colour="blue")


class TestSignals:
    """matched_signals on each result."""

    def test_v2_signals_are_detected_constructs(self):
        index = RelevanceIndex(StaticTopics(loop_topics()))
        alpha = index.find_relevant_topics(LOOP_CODE, min_score=0.0)[0]
        assert alpha.matched_signals == ["FindSet", "CalcFields", "repeat"]

    def test_legacy_signals_are_snippet_constructs(self):
        topics = [make_topic("t/old", "Old", legacy=True, content="FindSet and CalcFields inside repeat loops.")]
        index = RelevanceIndex(StaticTopics(topics))
        [match] = index.find_relevant_topics(LOOP_CODE)
        assert match.matched_signals == ["FindSet", "Next", "repeat", "until", "CalcFields"]

    def test_search_signals_from_keywords(self):
        topics = [make_topic("t/calc", "Flow fields", constructs=["CalcFields"], keywords=["flowfield", "loop"])]
        index = RelevanceIndex(StaticTopics(topics))
        [match] = index.search("flowfield performance")
        assert match.matched_signals == ["flowfield"]


class TestQueries:
    """Query construction and text search."""

    def test_query_from_constructs_and_object_type(self):
        index = RelevanceIndex(StaticTopics([]))
        characteristics = index.extract_code_characteristics(
            "codeunit 50100 Helper\n{\n Rec.FindSet();\n}")
        assert RelevanceIndex.build_query(characteristics) == "FindSet codeunit"

    def test_free_text_falls_back_to_tokens(self):
        index = RelevanceIndex(StaticTopics([]))
        characteristics = index.extract_code_characteristics("slow flowfield totals")
        assert RelevanceIndex.build_query(characteristics) == "slow flowfield totals"

    def test_free_text_finds_topic(self):
        topics = [
            make_topic("t/calc", "Flow fields", keywords=["flowfield"]),
            make_topic("t/other", "Other", keywords=["insert"]),
        ]
        index = RelevanceIndex(StaticTopics(topics))
        assert [m.topic_id for m in index.find_relevant_topics("why is my flowfield slow")] == ["t/calc"]

    def test_empty_query(self):
        index = RelevanceIndex(StaticTopics(loop_topics()))
        assert index.search("") == []
        assert index.find_relevant_topics("") == []

    def test_content_summary(self):
        text = "# Heading\n\nUse **bold** and `code`."
        assert extract_content_summary(text) == "Heading\n\nUse bold and code."
        assert extract_content_summary("x" * 600, 500) == "x" * 500

    def test_topic_document_fields(self):
        topic = make_topic("t/a", "Title", constructs=["FindSet"], keywords=["loop"], tags=["records"])
        document = topic_document(topic)
        assert document == {
            "title": "Title",
            "tags": "records",
            "content": "Body text here.",
            "constructs": "FindSet",
            "keywords": "loop",
        }

    def test_legacy_document_has_empty_signal_fields(self):
        document = topic_document(make_topic("t/old", "Old", legacy=True))
        assert document["constructs"] == ""
        assert document["keywords"] == ""


class TestBuild:
    """Snapshot lifecycle."""

    def test_lazy_build(self):
        index = RelevanceIndex(StaticTopics(loop_topics()))
        assert not index.is_built
        index.find_relevant_topics(LOOP_CODE)
        assert index.is_built

    def test_statistics(self):
        topics = loop_topics() + [make_topic("t/old", "Old", legacy=True)]
        index = RelevanceIndex(StaticTopics(topics))
        assert index.get_statistics().total_topics == 0

        stats = index.build()

        assert stats.total_topics == 4
        assert stats.legacy_topics == 1
        assert stats.v2_topics == 3
        assert stats.vocabulary_size > 0
        assert stats.built_at is not None
        assert index.get_statistics().total_topics == 4

    def test_failed_rebuild_keeps_previous_snapshot(self):
        source = StaticTopics(loop_topics())
        index = RelevanceIndex(source)
        index.build()

        source.fail = True
        with pytest.raises(IndexBuildError):
            index.rebuild()

        assert index.get_statistics().total_topics == 3
        assert index.find_relevant_topics(LOOP_CODE)[0].topic_id == "performance/alpha"

    def test_rebuild_picks_up_new_topics(self):
        source = StaticTopics(loop_topics())
        index = RelevanceIndex(source)
        index.build()

        extra = make_topic("performance/delta", "Delta", constructs=["Insert", "Modify"])
        source.topics[extra.id] = extra
        assert index.search("modify") == []

        index.rebuild()
        assert [m.topic_id for m in index.search("modify")] == ["performance/delta"]
