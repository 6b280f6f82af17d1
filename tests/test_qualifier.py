"""Tests for verdict parsing and the classification stage."""

import json

import pytest

from conftest import FakeClassifier, FakeCampaignClient, server_error, verdict_json
from leadflow.errors import ClassifierError, VerdictParseError, VerdictValidationError
from leadflow.pacing import today_utc
from leadflow.qualifier import (
    Qualifier,
    VerdictLimits,
    extract_json_block,
    parse_verdict,
    validate_verdict,
)
from leadflow.records import NEW, QUALIFIED, DISQUALIFIED, SUBMITTED
from leadflow.submission import CampaignSubmitter

CRITERIA = "TIER_1: B2B SaaS founders"


def make_qualifier(store, classifier, client=None, **kwargs):
    client = client or FakeCampaignClient()
    submitter = CampaignSubmitter(store, client, "4242", owner="test-worker")
    kwargs.setdefault("owner", "test-worker")
    return Qualifier(store, classifier, CRITERIA, submitter=submitter, **kwargs)


@pytest.mark.unit
class TestExtractJsonBlock:

    def test_prose_around_json(self):
        text = 'Here is my analysis:\n{"decision": "TIER_1", "score": 85}\nHope this helps!'
        assert json.loads(extract_json_block(text)) == {"decision": "TIER_1", "score": 85}

    def test_braces_inside_strings(self):
        text = 'Result: {"reasoning": "uses {curly} braces", "decision": "SKIP"} done'
        assert json.loads(extract_json_block(text))["reasoning"] == "uses {curly} braces"

    def test_escaped_quotes_inside_strings(self):
        text = '{"reasoning": "said \\"hi}\\" once", "decision": "SKIP"}'
        assert json.loads(extract_json_block(text))["decision"] == "SKIP"

    def test_nested_objects(self):
        text = 'x {"decision": "TIER_2", "meta": {"a": 1}} y {"other": 2}'
        assert json.loads(extract_json_block(text))["meta"] == {"a": 1}

    def test_unbalanced_leading_brace_is_skipped(self):
        text = 'oops { then {"decision": "SKIP"}'
        assert json.loads(extract_json_block(text)) == {"decision": "SKIP"}

    @pytest.mark.parametrize("text", ["", "no json here", "{ never closed"])
    def test_no_block(self, text):
        assert extract_json_block(text) is None


@pytest.mark.unit
class TestParseVerdict:

    def test_normalizes_fields(self):
        verdict = parse_verdict("Sure! " + verdict_json())
        assert verdict["decision"] == "TIER_1"
        assert verdict["score"] == 85
        assert verdict["approach"] == "Mention their recent product launch"
        assert verdict["strengths"] == ["Decision maker", "Right industry"]

    def test_alternate_keys(self):
        text = json.dumps({"tier": "TIER_2", "reason": "ok", "pros": ["a"], "cons": [], "approach": "b"})
        verdict = parse_verdict(text)
        assert verdict["decision"] == "TIER_2"
        assert verdict["reasoning"] == "ok"
        assert verdict["strengths"] == ["a"]
        assert verdict["approach"] == "b"
        assert verdict["score"] is None

    def test_boolean_qualified(self):
        assert parse_verdict('{"qualified": true}')["decision"] == "QUALIFIED"
        assert parse_verdict('{"qualified": false}')["decision"] == "DISQUALIFIED"

    def test_missing_optional_fields_default(self):
        verdict = parse_verdict('{"decision": "SKIP"}')
        assert verdict["reasoning"] == ""
        assert verdict["concerns"] == []

    @pytest.mark.parametrize("text", [
        "no json at all",
        '{"decision": "TIER_1", "score": 85,}',
        '{"score": 85}',
        '{"decision": 3}',
        '{"decision": "TIER_1", "score": "85"}',
        '{"decision": "TIER_1", "score": true}',
        '{"decision": "TIER_1", "reasoning": ["not", "text"]}',
        '{"decision": "TIER_1", "strengths": "not a list"}',
        '{"decision": "TIER_1", "concerns": [1, 2]}',
    ])
    def test_rejects_bad_verdicts(self, text):
        with pytest.raises(VerdictParseError):
            parse_verdict(text)


@pytest.mark.unit
class TestValidateVerdict:

    def test_within_limits(self):
        assert validate_verdict(parse_verdict(verdict_json()), VerdictLimits()) == []

    def test_long_prose(self):
        verdict = parse_verdict(verdict_json(reasoning="x" * 501))
        errors = validate_verdict(verdict, VerdictLimits())
        assert len(errors) == 1
        assert "reasoning" in errors[0]

    def test_too_many_items_and_long_item(self):
        verdict = parse_verdict(verdict_json(strengths=["a"] * 6, concerns=["y" * 101]))
        errors = validate_verdict(verdict, VerdictLimits())
        assert any("strengths has 6 items" in e for e in errors)
        assert any("concerns[0]" in e for e in errors)

    def test_limits_are_configurable(self):
        verdict = parse_verdict(verdict_json(reasoning="x" * 50))
        assert validate_verdict(verdict, VerdictLimits(max_prose_chars=10))


@pytest.mark.unit
class TestClassifyOne:

    def test_tier_1_is_qualified_and_submitted(self, memory_store, make_record):
        record = make_record(memory_store)
        client = FakeCampaignClient(add_results=[{"id": "hr-99"}])
        qualifier = make_qualifier(memory_store, FakeClassifier(verdict_json("TIER_1", 85)), client)

        result = qualifier.classify_one(record)

        assert result.stage == SUBMITTED
        assert result.campaign_ref["submitted"] is True
        assert result.campaign_ref["external_id"] == "hr-99"
        assert len(client.added) == 1
        stored = memory_store.get(record.id)
        assert stored.stage == SUBMITTED
        assert stored.classification["decision"] == "TIER_1"

    def test_skip_is_disqualified_and_never_submitted(self, memory_store, make_record):
        record = make_record(memory_store)
        client = FakeCampaignClient()
        qualifier = make_qualifier(memory_store, FakeClassifier(verdict_json("SKIP", 10)), client)

        result = qualifier.classify_one(record)

        assert result.stage == DISQUALIFIED
        assert result.campaign_ref is None
        assert client.added == []

    def test_submission_failure_leaves_record_qualified(self, memory_store, make_record):
        record = make_record(memory_store)
        client = FakeCampaignClient(add_results=[server_error()])
        qualifier = make_qualifier(memory_store, FakeClassifier(verdict_json("TIER_1", 85)), client)

        result = qualifier.classify_one(record)

        assert result.stage == QUALIFIED
        assert result.campaign_ref["submitted"] is False
        assert result.campaign_ref["status"] == 500
        assert "500" in result.campaign_ref["error"]
        assert memory_store.get(record.id).submission_failed

    def test_score_below_minimum_is_disqualified(self, memory_store, make_record):
        record = make_record(memory_store)
        qualifier = make_qualifier(memory_store, FakeClassifier(verdict_json("TIER_1", 40)))
        assert qualifier.classify_one(record).stage == DISQUALIFIED

    def test_decision_without_score_qualifies(self, memory_store, make_record):
        record = make_record(memory_store)
        qualifier = make_qualifier(memory_store, FakeClassifier('{"decision": "tier_2"}'))
        assert qualifier.classify_one(record).stage == SUBMITTED

    def test_classifier_error_becomes_skip(self, memory_store, make_record):
        record = make_record(memory_store)
        qualifier = make_qualifier(memory_store, FakeClassifier(ClassifierError("timeout")))

        result = qualifier.classify_one(record)

        assert result.stage == DISQUALIFIED
        assert result.classification["decision"] == "SKIP"
        assert result.classification["score"] == 0
        assert result.classification["error"] is True
        assert "timeout" in result.classification["reasoning"]
        assert memory_store.get_day_counters(today_utc())["errors"] == 1

    def test_unparseable_response_becomes_skip(self, memory_store, make_record):
        record = make_record(memory_store)
        qualifier = make_qualifier(memory_store, FakeClassifier("I cannot help with that."))
        result = qualifier.classify_one(record)
        assert result.stage == DISQUALIFIED
        assert result.classification["error"] is True

    def test_oversized_verdict_is_re_asked_with_feedback(self, memory_store, make_record):
        record = make_record(memory_store)
        classifier = FakeClassifier(verdict_json(reasoning="x" * 600), verdict_json())
        qualifier = make_qualifier(memory_store, classifier)

        result = qualifier.classify_one(record)

        assert result.stage == SUBMITTED
        assert len(classifier.calls) == 2
        assert classifier.calls[0]["feedback"] is None
        assert "reasoning" in classifier.calls[1]["feedback"][0]

    def test_oversized_verdict_exhausts_attempts(self, memory_store, make_record):
        record = make_record(memory_store)
        classifier = FakeClassifier(verdict_json(reasoning="x" * 600))
        qualifier = make_qualifier(memory_store, classifier, max_attempts=3)

        result = qualifier.classify_one(record)

        assert result.stage == NEW
        assert len(classifier.calls) == 3
        stored = memory_store.get(record.id)
        assert stored.stage == NEW
        assert stored.classification is None

    def test_non_new_record_is_untouched(self, memory_store, make_record):
        record = make_record(memory_store, stage=SUBMITTED)
        classifier = FakeClassifier(verdict_json())
        qualifier = make_qualifier(memory_store, classifier)

        result = qualifier.classify_one(record)

        assert result.stage == SUBMITTED
        assert classifier.calls == []

    def test_record_claimed_elsewhere_is_skipped(self, memory_store, make_record):
        record = make_record(memory_store)
        memory_store.claim(record.id, "other-worker", 60)
        classifier = FakeClassifier(verdict_json())
        qualifier = make_qualifier(memory_store, classifier)

        assert qualifier.classify_one(record).stage == NEW
        assert classifier.calls == []

    def test_stale_copy_is_not_reclassified(self, memory_store, make_record):
        record = make_record(memory_store)
        stale = memory_store.get(record.id)
        qualifier = make_qualifier(memory_store, FakeClassifier(verdict_json("SKIP", 5)))
        qualifier.classify_one(record)

        classifier = FakeClassifier(verdict_json())
        make_qualifier(memory_store, classifier).classify_one(stale)
        assert classifier.calls == []
        assert memory_store.get(record.id).stage == DISQUALIFIED

    def test_history_and_counters(self, memory_store, make_record):
        record = make_record(memory_store)
        qualifier = make_qualifier(memory_store, FakeClassifier(verdict_json()))
        result = qualifier.classify_one(record)

        assert len(result.classification_history) == 1
        assert result.classification_history[0]["classified_at"]
        assert memory_store.get_day_counters(today_utc())["qualified"] == 1
        assert memory_store.get_totals()["qualified"] == 1


@pytest.mark.unit
class TestSaveVerdict:

    def test_applies_verdict_and_submits(self, memory_store, make_record):
        record = make_record(memory_store)
        qualifier = make_qualifier(memory_store, FakeClassifier(verdict_json()))
        result = qualifier.save_verdict(record, json.loads(verdict_json("TIER_2", 70)))
        assert result.stage == SUBMITTED

    def test_rejects_oversized_verdict(self, memory_store, make_record):
        record = make_record(memory_store)
        qualifier = make_qualifier(memory_store, FakeClassifier(verdict_json()))
        verdict = json.loads(verdict_json(strengths=["x" * 150]))

        with pytest.raises(VerdictValidationError) as exc_info:
            qualifier.save_verdict(record, verdict)

        assert "strengths[0]" in exc_info.value.errors[0]
        assert memory_store.get(record.id).stage == NEW

    def test_rejects_malformed_verdict(self, memory_store, make_record):
        record = make_record(memory_store)
        qualifier = make_qualifier(memory_store, FakeClassifier(verdict_json()))
        with pytest.raises(VerdictParseError):
            qualifier.save_verdict(record, {"score": 80})


@pytest.mark.integration
class TestClassifyBatch:

    def test_counts_outcomes(self, memory_store, make_record):
        for _ in range(3):
            make_record(memory_store)
        classifier = FakeClassifier(
            verdict_json("TIER_1", 90),
            verdict_json("SKIP", 10),
            ClassifierError("boom"),
        )
        qualifier = make_qualifier(memory_store, classifier)

        results = qualifier.classify_batch()

        assert results["succeeded"] == 2
        assert results["failed"] == 1
        assert results["qualified"] == 1
        assert results["disqualified"] == 2
        assert results["submitted"] == 1
        assert qualifier.next_unclassified() is None

    def test_limit(self, memory_store, make_record):
        first = make_record(memory_store)
        make_record(memory_store)
        qualifier = make_qualifier(memory_store, FakeClassifier(verdict_json("SKIP", 1)))

        results = qualifier.classify_batch(limit=1)

        assert results["disqualified"] == 1
        assert memory_store.get(first.id).stage == DISQUALIFIED
        assert qualifier.next_unclassified() is not None

    def test_parallel_workers_submit_each_record_once(self, sqlite_store, make_record):
        for _ in range(8):
            make_record(sqlite_store)
        client = FakeCampaignClient()
        qualifier = make_qualifier(sqlite_store, FakeClassifier(verdict_json()), client)

        results = qualifier.classify_batch(workers=4)

        assert results["submitted"] == 8
        assert len(client.added) == 8
        assert len({lead["profileUrl"] for lead, _ in client.added}) == 8
        assert sqlite_store.count_by_stage()[SUBMITTED] == 8

    def test_empty_queue(self, memory_store):
        qualifier = make_qualifier(memory_store, FakeClassifier(verdict_json()))
        assert qualifier.classify_batch()["succeeded"] == 0


@pytest.mark.integration
class TestScenarios:

    def _ada(self, store, make_record):
        return make_record(store, id="p/42", name="Ada Lovelace", external_id="https://linkedin.com/in/ada")

    def test_prose_wrapped_verdict_is_accepted(self, memory_store, make_record):
        record = self._ada(memory_store, make_record)
        text = 'Sure! Here you go: {"decision":"TIER_1","reason":"ok"}'
        qualifier = make_qualifier(memory_store, FakeClassifier(text))

        result = qualifier.classify_one(record)

        assert result.classification["decision"] == "TIER_1"
        assert result.classification["reasoning"] == "ok"
        assert result.stage == SUBMITTED

    def test_tier_1_at_85_with_threshold_70(self, memory_store, make_record):
        record = self._ada(memory_store, make_record)
        client = FakeCampaignClient()
        qualifier = make_qualifier(
            memory_store, FakeClassifier('{"decision": "TIER_1", "score": 85}'), client,
            qualifying_decisions=["TIER_1", "TIER_2"], min_score=70,
        )

        result = qualifier.classify_one(record)

        assert result.classification_history[-1]["decision"] == "TIER_1"
        assert result.campaign_ref["submitted"] is True
        assert client.added[0][0]["firstName"] == "Ada"

    def test_skip_at_10(self, memory_store, make_record):
        record = self._ada(memory_store, make_record)
        client = FakeCampaignClient()
        qualifier = make_qualifier(
            memory_store, FakeClassifier('{"decision": "SKIP", "score": 10}'), client,
            qualifying_decisions=["TIER_1", "TIER_2"], min_score=70,
        )

        assert qualifier.classify_one(record).stage == DISQUALIFIED
        assert client.added == []

    def test_http_500_on_submission(self, memory_store, make_record):
        record = self._ada(memory_store, make_record)
        client = FakeCampaignClient(add_results=[server_error()])
        submitter = CampaignSubmitter(memory_store, client, "4242", owner="test-worker")
        qualifier = Qualifier(
            memory_store, FakeClassifier('{"decision": "TIER_1", "score": 85}'), CRITERIA,
            submitter=submitter, qualifying_decisions=["TIER_1", "TIER_2"], min_score=70,
        )

        result = qualifier.classify_one(record)

        assert result.stage == QUALIFIED
        assert result.campaign_ref["submitted"] is False
        assert result.campaign_ref["error"]
        assert result.campaign_ref["attempted_at"]
        assert [r.id for r in submitter.list_failed_submissions()] == ["p/42"]
