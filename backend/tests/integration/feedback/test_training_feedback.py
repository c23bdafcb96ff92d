"""Integration tests for TrainingFeedbackRecorder

Tests cover:
- Approval upsert keyed by (org, normalized text, product)
- Learned alias creation rules
- Feedback event audit trail
- Retry on unique conflicts and transient database errors
- Rejections and reference counting
"""

from uuid import uuid4

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from partmatch.feedback.models import FeedbackEvent, FeedbackEventType
from partmatch.feedback.services import (
    FeedbackError,
    PersistenceError,
    TrainingFeedbackRecorder,
    UnknownProductError,
)
from partmatch.models import AliasSource, ProductAlias, TrainingExample

pytestmark = pytest.mark.integration

SCREW_TEXT = "GR. 8 HX HD CAP SCR 5/16-18X2-1/2"


def _counter(name: str, labels: dict) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def _count(db_session, model) -> int:
    return db_session.scalar(select(func.count()).select_from(model))


@pytest.fixture
def screw(make_product):
    return make_product("56X212C8", "Hex Head Cap Screw Grade 8 5/16-18 x 2-1/2", manufacturer="Fastenal")


class TestRecordApproval:
    """Test approval upserts"""

    def test_creates_training_example(self, recorder, db_session, org_id, screw):
        result = recorder.record_approval(
            org_id,
            SCREW_TEXT,
            screw.id,
            signal_scores={"trigram_score": 0.71, "fuzzy": 0.5, "final_score": 0.83},
            quality="excellent",
            approved_by="reviewer@example.com",
        )

        assert result.created
        example = db_session.get(TrainingExample, result.training_example_id)
        assert example.query_text == SCREW_TEXT
        assert example.query_norm == "grade 8 hex head cap screw 5/16-18 x 2-1/2"
        assert example.product_sku == "56X212C8"
        assert example.trigram_score == pytest.approx(0.71)
        assert example.fuzzy_score == pytest.approx(0.5)
        assert example.final_score == pytest.approx(0.83)
        assert example.confidence == pytest.approx(0.83)
        assert example.quality == "excellent"
        assert example.approved_by == "reviewer@example.com"
        assert example.times_referenced == 0
        assert example.weight == 1.0

    def test_reapproval_updates_same_example(self, recorder, db_session, org_id, screw):
        """Given an approved text, when approved again in another spelling, then the example is updated"""
        first = recorder.record_approval(org_id, SCREW_TEXT, screw.id, quality="good", confidence=0.7)

        second = recorder.record_approval(
            org_id, "  gr. 8 hx hd cap scr 5/16-18x2-1/2 ", screw.id, quality="excellent", confidence=0.9
        )

        assert not second.created
        assert second.training_example_id == first.training_example_id
        assert _count(db_session, TrainingExample) == 1
        example = db_session.get(TrainingExample, first.training_example_id)
        db_session.refresh(example)
        assert example.quality == "excellent"
        assert example.confidence == pytest.approx(0.9)

    def test_default_confidence_without_scores(self, recorder, org_id, screw):
        result = recorder.record_approval(org_id, SCREW_TEXT, screw.id)

        assert result.confidence == pytest.approx(0.8)

    def test_confidence_clamped(self, recorder, org_id, screw):
        result = recorder.record_approval(org_id, SCREW_TEXT, screw.id, confidence=1.7)

        assert result.confidence == 1.0

    def test_weight_kept_unless_given(self, recorder, db_session, org_id, screw):
        first = recorder.record_approval(org_id, SCREW_TEXT, screw.id, weight=2.5)
        recorder.record_approval(org_id, SCREW_TEXT, screw.id)

        example = db_session.get(TrainingExample, first.training_example_id)
        db_session.refresh(example)
        assert example.weight == pytest.approx(2.5)

    def test_same_text_for_two_products(self, recorder, db_session, org_id, screw, make_product):
        other = make_product("56X212C5", "Hex Head Cap Screw Grade 5 5/16-18 x 2-1/2")

        recorder.record_approval(org_id, SCREW_TEXT, screw.id)
        recorder.record_approval(org_id, SCREW_TEXT, other.id)

        assert _count(db_session, TrainingExample) == 2

    def test_approval_metric(self, recorder, org_id, screw):
        before = _counter("partmatch_approvals_total", {"quality": "good", "outcome": "created"})

        recorder.record_approval(org_id, SCREW_TEXT, screw.id)

        assert _counter("partmatch_approvals_total", {"quality": "good", "outcome": "created"}) == before + 1


class TestApprovalValidation:
    """Test rejected approval input"""

    def test_unknown_product(self, recorder, org_id):
        with pytest.raises(UnknownProductError):
            recorder.record_approval(org_id, SCREW_TEXT, uuid4())

    def test_product_of_other_organization(self, recorder, other_org_id, screw):
        with pytest.raises(UnknownProductError):
            recorder.record_approval(other_org_id, SCREW_TEXT, screw.id)

    @pytest.mark.parametrize("text", ["", "   ", "?!#"])
    def test_empty_text(self, recorder, org_id, screw, text):
        with pytest.raises(FeedbackError, match="empty"):
            recorder.record_approval(org_id, text, screw.id)

    def test_unknown_quality(self, recorder, org_id, screw):
        with pytest.raises(FeedbackError, match="Unknown quality"):
            recorder.record_approval(org_id, SCREW_TEXT, screw.id, quality="superb")

    def test_nothing_written_on_failure(self, recorder, db_session, org_id):
        with pytest.raises(UnknownProductError):
            recorder.record_approval(org_id, SCREW_TEXT, uuid4())

        assert _count(db_session, TrainingExample) == 0
        assert _count(db_session, FeedbackEvent) == 0


class TestLearnedAliases:
    """Test alias creation from approvals"""

    def test_high_quality_approval_creates_alias(self, recorder, db_session, org_id, screw):
        result = recorder.record_approval(org_id, SCREW_TEXT, screw.id, quality="excellent", confidence=0.9)

        alias = db_session.get(ProductAlias, result.alias_id)
        assert alias.alias_name == SCREW_TEXT
        assert alias.alias_name_norm == "grade 8 hex head cap screw 5/16-18 x 2-1/2"
        assert alias.source == AliasSource.LEARNED
        assert alias.confidence == pytest.approx(0.9)

    @pytest.mark.parametrize("quality,confidence", [("fair", 0.95), ("poor", 1.0), ("good", 0.79)])
    def test_no_alias_for_weak_approval(self, recorder, db_session, org_id, screw, quality, confidence):
        result = recorder.record_approval(org_id, SCREW_TEXT, screw.id, quality=quality, confidence=confidence)

        assert result.alias_id is None
        assert _count(db_session, ProductAlias) == 0

    def test_no_alias_for_short_text(self, recorder, db_session, org_id, screw):
        result = recorder.record_approval(org_id, "hcs", screw.id, quality="excellent", confidence=1.0)

        assert result.alias_id is None

    def test_alias_confidence_only_increases(self, recorder, db_session, org_id, screw):
        first = recorder.record_approval(org_id, SCREW_TEXT, screw.id, quality="good", confidence=0.85)
        recorder.record_approval(org_id, SCREW_TEXT, screw.id, quality="good", confidence=0.95)
        recorder.record_approval(org_id, SCREW_TEXT, screw.id, quality="good", confidence=0.9)

        alias = db_session.get(ProductAlias, first.alias_id)
        db_session.refresh(alias)
        assert alias.confidence == pytest.approx(0.95)
        assert _count(db_session, ProductAlias) == 1

    def test_learned_alias_feeds_matching(self, recorder, matcher, org_id, make_product):
        glove = make_product("NG-100", "Nitrile Examination Glove")

        recorder.record_approval(org_id, "BLUE GLV LG", glove.id, quality="excellent", confidence=1.0)
        results = matcher.match(org_id, "blue glv lg")

        assert results[0].sku == "NG-100"
        assert results[0].matched_via == "training_exact"


class TestFeedbackEvents:
    """Test the audit trail"""

    def test_approval_event_records_before_and_after(self, recorder, db_session, org_id, screw):
        recorder.record_approval(org_id, SCREW_TEXT, screw.id, quality="good", confidence=0.7)
        recorder.record_approval(org_id, SCREW_TEXT, screw.id, quality="excellent", confidence=0.9,
                                 approved_by="lead@example.com")

        events = db_session.scalars(
            select(FeedbackEvent).where(FeedbackEvent.event_type == FeedbackEventType.MATCH_APPROVED)
        ).all()
        assert len(events) == 2
        latest = next(e for e in events if e.actor == "lead@example.com")
        assert latest.before_json["quality"] == "good"
        assert latest.after_json["quality"] == "excellent"
        assert latest.meta_json["confidence"] == pytest.approx(0.9)

    def test_first_approval_has_no_before_state(self, recorder, db_session, org_id, screw):
        result = recorder.record_approval(org_id, SCREW_TEXT, screw.id)

        event = db_session.scalars(
            select(FeedbackEvent).where(FeedbackEvent.training_example_id == result.training_example_id)
        ).one()
        assert event.before_json is None

    def test_rejection_recorded_without_training_change(self, recorder, db_session, org_id, screw):
        event_id = recorder.record_rejection(org_id, SCREW_TEXT, screw.id, reason="wrong grade", actor="ops")

        event = db_session.get(FeedbackEvent, event_id)
        assert event.event_type == FeedbackEventType.MATCH_REJECTED
        assert event.meta_json["reason"] == "wrong grade"
        assert _count(db_session, TrainingExample) == 0


class TestRetries:
    """Test conflict and transient failure handling"""

    def test_unique_conflict_retried_as_update(self, recorder, db_session, org_id, screw, monkeypatch):
        """Given a concurrent insert of the same pair, when the insert conflicts, then it is retried as update"""
        existing = recorder.record_approval(org_id, SCREW_TEXT, screw.id, quality="good")
        original = recorder.repository.get_example
        calls = []

        def racing_get_example(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                return None
            return original(*args, **kwargs)

        monkeypatch.setattr(recorder.repository, "get_example", racing_get_example)

        result = recorder.record_approval(org_id, SCREW_TEXT, screw.id, quality="excellent")

        assert not result.created
        assert result.training_example_id == existing.training_example_id
        assert len(calls) == 2
        assert _count(db_session, TrainingExample) == 1

    def test_transient_failures_exhaust_retries(self, db_session, org_id, screw, monkeypatch):
        sleeps = []
        recorder = TrainingFeedbackRecorder(db_session, sleep=sleeps.append, max_retries=3, backoff_seconds=0.05)
        before = _counter("partmatch_feedback_failures_total", {"operation": "approval"})

        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(db_session, "commit", failing_commit)

        with pytest.raises(PersistenceError, match="please retry"):
            recorder.record_approval(org_id, SCREW_TEXT, screw.id)

        assert sleeps == [pytest.approx(0.05), pytest.approx(0.1)]
        assert _counter("partmatch_feedback_failures_total", {"operation": "approval"}) == before + 1

    def test_transient_failure_then_success(self, db_session, org_id, screw, monkeypatch):
        recorder = TrainingFeedbackRecorder(db_session, sleep=lambda seconds: None)
        real_commit = db_session.commit
        attempts = []

        def flaky_commit():
            attempts.append(1)
            if len(attempts) == 1:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            real_commit()

        monkeypatch.setattr(db_session, "commit", flaky_commit)

        result = recorder.record_approval(org_id, SCREW_TEXT, screw.id)

        assert result.created
        assert len(attempts) == 2


class TestReferenceCounting:
    """Test best-effort usage counters"""

    def test_touch_increments_once_per_id(self, recorder, db_session, org_id, screw, make_training_example):
        example = make_training_example(screw, SCREW_TEXT)

        updated = recorder.touch_references(org_id, [example.id, example.id])

        assert updated == 1
        db_session.refresh(example)
        assert example.times_referenced == 1
        assert example.last_referenced_at is not None

    def test_touch_scoped_to_organization(self, recorder, db_session, other_org_id, screw, make_training_example):
        example = make_training_example(screw, SCREW_TEXT)

        assert recorder.touch_references(other_org_id, [example.id]) == 0
        db_session.refresh(example)
        assert example.times_referenced == 0

    def test_touch_failure_swallowed(self, recorder, org_id, monkeypatch):
        before = _counter("partmatch_feedback_failures_total", {"operation": "touch_reference"})

        def failing_increment(*args):
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        monkeypatch.setattr(recorder.repository, "increment_references", failing_increment)

        assert recorder.touch_references(org_id, [uuid4()]) == 0
        assert not recorder.touch_reference(org_id, uuid4())
        assert _counter("partmatch_feedback_failures_total", {"operation": "touch_reference"}) == before + 2

    def test_touch_nothing(self, recorder, org_id):
        assert recorder.touch_references(org_id, []) == 0


class TestFeedbackLoop:
    """Test that approvals feed the next match"""

    def test_approved_text_returns_in_training_tier(self, recorder, matcher, org_id, make_product):
        """Given an approval of SAFETY GOGGLES, when the same text is matched again, then tier 1 answers"""
        goggles = make_product("SG-1", "Safety Goggles Anti-Fog")
        make_product("SG-2", "Safety Glasses Clear")
        before = matcher.match(org_id, "SAFETY GOGGLES")

        recorder.record_approval(org_id, "SAFETY GOGGLES", goggles.id, quality="excellent", confidence=1.0)
        after = matcher.match(org_id, "SAFETY GOGGLES")

        assert before[0].tier > 1
        assert after[0].sku == "SG-1"
        assert after[0].matched_via == "training_exact"
        assert after[0].final_score == 1.0
        assert [c.sku for c in after] == ["SG-1"]
