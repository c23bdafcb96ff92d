"""Feedback services for partmatch

This module provides services for:
- Capturing review decisions as feedback events (audit trail)
- Recording approved matches as training examples and learned aliases
- Best-effort reference counting of training examples used by the matcher
- Bulk import of historical approvals from CSV
"""

import csv
import io
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..infrastructure.repositories.training_repository import TrainingRepository
from ..locking import KeyedLock
from ..matching.normalizer import normalize
from ..models.alias import AliasSource, ProductAlias
from ..models.base import utcnow
from ..models.product import Product
from ..models.training_example import TrainingExample, TrainingQuality, TrainingSource
from ..observability.logging_config import get_logger
from ..observability.metrics import approvals_total, feedback_failures_total
from .models import FeedbackEvent, FeedbackEventType

logger = get_logger(__name__)

DEFAULT_CONFIDENCE = 0.8
ALIAS_QUALITIES = (TrainingQuality.EXCELLENT, TrainingQuality.GOOD)
ALIAS_MIN_CONFIDENCE = 0.8
ALIAS_MIN_TEXT_LENGTH = 3


class FeedbackError(Exception):
    """Base exception for feedback recording errors."""
    pass


class UnknownProductError(FeedbackError):
    """Approved product does not exist in the organization's catalog."""
    pass


class PersistenceError(FeedbackError):
    """Feedback could not be persisted after all retries."""
    pass


@dataclass(frozen=True)
class ApprovalResult:
    """Acknowledgement of a recorded approval."""
    training_example_id: UUID
    created: bool
    alias_id: Optional[UUID] = None
    quality: str = TrainingQuality.GOOD
    confidence: float = DEFAULT_CONFIDENCE


@dataclass
class ImportResult:
    """Counts of a training data import."""
    total_rows: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def imported(self) -> int:
        return self.created + self.updated

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "imported": self.imported,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


# Shared by every recorder in the process
_approval_locks = KeyedLock()


class FeedbackService:
    """Service for capturing reviewer decisions as feedback events.

    Events are added and flushed in the caller's transaction; the caller
    commits together with the training data it changed.
    """

    @staticmethod
    def capture_match_approved(
        db: Session,
        org_id: UUID,
        product_id: UUID,
        training_example_id: UUID,
        query_text: str,
        before_state: Optional[Dict[str, Any]],
        after_state: Dict[str, Any],
        meta: Dict[str, Any],
        actor: Optional[str] = None,
    ) -> FeedbackEvent:
        """Capture match approval feedback.

        Args:
            db: Database session
            org_id: Organization ID
            product_id: Approved catalog product
            training_example_id: Training example created or updated
            query_text: Line item text as reviewed
            before_state: Training example state before approval (None if new)
            after_state: Training example state after approval
            meta: Observed scores and quality
            actor: Reviewer identifier

        Returns:
            Created FeedbackEvent
        """
        event = FeedbackEvent(
            org_id=org_id,
            actor=actor,
            event_type=FeedbackEventType.MATCH_APPROVED,
            product_id=product_id,
            training_example_id=training_example_id,
            query_text=query_text,
            before_json=before_state,
            after_json=after_state,
            meta_json=meta,
        )

        db.add(event)
        db.flush()
        return event

    @staticmethod
    def capture_match_rejected(
        db: Session,
        org_id: UUID,
        product_id: UUID,
        query_text: str,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> FeedbackEvent:
        """Capture match rejection feedback.

        Args:
            db: Database session
            org_id: Organization ID
            product_id: Rejected catalog product
            query_text: Line item text as reviewed
            reason: Optional reviewer note
            actor: Reviewer identifier

        Returns:
            Created FeedbackEvent
        """
        event = FeedbackEvent(
            org_id=org_id,
            actor=actor,
            event_type=FeedbackEventType.MATCH_REJECTED,
            product_id=product_id,
            query_text=query_text,
            meta_json={"reason": reason, "query_norm": normalize(query_text)},
        )

        db.add(event)
        db.flush()
        return event


class TrainingFeedbackRecorder:
    """Writes review decisions back into the training data.

    The only write path of the matching system. Approvals are idempotent
    upserts keyed by (org_id, normalized text, product_id): the keyed lock
    serializes writers of the same pair inside this process and the unique
    constraint catches races with other processes, which are retried as
    updates.

    Example:
        recorder = TrainingFeedbackRecorder(db)
        result = recorder.record_approval(
            org_id, "GR. 8 HX HD CAP SCR 5/16-18X2-1/2", product_id,
            signal_scores={"trigram": 0.71, "final": 0.83},
            quality="excellent",
        )
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = 3,
        backoff_seconds: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
        locks: Optional[KeyedLock] = None,
    ):
        """Initialize recorder.

        Args:
            db: Database session (the recorder commits)
            clock: Source of the current time
            max_retries: Attempts per write before PersistenceError
            backoff_seconds: Base delay between attempts (doubles each time)
            sleep: Delay function
            locks: Keyed lock registry (process-wide by default)
        """
        self.db = db
        self.repository = TrainingRepository(db)
        self.clock = clock
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep
        self.locks = locks if locks is not None else _approval_locks

    # Approvals

    def record_approval(
        self,
        org_id: UUID,
        query_text: str,
        product_id: UUID,
        signal_scores: Optional[Dict[str, float]] = None,
        quality: str = TrainingQuality.GOOD,
        confidence: Optional[float] = None,
        weight: Optional[float] = None,
        approved_by: Optional[str] = None,
        source: str = TrainingSource.APPROVAL,
    ) -> ApprovalResult:
        """Persist an approved (text -> product) match.

        Re-approving the same normalized text for the same product updates
        the existing example (scores, quality, confidence, approved_at).
        High-quality approvals also create or strengthen a learned alias.

        Args:
            org_id: Organization ID
            query_text: Line item text as reviewed
            product_id: Approved catalog product
            signal_scores: Scores observed at review time (trigram, fuzzy,
                alias, vector, final; "_score" suffixes accepted)
            quality: excellent | good | fair | poor
            confidence: Reviewer confidence; defaults to the observed final
                score, or 0.8 when none was observed
            weight: Manual tuning weight; keeps the existing weight (or 1.0)
            approved_by: Reviewer identifier
            source: APPROVAL or IMPORT

        Returns:
            ApprovalResult

        Raises:
            FeedbackError: If the text normalizes to nothing or quality is unknown
            UnknownProductError: If the product is not in the catalog
            PersistenceError: If the write failed after all retries
        """
        scores = _observed_scores(signal_scores)
        query_text = (query_text or "").strip()
        query_norm = normalize(query_text)
        if not query_norm:
            raise FeedbackError("Approved query text is empty after normalization")

        quality = (quality or TrainingQuality.GOOD).strip().lower()
        if quality not in TrainingQuality.ALL:
            raise FeedbackError(f"Unknown quality '{quality}', expected one of {TrainingQuality.ALL}")

        if confidence is None:
            confidence = scores["final"] if scores["final"] > 0 else DEFAULT_CONFIDENCE
        confidence = _clamp(confidence)

        with self.locks.hold((org_id, query_norm, product_id)):
            for attempt in range(1, self.max_retries + 1):
                try:
                    result = self._upsert_approval(
                        org_id, query_text, query_norm, product_id,
                        scores, quality, confidence, weight, approved_by, source,
                    )
                    self.db.commit()
                except UnknownProductError:
                    self.db.rollback()
                    raise
                except IntegrityError as e:
                    # Concurrent insert of the same pair; next attempt updates it
                    self.db.rollback()
                    logger.info(
                        f"Approval upsert conflict on attempt {attempt}: {e.orig}",
                        extra={"org_id": str(org_id), "product_id": str(product_id)},
                    )
                    continue
                except SQLAlchemyError as e:
                    self.db.rollback()
                    logger.warning(
                        f"Approval write failed on attempt {attempt}/{self.max_retries}: {e}",
                        extra={"org_id": str(org_id), "product_id": str(product_id)},
                    )
                    if attempt < self.max_retries:
                        self.sleep(self.backoff_seconds * (2 ** (attempt - 1)))
                    continue

                approvals_total.labels(
                    quality=quality,
                    outcome="created" if result.created else "updated",
                ).inc()
                logger.info(
                    f"Recorded {quality} approval ({'created' if result.created else 'updated'})",
                    extra={
                        "org_id": str(org_id),
                        "product_id": str(product_id),
                        "training_example_id": str(result.training_example_id),
                    },
                )
                return result

        feedback_failures_total.labels(operation="approval").inc()
        logger.error(
            f"Approval could not be persisted after {self.max_retries} attempts",
            extra={"org_id": str(org_id), "product_id": str(product_id)},
        )
        raise PersistenceError("Approval could not be saved, please retry")

    def _upsert_approval(
        self,
        org_id: UUID,
        query_text: str,
        query_norm: str,
        product_id: UUID,
        scores: Dict[str, float],
        quality: str,
        confidence: float,
        weight: Optional[float],
        approved_by: Optional[str],
        source: str,
    ) -> ApprovalResult:
        product = self.repository.get_product(org_id, product_id)
        if product is None:
            raise UnknownProductError(f"Product {product_id} not found")

        now = self.clock()
        example = self.repository.get_example(org_id, query_norm, product_id)
        before_state = _example_state(example) if example is not None else None
        created = example is None

        if created:
            example = TrainingExample(
                org_id=org_id,
                product_id=product_id,
                query_norm=query_norm,
                times_referenced=0,
                weight=1.0,
                created_at=now,
            )
            self.db.add(example)

        example.query_text = query_text
        example.product_sku = product.sku
        example.product_name = product.name
        example.trigram_score = scores["trigram"]
        example.fuzzy_score = scores["fuzzy"]
        example.alias_score = scores["alias"]
        example.vector_score = scores["vector"]
        example.final_score = scores["final"]
        example.quality = quality
        example.confidence = confidence
        if weight is not None:
            example.weight = max(0.0, float(weight))
        example.source = source
        example.approved_by = approved_by
        example.approved_at = now
        example.updated_at = now
        self.db.flush()

        alias = None
        if _alias_eligible(query_text, quality, confidence):
            alias = self._upsert_alias(org_id, product, query_text, query_norm, confidence, now)

        FeedbackService.capture_match_approved(
            self.db,
            org_id=org_id,
            product_id=product_id,
            training_example_id=example.id,
            query_text=query_text,
            before_state=before_state,
            after_state=_example_state(example),
            meta={
                "scores": scores,
                "quality": quality,
                "confidence": confidence,
                "source": source,
                "alias_id": str(alias.id) if alias is not None else None,
            },
            actor=approved_by,
        )

        return ApprovalResult(
            training_example_id=example.id,
            created=created,
            alias_id=alias.id if alias is not None else None,
            quality=quality,
            confidence=confidence,
        )

    def _upsert_alias(
        self,
        org_id: UUID,
        product: Product,
        query_text: str,
        query_norm: str,
        confidence: float,
        now: datetime,
    ) -> ProductAlias:
        alias = self.repository.get_alias(org_id, product.id, query_norm)
        if alias is None:
            alias = ProductAlias(
                org_id=org_id,
                product_id=product.id,
                alias_name=query_text,
                alias_name_norm=query_norm,
                confidence=confidence,
                source=AliasSource.LEARNED,
                created_at=now,
                updated_at=now,
            )
            self.db.add(alias)
        elif confidence > alias.confidence:
            alias.confidence = confidence
            alias.updated_at = now
        self.db.flush()
        return alias

    # Rejections

    def record_rejection(
        self,
        org_id: UUID,
        query_text: str,
        product_id: UUID,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> UUID:
        """Record a rejected candidate in the audit trail.

        Training data is not changed.

        Returns:
            Feedback event ID

        Raises:
            PersistenceError: If the event could not be written
        """
        try:
            event = FeedbackService.capture_match_rejected(
                self.db,
                org_id=org_id,
                product_id=product_id,
                query_text=(query_text or "").strip(),
                reason=reason,
                actor=actor,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            feedback_failures_total.labels(operation="rejection").inc()
            logger.error(
                f"Rejection could not be persisted: {e}",
                extra={"org_id": str(org_id), "product_id": str(product_id)},
            )
            raise PersistenceError("Rejection could not be saved, please retry") from e
        return event.id

    # Reference counting

    def touch_references(self, org_id: UUID, example_ids: Sequence[UUID]) -> int:
        """Increment usage counters of training examples. Never raises.

        Returns:
            Number of examples updated (0 on failure)
        """
        unique_ids = list(dict.fromkeys(example_ids))
        if not unique_ids:
            return 0

        try:
            updated = self.repository.increment_references(org_id, unique_ids, self.clock())
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            feedback_failures_total.labels(operation="touch_reference").inc()
            logger.warning(
                f"Reference update for {len(unique_ids)} training examples failed: {e}",
                extra={"org_id": str(org_id)},
            )
            return 0
        return updated

    def touch_reference(self, org_id: UUID, example_id: UUID) -> bool:
        """Increment the usage counter of one training example. Never raises."""
        return self.touch_references(org_id, [example_id]) > 0

    # Import

    def import_training_csv(
        self,
        org_id: UUID,
        csv_text: str,
        approved_by: Optional[str] = None,
    ) -> ImportResult:
        """Import historical approvals from CSV.

        Columns: query_text, sku and/or catalog_name, optional quality and
        confidence. Unknown quality becomes "good"; confidence is clamped to
        [0, 1] and defaults to 0.8. Rows whose product cannot be resolved are
        skipped and reported.

        Args:
            org_id: Organization ID
            csv_text: CSV document with a header row
            approved_by: Recorded as the approver of every imported example

        Returns:
            ImportResult with counts and per-row errors

        Raises:
            FeedbackError: If required columns are missing
        """
        reader = csv.DictReader(io.StringIO(csv_text.lstrip("\ufeff")))
        columns = {(name or "").strip().lower() for name in (reader.fieldnames or [])}
        if "query_text" not in columns:
            raise FeedbackError("CSV must have a query_text column")
        if not columns & {"sku", "catalog_name"}:
            raise FeedbackError("CSV must have a sku or catalog_name column")

        result = ImportResult()
        for line_number, raw_row in enumerate(reader, start=2):
            row = {
                (key or "").strip().lower(): (value or "").strip()
                for key, value in raw_row.items()
                if isinstance(value, str) or value is None
            }
            result.total_rows += 1

            query_text = row.get("query_text", "")
            if not normalize(query_text):
                result.skipped += 1
                result.errors.append(f"line {line_number}: empty query_text")
                continue

            product = self._resolve_product(org_id, row.get("sku", ""), row.get("catalog_name", ""))
            if product is None:
                result.skipped += 1
                result.errors.append(
                    f"line {line_number}: no product for sku '{row.get('sku', '')}' "
                    f"/ name '{row.get('catalog_name', '')}'"
                )
                continue

            try:
                approval = self.record_approval(
                    org_id,
                    query_text,
                    product.id,
                    quality=_import_quality(row.get("quality", "")),
                    confidence=_import_confidence(row.get("confidence", "")),
                    approved_by=approved_by,
                    source=TrainingSource.IMPORT,
                )
            except FeedbackError as e:
                feedback_failures_total.labels(operation="import").inc()
                result.skipped += 1
                result.errors.append(f"line {line_number}: {e}")
                continue

            if approval.created:
                result.created += 1
            else:
                result.updated += 1

        logger.info(
            f"Imported training data: {result.created} created, {result.updated} updated, "
            f"{result.skipped} skipped",
            extra={"org_id": str(org_id)},
        )
        return result

    def _resolve_product(self, org_id: UUID, sku: str, catalog_name: str) -> Optional[Product]:
        product = self.repository.find_product_by_sku(org_id, sku) if sku else None
        if product is None and catalog_name:
            product = self.repository.find_product_by_name(org_id, catalog_name)
        return product


def _clamp(value: float) -> float:
    value = float(value)
    if value != value:
        return 0.0
    return max(0.0, min(1.0, value))


def _observed_scores(signal_scores: Optional[Dict[str, float]]) -> Dict[str, float]:
    """Pick trigram/fuzzy/alias/vector/final from a loosely keyed mapping."""
    signal_scores = signal_scores or {}
    observed = {}
    for name in ("trigram", "fuzzy", "alias", "vector", "final"):
        value = signal_scores.get(name, signal_scores.get(f"{name}_score"))
        observed[name] = _clamp(value) if value is not None else 0.0
    return observed


def _alias_eligible(query_text: str, quality: str, confidence: float) -> bool:
    return (
        quality in ALIAS_QUALITIES
        and confidence >= ALIAS_MIN_CONFIDENCE
        and len(query_text) > ALIAS_MIN_TEXT_LENGTH
    )


def _import_quality(value: str) -> str:
    value = value.strip().lower()
    return value if value in TrainingQuality.ALL else TrainingQuality.GOOD


def _import_confidence(value: str) -> float:
    try:
        return _clamp(float(value))
    except ValueError:
        return DEFAULT_CONFIDENCE


def _example_state(example: TrainingExample) -> Dict[str, Any]:
    return {
        "query_text": example.query_text,
        "quality": example.quality,
        "confidence": example.confidence,
        "weight": example.weight,
        "final_score": example.final_score,
        "source": example.source,
        "approved_at": example.approved_at.isoformat() if example.approved_at else None,
    }
