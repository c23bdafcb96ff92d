"""Tiered match orchestrator.

Tiers run strictly in order and the first tier that yields candidates wins:

1. training_exact  - approved example with similarity >= 0.95, final score 1.0
2. training_good   - approved example with similarity in [0.80, 0.95),
                     final score scaled into [0.85, 0.95)
3. algorithmic     - retrieval + weighted signal combination, final >= threshold
4. fallback_fuzzy  - relaxed retrieval, final floored at the threshold

Matching only reads an immutable MatchSnapshot. Training examples that
contributed to the returned candidates are reported to a reference sink
after the call; the sink is best-effort and never fails the match.
"""

import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from ..config import MatchingConfig
from ..domain.ai.ports import EmbeddingProviderPort
from ..models.base import utcnow
from ..observability.logging_config import get_logger
from ..observability.metrics import (
    feedback_failures_total,
    match_latency_seconds,
    match_requests_total,
    match_top_score,
)
from ..observability.request_id import bind_context
from .cache import MatchResultCache
from .ports import BatchMatchRow, MatchCandidate, MatchedVia, MatcherPort, MatchQuery
from .retriever import CandidateRetriever
from .scorer import MatchScorer, ScoredItem
from .signals import PreparedQuery, clamp, training_similarity
from .snapshot import CatalogItem, MatchSnapshot, SnapshotLoader, TrainingEntry

logger = get_logger(__name__)

ReferenceSink = Callable[[UUID, Sequence[UUID]], None]


@dataclass(frozen=True)
class TierOutcome:
    """Result of one match evaluation."""
    tier: str
    candidates: Tuple[MatchCandidate, ...] = ()
    example_ids: Tuple[UUID, ...] = ()


EMPTY_OUTCOME = TierOutcome(tier="empty")


@dataclass
class _MatchContext:
    snapshot: MatchSnapshot
    query: PreparedQuery
    limit: int
    threshold: float
    now: datetime
    scorer: MatchScorer
    _training_matches: Optional[List[Tuple[TrainingEntry, float]]] = field(default=None, repr=False)
    _vector_by_item: Optional[Dict[int, float]] = field(default=None, repr=False)

    @property
    def vector_by_item(self) -> Dict[int, float]:
        if self._vector_by_item is None:
            self._vector_by_item = self.scorer.query_vector_scores(self.snapshot, self.query)
        return self._vector_by_item


class TieredMatcher(MatcherPort):
    """Tiered multi-signal matcher.

    Pipeline per call:
    1. Validate input once (empty -> [], clamp limit and threshold)
    2. Load the organization's snapshot (CatalogUnavailableError if impossible)
    3. Serve from the result cache when the same query ran on this snapshot
    4. Evaluate tiers in order until one yields candidates
    5. Report contributing training examples to the reference sink
    """

    def __init__(
        self,
        db: Session,
        config: MatchingConfig,
        loader: SnapshotLoader,
        cache: Optional[MatchResultCache] = None,
        embedding_provider: Optional[EmbeddingProviderPort] = None,
        reference_sink: Optional[ReferenceSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize tiered matcher.

        Args:
            db: Database session (used for snapshot version checks and loads)
            config: Matching configuration
            loader: Shared snapshot loader
            cache: Shared result cache (None disables caching)
            embedding_provider: Optional query embedding provider
            reference_sink: Receives (org_id, example_ids) after each call
            clock: Source of the current time
        """
        self.db = db
        self.config = config
        self.loader = loader
        self.cache = cache
        self.scorer = MatchScorer(config, embedding_provider)
        self.retriever = CandidateRetriever(config)
        self.reference_sink = reference_sink
        self.clock = clock
        self._tiers = (
            self._exact_training_tier,
            self._good_training_tier,
            self._algorithmic_tier,
            self._fallback_tier,
        )

    # Input validation

    def clamp_limit(self, limit: Optional[int]) -> int:
        """Resolve None to the default and clamp into [min_limit, max_limit]."""
        if limit is None:
            limit = self.config.default_limit
        return max(self.config.min_limit, min(self.config.max_limit, int(limit)))

    def clamp_threshold(self, threshold: Optional[float]) -> float:
        """Resolve None/NaN to the default and clamp into [0, 1]."""
        if threshold is None or threshold != threshold:
            threshold = self.config.default_threshold
        return max(0.0, min(1.0, float(threshold)))

    # Public API

    def match(
        self,
        org_id: UUID,
        query_text: Optional[str],
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[MatchCandidate]:
        """Match one line item text against the organization's catalog.

        Args:
            org_id: Organization UUID
            query_text: Free-text line item
            limit: Maximum results (None -> default, clamped to [1, 100])
            threshold: Minimum final score (None -> default, clamped to [0, 1])

        Returns:
            Ranked candidates; [] for empty input or no qualifying product

        Raises:
            CatalogUnavailableError: If the catalog cannot be loaded
        """
        query = PreparedQuery.from_text(query_text)
        if query.is_empty:
            match_requests_total.labels(tier=EMPTY_OUTCOME.tier).inc()
            return []

        limit = self.clamp_limit(limit)
        threshold = self.clamp_threshold(threshold)

        snapshot = self.loader.get(self.db, org_id)
        outcome = self._match_on_snapshot(snapshot, query, limit, threshold)

        self._report_references(org_id, outcome.example_ids)
        return list(outcome.candidates)

    def match_query(self, org_id: UUID, query: MatchQuery) -> List[MatchCandidate]:
        """Convenience wrapper taking a MatchQuery value object."""
        return self.match(org_id, query.text, query.limit, query.threshold)

    def match_batch(
        self,
        org_id: UUID,
        query_texts: Sequence[Optional[str]],
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[BatchMatchRow]:
        """Match many texts independently on a worker pool.

        The snapshot is loaded once and shared read-only by all workers. The
        whole batch shares one deadline of timeout_seconds; an element that
        misses it or fails contributes no rows.

        Args:
            org_id: Organization UUID
            query_texts: Line item texts
            limit: Maximum results per text
            threshold: Minimum final score

        Returns:
            Rows ordered by query_index, then rank

        Raises:
            CatalogUnavailableError: If the catalog cannot be loaded
        """
        if not query_texts:
            return []

        limit = self.clamp_limit(limit)
        threshold = self.clamp_threshold(threshold)
        snapshot = self.loader.get(self.db, org_id)

        rows: List[BatchMatchRow] = []
        example_ids: List[UUID] = []
        executor = ThreadPoolExecutor(
            max_workers=max(1, self.config.workers),
            thread_name_prefix="partmatch-batch",
        )
        try:
            futures = []
            for text in query_texts:
                query = PreparedQuery.from_text(text)
                if query.is_empty:
                    futures.append(None)
                    continue
                futures.append(
                    executor.submit(bind_context(self._match_on_snapshot), snapshot, query, limit, threshold)
                )

            # One deadline for the whole batch, not one per element
            submitted = [future for future in futures if future is not None]
            done, _ = wait(submitted, timeout=self.config.timeout_seconds)

            for index, future in enumerate(futures):
                if future is None:
                    continue
                if future not in done:
                    future.cancel()
                    logger.warning(
                        f"Batch element missed the {self.config.timeout_seconds}s batch deadline",
                        extra={"org_id": str(org_id), "query_index": index},
                    )
                    continue
                try:
                    outcome = future.result()
                except Exception as e:
                    logger.error(
                        f"Batch element failed: {e}",
                        extra={"org_id": str(org_id), "query_index": index},
                        exc_info=True,
                    )
                    continue

                example_ids.extend(outcome.example_ids)
                rows.extend(
                    BatchMatchRow(query_index=index, query_text=query_texts[index], candidate=candidate)
                    for candidate in outcome.candidates
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        self._report_references(org_id, example_ids)
        return rows

    # Evaluation

    def _match_on_snapshot(
        self,
        snapshot: MatchSnapshot,
        query: PreparedQuery,
        limit: int,
        threshold: float,
    ) -> TierOutcome:
        cache_key = (snapshot.org_id, query.lower, limit, threshold, snapshot.version.token())
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        start = time.perf_counter()
        outcome = self.evaluate(snapshot, query, limit, threshold)
        match_latency_seconds.observe(time.perf_counter() - start)
        match_requests_total.labels(tier=outcome.tier).inc()
        if outcome.candidates:
            match_top_score.observe(outcome.candidates[0].final_score)

        logger.debug(
            f"Matched via {outcome.tier}: {len(outcome.candidates)} candidates",
            extra={"org_id": str(snapshot.org_id), "tier": outcome.tier},
        )

        if self.cache is not None:
            self.cache.put(cache_key, outcome)
        return outcome

    def evaluate(
        self,
        snapshot: MatchSnapshot,
        query: PreparedQuery,
        limit: int,
        threshold: float,
    ) -> TierOutcome:
        """Run the tiers in order on a snapshot, without caching or side effects.

        Args:
            snapshot: Snapshot to match against
            query: Prepared non-empty query
            limit: Validated limit
            threshold: Validated threshold

        Returns:
            Outcome of the first tier that produced candidates, or an empty outcome
        """
        ctx = _MatchContext(
            snapshot=snapshot,
            query=query,
            limit=limit,
            threshold=threshold,
            now=self.clock(),
            scorer=self.scorer,
        )
        for tier in self._tiers:
            outcome = tier(ctx)
            if outcome.candidates:
                return outcome
        return EMPTY_OUTCOME

    def _training_matches(self, ctx: _MatchContext) -> List[Tuple[TrainingEntry, float]]:
        """Recent high-quality examples of catalog products, with similarity."""
        if ctx._training_matches is not None:
            return ctx._training_matches

        config = self.config
        snapshot = ctx.snapshot
        matches = []
        for position in snapshot.training_index.search(ctx.query.norm_trigrams):
            example = snapshot.training[position]
            if example.quality not in config.training_qualities:
                continue
            if example.age_days(ctx.now) > config.training_window_days:
                continue
            if example.product_id not in snapshot.items_by_product:
                continue
            matches.append((example, training_similarity(ctx.query, example)))

        ctx._training_matches = matches
        return matches

    def _exact_training_tier(self, ctx: _MatchContext) -> TierOutcome:
        exact = [
            (example, similarity)
            for example, similarity in self._training_matches(ctx)
            if similarity >= self.config.exact_training_similarity
        ]
        exact.sort(key=lambda es: (-es[0].weight, -es[0].approved_at.timestamp(), str(es[0].product_id)))

        candidates = []
        for example, similarity in _first_per_product(exact, ctx.limit):
            item = ctx.snapshot.items_by_product[example.product_id]
            candidates.append(self._training_candidate(
                item,
                example,
                scores=(1.0, 1.0, 1.0, 1.0, 1.0),
                final_score=1.0,
                matched_via=MatchedVia.TRAINING_EXACT,
                tier=1,
                reasoning=(
                    f"Exact match to approved example '{example.query_text}' "
                    f"(similarity {similarity:.2f}, quality {example.quality})"
                ),
            ))

        return _outcome(MatchedVia.TRAINING_EXACT, candidates)

    def _good_training_tier(self, ctx: _MatchContext) -> TierOutcome:
        config = self.config
        good = [
            (example, similarity)
            for example, similarity in self._training_matches(ctx)
            if config.good_training_similarity <= similarity < config.exact_training_similarity
        ]
        good.sort(key=lambda es: (
            -es[1],
            -es[0].weight,
            -es[0].approved_at.timestamp(),
            str(es[0].product_id),
        ))

        band = config.exact_training_similarity - config.good_training_similarity
        span = config.good_training_score_ceiling - config.good_training_score_floor

        candidates = []
        for example, similarity in _first_per_product(good, ctx.limit):
            item = ctx.snapshot.items_by_product[example.product_id]
            final_score = config.good_training_score_floor + (
                (similarity - config.good_training_similarity) * span / band
            )
            candidates.append(self._training_candidate(
                item,
                example,
                scores=(similarity, similarity, 0.0, similarity, 0.0),
                final_score=clamp(final_score),
                matched_via=MatchedVia.TRAINING_GOOD,
                tier=2,
                reasoning=(
                    f"Close match to approved example '{example.query_text}' "
                    f"(similarity {similarity:.2f}, quality {example.quality})"
                ),
            ))

        return _outcome(MatchedVia.TRAINING_GOOD, candidates)

    def _algorithmic_tier(self, ctx: _MatchContext) -> TierOutcome:
        vector_by_item = ctx.vector_by_item
        items = self.retriever.retrieve(ctx.snapshot, ctx.query, self.config.prefilter_floor, vector_by_item)
        scored = [
            self.scorer.score(ctx.snapshot, ctx.query, item, ctx.now, vector_by_item)
            for item in items
        ]

        kept = [s for s in scored if s.final_score >= ctx.threshold]
        kept.sort(key=lambda s: (-s.final_score, s.item.name, s.item.sku, str(s.item.product_id)))

        candidates = [
            self._scored_candidate(
                s,
                final_score=s.final_score,
                matched_via=MatchedVia.ALGORITHMIC,
                tier=3,
                reasoning=f"Algorithmic match led by {s.dominant_signal}; {_describe(s)}",
            )
            for s in kept[: ctx.limit]
        ]
        return _outcome(MatchedVia.ALGORITHMIC, candidates)

    def _fallback_tier(self, ctx: _MatchContext) -> TierOutcome:
        config = self.config
        vector_by_item = ctx.vector_by_item
        items = self.retriever.retrieve(ctx.snapshot, ctx.query, config.fallback_retrieval_floor, vector_by_item)

        qualifying = []
        for item in items:
            scored = self.scorer.score(ctx.snapshot, ctx.query, item, ctx.now, vector_by_item)
            if max(scored.signals.trigram, scored.signals.fuzzy) > config.fallback_qualify_floor:
                qualifying.append(scored)

        # Floor at the caller's threshold so results never sit below it
        ranked = sorted(
            qualifying,
            key=lambda s: (
                -max(s.final_score, ctx.threshold),
                -s.final_score,
                s.item.name,
                s.item.sku,
                str(s.item.product_id),
            ),
        )

        candidates = [
            self._scored_candidate(
                s,
                final_score=clamp(max(s.final_score, ctx.threshold)),
                matched_via=MatchedVia.FALLBACK_FUZZY,
                tier=4,
                reasoning=(
                    f"Relaxed fallback match led by {s.dominant_signal}; computed "
                    f"{s.final_score:.2f} floored at threshold {ctx.threshold:.2f}; {_describe(s)}"
                ),
            )
            for s in ranked[: ctx.limit]
        ]
        return _outcome(MatchedVia.FALLBACK_FUZZY, candidates)

    # Candidate construction

    @staticmethod
    def _training_candidate(
        item: CatalogItem,
        example: TrainingEntry,
        scores: Tuple[float, float, float, float, float],
        final_score: float,
        matched_via: str,
        tier: int,
        reasoning: str,
    ) -> MatchCandidate:
        trigram, fuzzy, alias, learned, vector = scores
        return MatchCandidate(
            product_id=item.product_id,
            sku=item.sku,
            name=item.name,
            manufacturer=item.manufacturer,
            trigram_score=trigram,
            fuzzy_score=fuzzy,
            alias_score=alias,
            learned_score=learned,
            vector_score=vector,
            final_score=final_score,
            matched_via=matched_via,
            tier=tier,
            reasoning=reasoning,
            dominant_signal="training",
            training_example_ids=(example.example_id,),
        )

    @staticmethod
    def _scored_candidate(
        scored: ScoredItem,
        final_score: float,
        matched_via: str,
        tier: int,
        reasoning: str,
    ) -> MatchCandidate:
        item = scored.item
        signals = scored.signals
        return MatchCandidate(
            product_id=item.product_id,
            sku=item.sku,
            name=item.name,
            manufacturer=item.manufacturer,
            trigram_score=signals.trigram,
            fuzzy_score=signals.fuzzy,
            alias_score=signals.alias,
            learned_score=signals.learned,
            vector_score=signals.vector,
            final_score=final_score,
            matched_via=matched_via,
            tier=tier,
            reasoning=reasoning,
            dominant_signal=scored.dominant_signal,
            training_example_ids=scored.example_ids,
        )

    # Reference counting

    def _report_references(self, org_id: UUID, example_ids: Sequence[UUID]) -> None:
        if self.reference_sink is None or not example_ids:
            return

        unique_ids = list(dict.fromkeys(example_ids))
        try:
            self.reference_sink(org_id, unique_ids)
        except Exception as e:
            feedback_failures_total.labels(operation="touch_reference").inc()
            logger.warning(
                f"Reference update for {len(unique_ids)} training examples failed: {e}",
                extra={"org_id": str(org_id)},
            )


def _first_per_product(
    ranked: List[Tuple[TrainingEntry, float]],
    limit: int,
) -> List[Tuple[TrainingEntry, float]]:
    """Keep the first (best ranked) example per product, up to limit."""
    seen = set()
    selected = []
    for example, similarity in ranked:
        if example.product_id in seen:
            continue
        seen.add(example.product_id)
        selected.append((example, similarity))
        if len(selected) >= limit:
            break
    return selected


def _outcome(tier: str, candidates: List[MatchCandidate]) -> TierOutcome:
    example_ids = tuple(
        example_id
        for candidate in candidates
        for example_id in candidate.training_example_ids
    )
    return TierOutcome(tier=tier, candidates=tuple(candidates), example_ids=example_ids)


def _describe(scored: ScoredItem) -> str:
    s = scored.signals
    return (
        f"trigram {s.trigram:.2f}, fuzzy {s.fuzzy:.2f}, alias {s.alias:.2f}, "
        f"learned {s.learned:.2f}, vector {s.vector:.2f}"
    )
