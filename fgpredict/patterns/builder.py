"""
Pattern table builder.

Buckets settled matches by a feature code and keeps home-win / draw /
away-win counts per bucket. One table exists per (feature, scope), where scope
is "ALL" or a competition code, and each table has its own watermark.

Accumulation strategy:
- incremental (normal path): fold in settled matches strictly after the
  persisted watermark, ordered by (settled_at, id), at most `batch_size` per
  run. The watermark advance is a compare-and-set on its `version` column and
  commits in the same transaction as the count increments, so a crashed or
  timed-out run leaves both untouched and a concurrent run that lost the race
  rolls back instead of double counting.
- full: explicit reset. Deletes the table's buckets and rebuilds them from the
  whole history in one transaction, then moves the watermark to the last
  scanned match with the same compare-and-set.

Both modes only see matches settled at least `settle_lag_seconds` ago. An
ingest transaction that commits late carries a settled_at older than rows
already visible; the lag keeps the watermark from passing it before it commits.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fgpredict.config import PipelineConfig
from fgpredict.db_utils import dialect_insert
from fgpredict.matches.validation import MatchValidationError, validate_settled_match
from fgpredict.ml.devig import InvalidOddsError
from fgpredict.models import (
    FINISHED_STATUSES,
    OUTCOME_AWAY,
    OUTCOME_DRAW,
    OUTCOME_HOME,
    SCOPE_ALL,
    MatchRecord,
    PatternBucket,
    PatternWatermark,
    utcnow,
)
from fgpredict.patterns.features import get_feature

logger = logging.getLogger(__name__)

MODE_FULL = "full"
MODE_INCREMENTAL = "incremental"

STATUS_OK = "ok"
STATUS_UP_TO_DATE = "up_to_date"
STATUS_CONFLICT = "conflict"

WatermarkKey = tuple[datetime, int]


class WatermarkConflict(Exception):
    """Another run advanced the watermark first."""


@dataclass
class BucketCounts:
    total: int = 0
    home_wins: int = 0
    draws: int = 0
    away_wins: int = 0

    def add(self, outcome: str) -> None:
        self.total += 1
        if outcome == OUTCOME_HOME:
            self.home_wins += 1
        elif outcome == OUTCOME_DRAW:
            self.draws += 1
        elif outcome == OUTCOME_AWAY:
            self.away_wins += 1
        else:
            raise ValueError(f"Unknown outcome '{outcome}'")


class PatternAccumulator:
    """
    In-memory fold of matches into bucket counts for one feature.

    Matches whose (settled_at, id) key is not strictly after `watermark` are
    counted as `already_counted` and ignored.
    """

    def __init__(
        self,
        feature: str,
        config: PipelineConfig,
        watermark: Optional[WatermarkKey] = None,
    ):
        self.feature = feature
        self.code_fn = get_feature(feature)
        self.config = config
        self.watermark = watermark
        self.counts: dict[str, BucketCounts] = {}
        self.processed = 0
        self.uncoded = 0
        self.already_counted = 0
        self.skipped: list[dict] = []
        self.last_key: Optional[WatermarkKey] = None

    def add(self, match: MatchRecord) -> bool:
        """Fold one match in. Returns True if it was counted."""
        key = (match.settled_at, match.id)
        if match.settled_at is None or match.id is None:
            self.skipped.append({"match": match.external_id, "errors": ["match is not settled"]})
            return False
        if self.watermark is not None and key <= self.watermark:
            self.already_counted += 1
            return False
        if self.last_key is None or key > self.last_key:
            self.last_key = key

        try:
            validate_settled_match(match)
            code = self.code_fn(match, self.config)
        except MatchValidationError as e:
            self.skipped.append(e.as_dict())
            return False
        except InvalidOddsError as e:
            self.skipped.append({"match": match.id, "errors": [str(e)]})
            return False

        if code is None:
            self.uncoded += 1
            return False

        self.counts.setdefault(code, BucketCounts()).add(match.outcome)
        self.processed += 1
        return True


@dataclass
class PatternRunResult:
    feature: str
    scope: str
    mode: str
    status: str = STATUS_OK
    scanned: int = 0
    processed: int = 0
    uncoded: int = 0
    already_counted: int = 0
    buckets_touched: int = 0
    errors: list[dict] = field(default_factory=list)
    watermark_before: Optional[dict] = None
    watermark_after: Optional[dict] = None

    def as_dict(self) -> dict:
        return {
            "feature": self.feature,
            "scope": self.scope,
            "mode": self.mode,
            "status": self.status,
            "scanned": self.scanned,
            "processed": self.processed,
            "uncoded": self.uncoded,
            "already_counted": self.already_counted,
            "skipped": len(self.errors),
            "buckets_touched": self.buckets_touched,
            "errors": self.errors,
            "watermark_before": self.watermark_before,
            "watermark_after": self.watermark_after,
        }


def _watermark_dict(settled_at: Optional[datetime], match_id: Optional[int], version: int) -> dict:
    return {
        "settled_at": settled_at.isoformat() if settled_at else None,
        "match_id": match_id,
        "version": version,
    }


def settle_cutoff(config: PipelineConfig, as_of: Optional[datetime] = None) -> datetime:
    """Latest settled_at a run may fold in."""
    return (as_of or utcnow()) - timedelta(seconds=config.settle_lag_seconds)


class PatternBuilder:
    """Reads history and persists bucket counts and watermarks."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_watermark(self, feature: str, scope: str) -> Optional[PatternWatermark]:
        result = await self.session.execute(
            select(PatternWatermark).where(
                and_(PatternWatermark.feature == feature, PatternWatermark.scope == scope)
            )
            # The version must come from the database, not the identity map
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def fetch_after(
        self,
        scope: str,
        after: Optional[WatermarkKey],
        limit: int,
        cutoff: Optional[datetime] = None,
    ) -> list[MatchRecord]:
        """Settled matches strictly after `after` and no later than `cutoff`, in (settled_at, id) order."""
        query = select(MatchRecord).where(
            and_(
                MatchRecord.settled_at.isnot(None),
                MatchRecord.status.in_(FINISHED_STATUSES),
            )
        )
        if cutoff is not None:
            query = query.where(MatchRecord.settled_at <= cutoff)
        if scope != SCOPE_ALL:
            query = query.where(MatchRecord.competition == scope)
        if after is not None:
            settled_at, match_id = after
            query = query.where(
                or_(
                    MatchRecord.settled_at > settled_at,
                    and_(MatchRecord.settled_at == settled_at, MatchRecord.id > match_id),
                )
            )
        query = query.order_by(MatchRecord.settled_at, MatchRecord.id).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def _advance_watermark(
        self,
        feature: str,
        scope: str,
        current: Optional[PatternWatermark],
        new_key: WatermarkKey,
        processed: int,
        reset: bool = False,
    ) -> int:
        """
        Compare-and-set the watermark to `new_key`. Returns the new version.

        Raises:
            WatermarkConflict: the persisted version moved since it was read
        """
        settled_at, match_id = new_key
        if current is None:
            self.session.add(PatternWatermark(
                feature=feature,
                scope=scope,
                last_settled_at=settled_at,
                last_match_id=match_id,
                version=1,
                matches_processed=processed,
            ))
            try:
                await self.session.flush()
            except IntegrityError:
                raise WatermarkConflict(f"{feature}/{scope}: watermark created concurrently") from None
            return 1

        expected = current.version
        matches_processed = (
            processed if reset else PatternWatermark.matches_processed + processed
        )
        result = await self.session.execute(
            update(PatternWatermark)
            .where(
                and_(
                    PatternWatermark.feature == feature,
                    PatternWatermark.scope == scope,
                    PatternWatermark.version == expected,
                )
            )
            .values(
                last_settled_at=settled_at,
                last_match_id=match_id,
                version=expected + 1,
                matches_processed=matches_processed,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise WatermarkConflict(
                f"{feature}/{scope}: watermark version {expected} already advanced"
            )
        return expected + 1

    async def _apply_counts(self, feature: str, scope: str, counts: dict[str, BucketCounts]) -> None:
        """Add counts onto existing buckets (INSERT ... ON CONFLICT increment)."""
        insert = dialect_insert(self.session)
        now = utcnow()
        for code, c in counts.items():
            stmt = insert(PatternBucket).values(
                feature=feature,
                scope=scope,
                code=code,
                total=c.total,
                home_wins=c.home_wins,
                draws=c.draws,
                away_wins=c.away_wins,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["feature", "scope", "code"],
                set_={
                    "total": PatternBucket.total + stmt.excluded.total,
                    "home_wins": PatternBucket.home_wins + stmt.excluded.home_wins,
                    "draws": PatternBucket.draws + stmt.excluded.draws,
                    "away_wins": PatternBucket.away_wins + stmt.excluded.away_wins,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await self.session.execute(stmt)

    async def run_incremental(
        self,
        feature: str,
        config: PipelineConfig,
        scope: str = SCOPE_ALL,
        batch_size: int = 2000,
        as_of: Optional[datetime] = None,
    ) -> PatternRunResult:
        """
        Fold the next batch of newly settled matches into the table.

        Commits on success. On conflict or any exception the transaction is
        rolled back, leaving counts and watermark as they were. `as_of`
        (default now) minus the settle lag bounds which matches are eligible.
        """
        run = PatternRunResult(feature=feature, scope=scope, mode=MODE_INCREMENTAL)
        cutoff = settle_cutoff(config, as_of)
        watermark = await self.get_watermark(feature, scope)
        after = None
        if watermark is not None and watermark.last_settled_at is not None:
            after = (watermark.last_settled_at, watermark.last_match_id)
            run.watermark_before = _watermark_dict(
                watermark.last_settled_at, watermark.last_match_id, watermark.version
            )

        matches = await self.fetch_after(scope, after, batch_size, cutoff=cutoff)
        run.scanned = len(matches)
        if not matches:
            run.status = STATUS_UP_TO_DATE
            run.watermark_after = run.watermark_before
            await self.session.rollback()
            return run

        acc = PatternAccumulator(feature, config, watermark=after)
        for match in matches:
            acc.add(match)
        self._collect(run, acc)

        try:
            version = await self._advance_watermark(feature, scope, watermark, acc.last_key, acc.processed)
            await self._apply_counts(feature, scope, acc.counts)
            await self.session.commit()
        except WatermarkConflict as e:
            await self.session.rollback()
            logger.warning(f"[PATTERNS] {e}; batch discarded")
            return self._conflict(run)
        except BaseException:
            await self.session.rollback()
            raise

        run.watermark_after = _watermark_dict(acc.last_key[0], acc.last_key[1], version)
        logger.info(
            f"[PATTERNS] {feature}/{scope} incremental: scanned={run.scanned}, "
            f"processed={run.processed}, uncoded={run.uncoded}, skipped={len(run.errors)}, "
            f"buckets={run.buckets_touched}"
        )
        return run

    async def run_full(
        self,
        feature: str,
        config: PipelineConfig,
        scope: str = SCOPE_ALL,
        batch_size: int = 2000,
        as_of: Optional[datetime] = None,
    ) -> PatternRunResult:
        """Discard the table and rebuild it from the whole history."""
        run = PatternRunResult(feature=feature, scope=scope, mode=MODE_FULL)
        cutoff = settle_cutoff(config, as_of)
        watermark = await self.get_watermark(feature, scope)
        if watermark is not None:
            run.watermark_before = _watermark_dict(
                watermark.last_settled_at, watermark.last_match_id, watermark.version
            )

        acc = PatternAccumulator(feature, config)
        after = None
        while True:
            matches = await self.fetch_after(scope, after, batch_size, cutoff=cutoff)
            if not matches:
                break
            for match in matches:
                acc.add(match)
            run.scanned += len(matches)
            after = (matches[-1].settled_at, matches[-1].id)
        self._collect(run, acc)

        try:
            if acc.last_key is not None:
                version = await self._advance_watermark(
                    feature, scope, watermark, acc.last_key, acc.processed, reset=True
                )
                run.watermark_after = _watermark_dict(acc.last_key[0], acc.last_key[1], version)
            await self.session.execute(
                delete(PatternBucket).where(
                    and_(PatternBucket.feature == feature, PatternBucket.scope == scope)
                )
            )
            await self._apply_counts(feature, scope, acc.counts)
            await self.session.commit()
        except WatermarkConflict as e:
            await self.session.rollback()
            logger.warning(f"[PATTERNS] {e}; rebuild discarded")
            return self._conflict(run)
        except BaseException:
            await self.session.rollback()
            raise

        logger.info(
            f"[PATTERNS] {feature}/{scope} full rebuild: scanned={run.scanned}, "
            f"processed={run.processed}, buckets={run.buckets_touched}"
        )
        return run

    @staticmethod
    def _collect(run: PatternRunResult, acc: PatternAccumulator) -> None:
        run.processed = acc.processed
        run.uncoded = acc.uncoded
        run.already_counted = acc.already_counted
        run.errors = acc.skipped
        run.buckets_touched = len(acc.counts)

    @staticmethod
    def _conflict(run: PatternRunResult) -> PatternRunResult:
        run.status = STATUS_CONFLICT
        run.processed = 0
        run.buckets_touched = 0
        run.watermark_after = run.watermark_before
        return run


async def get_bucket(
    session: AsyncSession,
    feature: str,
    code: str,
    competition: Optional[str],
    min_sample: int,
) -> Optional[PatternBucket]:
    """
    Bucket for a code: the competition table when it has enough samples,
    otherwise the ALL table. Returns None when neither exists.
    """
    scopes = [competition, SCOPE_ALL] if competition else [SCOPE_ALL]
    result = await session.execute(
        select(PatternBucket).where(
            and_(
                PatternBucket.feature == feature,
                PatternBucket.code == code,
                PatternBucket.scope.in_(scopes),
            )
        )
        .execution_options(populate_existing=True)
    )
    by_scope = {b.scope: b for b in result.scalars().all()}
    if competition and competition in by_scope and by_scope[competition].total >= min_sample:
        return by_scope[competition]
    return by_scope.get(SCOPE_ALL) or by_scope.get(competition)


def sample_confidence(total: int) -> str:
    """Sample-size label shown next to a bucket."""
    if total >= 50:
        return "HIGH"
    if total >= 20:
        return "MEDIUM"
    if total >= 10:
        return "LOW"
    return "VERY_LOW"


def describe_bucket(bucket: PatternBucket) -> str:
    """Short human-readable reading of a bucket's outcome split."""
    if not bucket.total:
        return "empty"
    if bucket.home_win_rate >= 0.60:
        return f"strong home ({bucket.home_win_rate:.1%})"
    if bucket.home_win_rate >= 0.45:
        return f"home leaning ({bucket.home_win_rate:.1%})"
    if bucket.away_win_rate >= 0.50:
        return f"away leaning ({bucket.away_win_rate:.1%})"
    if bucket.draw_rate >= 0.35:
        return f"draw heavy ({bucket.draw_rate:.1%})"
    return "balanced"
