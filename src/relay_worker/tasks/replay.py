"""Replay sanitization.

The replay is claimed with a status check-and-set before any chunk is touched; a fresh claim by
another worker makes this run a no-op, a stale one (older than the processing lease) is taken over.
Each raw chunk is redacted into its sibling sanitized key; the raw object is never overwritten.
"""
from __future__ import annotations
import json
import logging
from datetime import datetime, timedelta
from prometheus_client import Counter, Histogram
from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session
from relay_worker.errors import DataIntegrityError
from relay_worker.infrastructure.celery_app import celery_app, retry_policy
from relay_worker.infrastructure.context import WorkerContext, current_context
from relay_worker.infrastructure.object_storage import ObjectStorage, raw_key_for, sanitized_key
from relay_worker.infrastructure.queues import REPLAY_PROCESS, get_queue
from relay_worker.models.tables import Replay
from relay_worker.privacy.redaction import sanitize_events
from relay_worker.tasks.common import skipped
from relay_worker.utils import ms_to_datetime, utcnow

logger = logging.getLogger(__name__)

REPLAYS_PROCESSED = Counter('replays_processed_total', 'Replay sanitization outcomes', ['status'])
REPLAY_CHUNKS_SKIPPED = Counter('replay_chunks_skipped_total', 'Replay chunks skipped', ['reason'])
REPLAY_EVENTS = Histogram('replay_event_count', 'Events per sanitized replay', buckets=(10, 100, 500, 1000, 5000, 10000, 50000))

PENDING, PROCESSING, READY, FAILED = "pending", "processing", "ready", "failed"


def claim_replay(session: Session, replay_id: str, lease_minutes: int, now: datetime | None = None) -> bool:
    now = now or utcnow()
    stale = now - timedelta(minutes=lease_minutes)
    res = session.execute(
        update(Replay)
        .where(
            Replay.id == replay_id,
            or_(
                Replay.status.in_((PENDING, FAILED)),
                and_(
                    Replay.status == PROCESSING,
                    or_(Replay.processing_started_at.is_(None), Replay.processing_started_at < stale),
                ),
            ),
        )
        .values(status=PROCESSING, processing_started_at=now)
    )
    session.commit()
    return bool(res.rowcount)


def _load_events(storage: ObjectStorage, key: str, index) -> list | None:
    data = storage.get(key)
    if data is None:
        logger.warning("replay chunk %s not found, skipping", index)
        REPLAY_CHUNKS_SKIPPED.labels(reason='missing').inc()
        return None
    try:
        events = json.loads(data)
    except ValueError:
        events = None
    if not isinstance(events, list):
        logger.warning("replay chunk %s is not an event array, skipping", index)
        REPLAY_CHUNKS_SKIPPED.labels(reason='invalid').inc()
        return None
    return events


def sanitize_chunks(storage: ObjectStorage, chunks: list[dict]) -> dict:
    processed: list[dict] = []
    total = 0
    min_ts: float | None = None
    max_ts: float | None = None
    ordered = sorted((c for c in chunks if isinstance(c, dict)), key=lambda c: c.get("index") or 0)
    for chunk in ordered:
        raw_key = raw_key_for(chunk.get("rawStorageKey") or chunk.get("storageKey") or "")
        if not raw_key:
            REPLAY_CHUNKS_SKIPPED.labels(reason='no_key').inc()
            continue
        events = _load_events(storage, raw_key, chunk.get("index"))
        if events is None:
            continue
        clean = sanitize_events(events)
        key = sanitized_key(raw_key)
        storage.put(key, json.dumps(clean).encode("utf-8"))
        total += len(clean)
        for event in clean:
            ts = event.get("timestamp") if isinstance(event, dict) else None
            if isinstance(ts, (int, float)) and not isinstance(ts, bool):
                min_ts = ts if min_ts is None else min(min_ts, ts)
                max_ts = ts if max_ts is None else max(max_ts, ts)
        processed.append({**chunk, "storageKey": key, "rawStorageKey": raw_key, "eventCount": len(clean)})
    return {"chunks": processed, "event_count": total, "min_ts": min_ts, "max_ts": max_ts}


def run_replay_sanitization(ctx: WorkerContext, replay_id: str) -> dict:
    session: Session = ctx.session_factory()
    try:
        replay = session.get(Replay, replay_id)
        if replay is None:
            raise DataIntegrityError(f"Replay {replay_id} not found")
        if replay.status == READY:
            return skipped("already_processed")
        if not claim_replay(session, replay_id, ctx.settings.replay_processing_lease_minutes):
            session.refresh(replay)
            return skipped("already_processed" if replay.status == READY else "in_progress")
        session.refresh(replay)
        try:
            source = list(replay.raw_chunks or replay.chunks or [])
            if not source:
                raise DataIntegrityError(f"Replay {replay_id} has no chunks")
            result = sanitize_chunks(ctx.storage, source)
            if not result["chunks"]:
                raise DataIntegrityError(f"Replay {replay_id}: no chunk could be processed")
            min_ts, max_ts = result["min_ts"], result["max_ts"]
            duration = int(max(0, max_ts - min_ts)) if max_ts is not None else 0
            replay.raw_chunks = source
            replay.chunks = result["chunks"]
            replay.event_count = result["event_count"]
            replay.duration = duration
            if max_ts is not None:
                replay.ended_at = ms_to_datetime(max_ts)
            replay.status = READY
            replay.processing_started_at = None
            session.commit()
        except Exception:
            session.rollback()
            session.execute(update(Replay).where(Replay.id == replay_id).values(status=FAILED, processing_started_at=None))
            session.commit()
            REPLAYS_PROCESSED.labels(status=FAILED).inc()
            logger.warning("replay %s marked failed", replay_id)
            raise
        REPLAYS_PROCESSED.labels(status=READY).inc()
        REPLAY_EVENTS.observe(result["event_count"])
        logger.info("replay %s sanitized: %d events in %d chunks", replay_id, result["event_count"], len(result["chunks"]))
        return {"status": "ok", "event_count": result["event_count"], "duration": duration,
                "chunk_count": len(result["chunks"])}
    finally:
        session.close()


@celery_app.task(bind=True, name=get_queue(REPLAY_PROCESS).task, **retry_policy())
def process_replay(self, replay_id: str, project_id: str | None = None):
    return run_replay_sanitization(current_context(), replay_id)
