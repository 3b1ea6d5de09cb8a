"""Per-project retention sweeps.

Each entity class is cleaned in bounded batches, committed batch by batch, so an interrupted run
leaves deleted batches gone and everything else untouched; the next run simply continues.
Order within a batch: children before parents, blobs before replay rows.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable
from prometheus_client import Counter
from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from relay_worker.config import Settings
from relay_worker.infrastructure.object_storage import ObjectStorage, raw_key_for, sanitized_key
from relay_worker.models.tables import (
    AuditLog, FeedbackLink, Interaction, InteractionLog, Media, Project, Replay, UserSession,
)
from relay_worker.utils import utcnow

logger = logging.getLogger(__name__)

RETENTION_DELETED = Counter('retention_deleted_total', 'Rows removed by retention sweeps', ['entity'])

DEFAULT_RETENTION_DAYS = {
    "interactions": 365,
    "sessions": 90,
    "replays": 30,
    "audit_logs": 730,
}
_ALIASES = {"auditLogs": "audit_logs"}


@dataclass(frozen=True)
class RetentionPolicy:
    interactions: int = DEFAULT_RETENTION_DAYS["interactions"]
    sessions: int = DEFAULT_RETENTION_DAYS["sessions"]
    replays: int = DEFAULT_RETENTION_DAYS["replays"]
    audit_logs: int = DEFAULT_RETENTION_DAYS["audit_logs"]

    def cutoff(self, entity: str, now: datetime) -> datetime:
        return now - timedelta(days=getattr(self, entity))


def resolve_policy(project_settings: dict | None) -> RetentionPolicy:
    """Project overrides merged over the defaults; unusable values keep the default."""
    raw = (project_settings or {}).get("retention")
    values = dict(DEFAULT_RETENTION_DAYS)
    if isinstance(raw, dict):
        for key, days in raw.items():
            name = _ALIASES.get(key, key)
            if name not in values:
                continue
            if isinstance(days, bool) or not isinstance(days, (int, float)) or days <= 0:
                logger.warning("ignoring invalid retention window %s=%r", key, days)
                continue
            values[name] = int(days)
    return RetentionPolicy(**values)


def replay_storage_keys(replays: Iterable[Replay]) -> list[str]:
    """Raw and sanitized keys for every chunk a replay ever referenced."""
    keys: list[str] = []
    for replay in replays:
        for chunk in (replay.chunks or []) + (replay.raw_chunks or []):
            if not isinstance(chunk, dict):
                continue
            for k in (chunk.get("storageKey"), chunk.get("rawStorageKey")):
                if k:
                    raw = raw_key_for(k)
                    keys.extend((raw, sanitized_key(raw)))
    return list(dict.fromkeys(keys))


class RetentionSweeper:
    def __init__(self, session: Session, storage: ObjectStorage, settings: Settings,
                 now: datetime | None = None, drain: bool = False):
        self.session = session
        self.storage = storage
        self.settings = settings
        self.now = now or utcnow()
        self.max_batches = None if drain else max(1, settings.retention_max_batches)

    def _batches(self):
        n = 0
        while self.max_batches is None or n < self.max_batches:
            n += 1
            yield n

    def cleanup_interactions(self, project_id: str, cutoff: datetime) -> tuple[int, int]:
        """Returns (interactions, media blob keys deleted)."""
        total = keys = 0
        for _ in self._batches():
            ids = list(self.session.scalars(
                select(Interaction.id)
                .where(
                    Interaction.project_id == project_id,
                    Interaction.created_at < cutoff,
                    Interaction.linked_issue_id.is_(None),
                )
                .limit(self.settings.retention_interaction_batch)
            ))
            if not ids:
                break
            media_keys = list(self.session.scalars(select(Media.storage_key).where(Media.interaction_id.in_(ids))))
            if media_keys:
                blobs = self.storage.delete_many(media_keys, batch_size=self.settings.storage_delete_batch_size)
                keys += blobs["deleted"]
            self.session.execute(delete(InteractionLog).where(InteractionLog.interaction_id.in_(ids)))
            self.session.execute(delete(Media).where(Media.interaction_id.in_(ids)))
            self.session.execute(delete(FeedbackLink).where(FeedbackLink.interaction_id.in_(ids)))
            res = self.session.execute(delete(Interaction).where(Interaction.id.in_(ids)))
            self.session.commit()
            total += res.rowcount
            if len(ids) < self.settings.retention_interaction_batch:
                break
        RETENTION_DELETED.labels(entity='interactions').inc(total)
        return total, keys

    def _delete_replays(self, replays: list[Replay]) -> tuple[int, dict]:
        if not replays:
            return 0, {"requested": 0, "deleted": 0, "failed_batches": 0}
        blob_result = self.storage.delete_many(replay_storage_keys(replays),
                                               batch_size=self.settings.storage_delete_batch_size)
        res = self.session.execute(delete(Replay).where(Replay.id.in_([r.id for r in replays])))
        return res.rowcount, blob_result

    def cleanup_sessions(self, project_id: str, cutoff: datetime) -> tuple[int, int, int]:
        """Returns (sessions, cascaded replays, blob keys deleted)."""
        active = (
            select(Interaction.session_id)
            .where(
                Interaction.project_id == project_id,
                Interaction.created_at >= cutoff,
                Interaction.session_id.is_not(None),
            )
        )
        total = replays = keys = 0
        for _ in self._batches():
            ids = list(self.session.scalars(
                select(UserSession.id)
                .where(
                    UserSession.project_id == project_id,
                    UserSession.last_seen_at < cutoff,
                    UserSession.id.not_in(active),
                )
                .limit(self.settings.retention_session_batch)
            ))
            if not ids:
                break
            dependents = list(self.session.scalars(
                select(Replay).where(Replay.project_id == project_id, Replay.session_id.in_(ids))
            ))
            n, blobs = self._delete_replays(dependents)
            res = self.session.execute(delete(UserSession).where(UserSession.id.in_(ids)))
            self.session.commit()
            replays += n
            keys += blobs["deleted"]
            total += res.rowcount
            if len(ids) < self.settings.retention_session_batch:
                break
        RETENTION_DELETED.labels(entity='sessions').inc(total)
        RETENTION_DELETED.labels(entity='replays').inc(replays)
        return total, replays, keys

    def cleanup_replays(self, project_id: str, cutoff: datetime) -> tuple[int, int]:
        """Returns (replays, blob keys deleted)."""
        total = keys = 0
        for _ in self._batches():
            batch = list(self.session.scalars(
                select(Replay)
                .where(Replay.project_id == project_id, Replay.started_at < cutoff)
                .limit(self.settings.retention_replay_batch)
            ))
            if not batch:
                break
            n, blobs = self._delete_replays(batch)
            self.session.commit()
            total += n
            keys += blobs["deleted"]
            if len(batch) < self.settings.retention_replay_batch:
                break
        RETENTION_DELETED.labels(entity='replays').inc(total)
        return total, keys

    def cleanup_audit_logs(self, project_id: str, cutoff: datetime) -> int:
        res = self.session.execute(
            delete(AuditLog).where(AuditLog.project_id == project_id, AuditLog.created_at < cutoff)
        )
        self.session.commit()
        RETENTION_DELETED.labels(entity='audit_logs').inc(res.rowcount)
        return res.rowcount

    def sweep_project(self, project: Project) -> dict[str, Any]:
        policy = resolve_policy(project.settings if isinstance(project.settings, dict) else None)
        interactions, media_keys = self.cleanup_interactions(project.id, policy.cutoff("interactions", self.now))
        sessions, cascaded, session_keys = self.cleanup_sessions(project.id, policy.cutoff("sessions", self.now))
        replays, replay_keys = self.cleanup_replays(project.id, policy.cutoff("replays", self.now))
        audit_logs = self.cleanup_audit_logs(project.id, policy.cutoff("audit_logs", self.now))
        return {
            "interactions": interactions,
            "sessions": sessions,
            "replays": replays + cascaded,
            "audit_logs": audit_logs,
            "storage_keys": media_keys + session_keys + replay_keys,
        }


def run_retention(session: Session, storage: ObjectStorage, settings: Settings, project_id: str | None = None,
                  now: datetime | None = None, drain: bool = False) -> dict[str, Any]:
    sweeper = RetentionSweeper(session, storage, settings, now=now, drain=drain)
    if project_id:
        project = session.get(Project, project_id)
        projects = [project] if project is not None else []
    else:
        projects = list(session.scalars(select(Project).order_by(Project.id)))
    totals = {"interactions": 0, "sessions": 0, "replays": 0, "audit_logs": 0, "storage_keys": 0}
    failed: list[str] = []
    for project in projects:
        try:
            counts = sweeper.sweep_project(project)
        except Exception:
            session.rollback()
            failed.append(project.id)
            logger.exception("retention sweep failed for project %s", project.id)
            continue
        for k, v in counts.items():
            totals[k] += v
        logger.info("retention sweep for project %s: %s", project.id, counts)
    return {"projects": len(projects), "deleted": totals, "failed_projects": failed}
