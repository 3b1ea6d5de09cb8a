"""Process-wide worker context.

Created once when a worker process starts, handed by reference to every job handler, and torn
down on shutdown after in-flight jobs have drained.
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field
from sqlalchemy.orm import sessionmaker
from relay_worker.analysis.classifier import ExternalClassifier, build_classifier
from relay_worker.config import Settings, get_settings
from relay_worker.infrastructure import db
from relay_worker.infrastructure.object_storage import ObjectStorage, build_object_storage

logger = logging.getLogger(__name__)


@dataclass
class WorkerContext:
    settings: Settings
    session_factory: sessionmaker
    storage: ObjectStorage
    classifier: ExternalClassifier | None = None
    closed: bool = field(default=False)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.classifier is not None:
            self.classifier.close()
        self.storage.close()


def build_worker_context(settings: Settings | None = None) -> WorkerContext:
    s = settings or get_settings()
    return WorkerContext(
        settings=s,
        session_factory=db.get_session_factory(),
        storage=build_object_storage(s),
        classifier=build_classifier(s),
    )


_current: WorkerContext | None = None
_lock = threading.Lock()


def init_worker_context(ctx: WorkerContext | None = None) -> WorkerContext:
    global _current
    with _lock:
        if _current is not None and not _current.closed:
            return _current
        _current = ctx or build_worker_context()
        logger.info("worker context ready (storage=%s, classifier=%s)",
                    type(_current.storage).__name__,
                    _current.classifier.name if _current.classifier else "none")
        return _current


def current_context() -> WorkerContext:
    if _current is None or _current.closed:
        return init_worker_context()
    return _current


def shutdown_worker_context() -> None:
    global _current
    with _lock:
        ctx, _current = _current, None
    if ctx is None:
        return
    ctx.close()
    db.dispose_engine()
    logger.info("worker context closed")
