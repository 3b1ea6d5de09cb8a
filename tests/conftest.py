import json
import os
import pathlib
import sys
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("OBJECT_STORAGE_BACKEND", "memory")
os.environ.pop("OPENAI_API_KEY", None)

from relay_worker.config import Settings, reset_settings
from relay_worker.infrastructure import db
from relay_worker.infrastructure.context import WorkerContext
from relay_worker.infrastructure.object_storage import InMemoryObjectStorage
from relay_worker.models.tables import (
    AuditLog, FeedbackLink, Interaction, InteractionLog, Media, Project, Replay, UserSession,
)
from relay_worker.utils import utcnow


class Seeder:
    """Inserts rows the way the API layer would."""

    def __init__(self, session_factory, storage):
        self.session_factory = session_factory
        self.storage = storage
        self._seq = 0

    def _id(self, prefix):
        self._seq += 1
        return f"{prefix}_{self._seq}"

    def _add(self, obj):
        s = self.session_factory()
        try:
            s.add(obj)
            s.commit()
            return obj
        finally:
            s.close()

    def project(self, ai_enabled=True, retention=None, project_id=None):
        settings = {"aiEnabled": ai_enabled}
        if retention is not None:
            settings["retention"] = retention
        return self._add(Project(id=project_id or self._id("proj"), name="Demo", settings=settings))

    def interaction(self, project, text="", type="bug", title=None, description=None, age_days=0,
                    errors=None, url=None, user_agent=None, session_id=None, linked_issue_id=None, steps=None,
                    **fields):
        content = {}
        if title:
            content["title"] = title
        if description:
            content["description"] = description
        if steps:
            content["steps"] = steps
        tech = {}
        if url:
            tech["url"] = url
        if user_agent:
            tech["userAgent"] = user_agent
        created = utcnow() - timedelta(days=age_days)
        interaction = self._add(Interaction(
            id=self._id("int"),
            project_id=project.id,
            type=type,
            content_text=text,
            content_json=content or None,
            technical_context=tech or None,
            session_id=session_id,
            linked_issue_id=linked_issue_id,
            created_at=created,
            **fields,
        ))
        if errors is not None:
            self.log(interaction, errors=errors)
        return interaction

    def log(self, interaction, errors=None, console=None, network=None):
        return self._add(InteractionLog(interaction_id=interaction.id, errors=errors, console=console, network=network))

    def media(self, interaction, key="media/shot.png"):
        return self._add(Media(interaction_id=interaction.id, storage_key=key))

    def feedback_link(self, interaction):
        return self._add(FeedbackLink(interaction_id=interaction.id, feedback_item_id=self._id("fb")))

    def user_session(self, project, age_days=0):
        ts = utcnow() - timedelta(days=age_days)
        return self._add(UserSession(id=self._id("sess"), project_id=project.id, started_at=ts, last_seen_at=ts))

    def audit_log(self, project, age_days=0):
        return self._add(AuditLog(project_id=project.id, action="settings.update",
                                  created_at=utcnow() - timedelta(days=age_days)))

    def replay(self, project, chunk_events=None, missing=0, session_id=None, age_days=0, status="pending"):
        """chunk_events: list of event lists stored under raw keys; missing: extra chunks never uploaded."""
        replay_id = self._id("rep")
        chunks = []
        for i, events in enumerate(chunk_events or []):
            key = f"replays/{project.id}/{replay_id}/{i}.json"
            self.storage.put(key, json.dumps(events).encode("utf-8"))
            chunks.append({"index": i, "storageKey": key, "eventCount": len(events), "startTime": 0, "endTime": 0})
        offset = len(chunks)
        for j in range(missing):
            chunks.append({"index": offset + j, "storageKey": f"replays/{project.id}/{replay_id}/{offset + j}.json",
                           "eventCount": 0, "startTime": 0, "endTime": 0})
        return self._add(Replay(id=replay_id, project_id=project.id, session_id=session_id, status=status,
                                chunks=chunks, started_at=utcnow() - timedelta(days=age_days)))


@pytest.fixture(autouse=True)
def settings_env():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def engine():
    e = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    db.Base.metadata.create_all(e)
    db.override_engine(e)
    yield e
    db.Base.metadata.drop_all(e)
    e.dispose()


@pytest.fixture
def session_factory(engine):
    return db.get_session_factory()


@pytest.fixture
def storage():
    return InMemoryObjectStorage()


@pytest.fixture
def ctx(session_factory, storage):
    return WorkerContext(settings=Settings(), session_factory=session_factory, storage=storage, classifier=None)


@pytest.fixture
def seed(session_factory, storage):
    return Seeder(session_factory, storage)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()
