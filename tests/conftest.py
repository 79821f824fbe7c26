"""
Shared fixtures for the refinement tests.

Everything runs against an in-memory SQLite database and a scripted chat
model, so no test ever reaches Postgres, OpenAI or Vertex.
"""

import copy
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jd_refiner.analysis_store import AnalysisStore
from jd_refiner.entities import Base, RefinementMessage, SavedAnalysis
from jd_refiner.llm_client import LlmReply


SAMPLE_INTAKE = {
    "companyName": "Acme Dental",
    "businessGoal": "Free up the owner's time",
    "weeklyHours": "30",
    "tools": "Gmail, QuickBooks",
}

SAMPLE_ANALYSIS = {
    "what_you_told_us": "You need help with your inbox and bookkeeping.",
    "roles": [
        {
            "title": "Executive Assistant",
            "hours_per_week": 20,
            "core_outcomes": ["Owner spends < 1h/day on email"],
            "responsibilities": ["Inbox triage", "Calendar management"],
            "skills": ["Written English", "QuickBooks"],
            "tools": ["Gmail", "QuickBooks"],
            "kpis": ["Inbox zero daily"],
            "sample_week": {"monday": "Inbox triage and weekly planning"},
        },
        {
            "title": "Bookkeeper",
            "hours_per_week": 10,
            "responsibilities": ["Reconcile accounts"],
            "skills": ["QuickBooks"],
            "tools": ["QuickBooks"],
        },
    ],
    "split_table": [
        {"role": "Executive Assistant", "hrs": 20},
        {"role": "Bookkeeper", "hrs": 10},
    ],
    "service_recommendation": {
        "best_fit": "Part-time assistant",
        "why": "Workload fits 30 hours a week",
        "cost_framing": "Two part-time roles",
        "next_steps": ["Kickoff call"],
    },
    "onboarding_2w": {"week_1": ["Access setup"], "week_2": ["Shadowing"]},
    "risks": ["Timezone overlap"],
    "assumptions": ["US business hours"],
}


def edited_analysis(**changes):
    """A deep copy of SAMPLE_ANALYSIS with top-level keys replaced."""
    doc = copy.deepcopy(SAMPLE_ANALYSIS)
    doc.update(changes)
    return doc


class FakeChatLlm:
    """Scripted stand-in for ChatLlmClient; replies are consumed in order."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def invoke(self, messages):
        self.calls.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, LlmReply):
            return reply
        if isinstance(reply, dict):
            return LlmReply(json.dumps(reply), 321)
        return LlmReply(reply, 0)


@pytest.fixture
def sample_analysis():
    return copy.deepcopy(SAMPLE_ANALYSIS)


@pytest.fixture
def sample_intake():
    return copy.deepcopy(SAMPLE_INTAKE)


@pytest.fixture
def edit_analysis():
    return edited_analysis


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return AnalysisStore(session_factory)


@pytest.fixture
def fake_llm():
    return FakeChatLlm()


@pytest.fixture
def seed_analysis(session_factory):
    """Insert a SavedAnalysis row directly and return its id."""
    base_time = datetime(2026, 1, 1, tzinfo=timezone.utc)
    counter = {"n": 0}

    def _seed(user_id="user-1", *, title="Dental EA", analysis=None, intake=None,
              is_finalized=False, created_at=None):
        counter["n"] += 1
        session = session_factory()
        try:
            row = SavedAnalysis(
                user_id=user_id,
                title=title,
                intake_data=copy.deepcopy(intake if intake is not None else SAMPLE_INTAKE),
                analysis=copy.deepcopy(analysis if analysis is not None else SAMPLE_ANALYSIS),
                is_finalized=is_finalized,
                created_at=created_at or base_time + timedelta(minutes=counter["n"]),
            )
            session.add(row)
            session.commit()
            return row.id
        finally:
            session.close()

    return _seed


@pytest.fixture
def db_rows(session_factory):
    """Read helpers that bypass the store."""

    class _Rows:
        def analysis(self, analysis_id):
            session = session_factory()
            try:
                row = session.get(SavedAnalysis, analysis_id)
                return {"analysis": row.analysis, "version": row.version, "updated_at": row.updated_at}
            finally:
                session.close()

        def messages(self, analysis_id):
            session = session_factory()
            try:
                rows = session.scalars(
                    select(RefinementMessage)
                    .where(RefinementMessage.analysis_id == analysis_id)
                    .order_by(RefinementMessage.sequence_number)
                ).all()
                return [(r.sequence_number, r.role) for r in rows]
            finally:
                session.close()

        def add_message(self, analysis_id, sequence_number, role="user", content="legacy"):
            session = session_factory()
            try:
                session.add(RefinementMessage(
                    analysis_id=analysis_id,
                    role=role,
                    content=content,
                    changed_sections=[],
                    sequence_number=sequence_number,
                    analysis_snapshot={},
                ))
                session.commit()
            finally:
                session.close()

    return _Rows()
