# jd_refiner/analysis_store.py

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from jd_refiner.entities import RefinementMessage, SavedAnalysis
from jd_refiner.errors import ConflictError, PersistenceError

logger = logging.getLogger("jd_refiner.store")


@dataclass
class StoredMessage:
    role: str
    content: str
    changed_sections: list[str]
    sequence_number: int
    analysis_snapshot: dict
    created_at: Optional[datetime] = None
    id: Optional[str] = None


@dataclass
class AnalysisState:
    id: str
    user_id: str
    title: str
    intake_data: dict
    analysis: dict
    is_finalized: bool
    finalized_at: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    version: int
    messages: list[StoredMessage] = field(default_factory=list)
    refinement_count: int = 0


@dataclass
class CommittedRefinement:
    analysis: dict
    messages: list[StoredMessage]
    updated_at: datetime


def _to_message(row: RefinementMessage) -> StoredMessage:
    return StoredMessage(
        id=row.id,
        role=row.role,
        content=row.content,
        changed_sections=list(row.changed_sections or []),
        sequence_number=row.sequence_number,
        analysis_snapshot=row.analysis_snapshot or {},
        created_at=row.created_at,
    )


def _to_state(row: SavedAnalysis, messages: list[StoredMessage] | None = None, refinement_count: int | None = None) -> AnalysisState:
    messages = messages or []
    return AnalysisState(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        intake_data=row.intake_data or {},
        analysis=row.analysis or {},
        is_finalized=bool(row.is_finalized),
        finalized_at=row.finalized_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
        messages=messages,
        refinement_count=len(messages) if refinement_count is None else refinement_count,
    )


class AnalysisStore:
    """
    Saved analyses and their ordered refinement messages.

    Every public method opens its own session and closes it before returning;
    callers only ever see detached dataclasses.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.SessionFactory = session_factory

    # -----------------------
    # Reads
    # -----------------------

    def find_for_refinement(self, user_id: str, analysis_id: str | None = None) -> AnalysisState | None:
        """
        The analysis `analysis_id` owned by `user_id`, or, without an id, the
        user's most recently created non-finalized analysis. Messages come
        back in ascending sequence order.
        """
        stmt = (
            select(SavedAnalysis)
            .options(selectinload(SavedAnalysis.refinements))
            .where(SavedAnalysis.user_id == str(user_id))
        )
        if analysis_id:
            stmt = stmt.where(SavedAnalysis.id == str(analysis_id))
        else:
            stmt = stmt.where(SavedAnalysis.is_finalized.is_(False)).order_by(SavedAnalysis.created_at.desc())

        session = self.SessionFactory()
        try:
            row = session.scalars(stmt.limit(1)).first()
            if row is None:
                return None
            messages = [_to_message(m) for m in sorted(row.refinements, key=lambda m: m.sequence_number)]
            return _to_state(row, messages)
        except SQLAlchemyError as e:
            logger.exception("find_for_refinement(): DB error")
            raise PersistenceError("Failed to load analysis", details=str(e)) from e
        finally:
            session.close()

    def _list_filters(self, user_id: str, finalized: bool | None, search: str | None) -> list:
        filters = [SavedAnalysis.user_id == str(user_id)]
        if finalized is not None:
            filters.append(SavedAnalysis.is_finalized.is_(bool(finalized)))
        if search:
            # plain substring match: LIKE wildcards in the search text are literal
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{escaped}%"
            filters.append(
                or_(
                    SavedAnalysis.title.ilike(pattern, escape="\\"),
                    SavedAnalysis.intake_data["companyName"].as_string().ilike(pattern, escape="\\"),
                )
            )
        return filters

    def count_analyses(self, user_id: str, *, finalized: bool | None = None, search: str | None = None) -> int:
        stmt = select(func.count()).select_from(SavedAnalysis).where(*self._list_filters(user_id, finalized, search))
        session = self.SessionFactory()
        try:
            return int(session.scalar(stmt) or 0)
        except SQLAlchemyError as e:
            logger.exception("count_analyses(): DB error")
            raise PersistenceError("Failed to count analyses", details=str(e)) from e
        finally:
            session.close()

    def list_analyses(
        self,
        user_id: str,
        *,
        page: int = 1,
        limit: int = 10,
        finalized: bool | None = None,
        search: str | None = None,
    ) -> list[AnalysisState]:
        """Newest first; each state carries its refinement_count but no messages."""
        page = max(1, int(page))
        limit = max(1, int(limit))

        refinement_count = (
            select(func.count(RefinementMessage.id))
            .where(RefinementMessage.analysis_id == SavedAnalysis.id)
            .correlate(SavedAnalysis)
            .scalar_subquery()
        )
        stmt = (
            select(SavedAnalysis, refinement_count.label("refinement_count"))
            .where(*self._list_filters(user_id, finalized, search))
            .order_by(SavedAnalysis.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )

        session = self.SessionFactory()
        try:
            return [_to_state(row, refinement_count=int(count or 0)) for row, count in session.execute(stmt).all()]
        except SQLAlchemyError as e:
            logger.exception("list_analyses(): DB error")
            raise PersistenceError("Failed to load analyses", details=str(e)) from e
        finally:
            session.close()

    # -----------------------
    # Writes
    # -----------------------

    def create_analysis(
        self,
        user_id: str,
        title: str,
        intake_data: dict,
        analysis: dict,
        *,
        is_finalized: bool = False,
        finalized_at: datetime | None = None,
    ) -> AnalysisState:
        session = self.SessionFactory()
        try:
            row = SavedAnalysis(
                user_id=str(user_id),
                title=title,
                intake_data=intake_data,
                analysis=analysis,
                is_finalized=bool(is_finalized),
                finalized_at=finalized_at,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.info(f"[STORE] created analysis {row.id} for user {user_id}")
            return _to_state(row)
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception("create_analysis(): DB error")
            raise PersistenceError("Failed to save analysis", details=str(e)) from e
        finally:
            session.close()

    def commit_refinement(
        self,
        state: AnalysisState,
        *,
        user_message: str,
        assistant_content: str,
        changed_sections: list[str],
        updated_analysis: dict,
    ) -> CommittedRefinement:
        """
        One transaction: guard on the version read in `state`, replace the
        analysis document, append the user + assistant message pair.
        Nothing is written unless all of it is.
        """
        next_sequence = len(state.messages) + 1
        now = datetime.now(timezone.utc)

        session = self.SessionFactory()
        try:
            result = session.execute(
                update(SavedAnalysis)
                .where(SavedAnalysis.id == state.id, SavedAnalysis.version == state.version)
                .values(
                    analysis=updated_analysis,
                    updated_at=now,
                    version=SavedAnalysis.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                session.rollback()
                raise ConflictError(
                    details=f"analysis {state.id} is no longer at version {state.version}",
                )

            session.add_all([
                RefinementMessage(
                    analysis_id=state.id,
                    role="user",
                    content=user_message,
                    changed_sections=[],
                    sequence_number=next_sequence,
                    analysis_snapshot=copy.deepcopy(state.analysis),
                ),
                RefinementMessage(
                    analysis_id=state.id,
                    role="assistant",
                    content=assistant_content,
                    changed_sections=list(changed_sections),
                    sequence_number=next_sequence + 1,
                    analysis_snapshot=copy.deepcopy(updated_analysis),
                ),
            ])
            session.flush()

            rows = session.scalars(
                select(RefinementMessage)
                .where(RefinementMessage.analysis_id == state.id)
                .order_by(RefinementMessage.sequence_number.asc())
            ).all()
            messages = [_to_message(r) for r in rows]

            session.commit()
            logger.info(
                f"[STORE] analysis {state.id}: committed messages {next_sequence}-{next_sequence + 1}"
            )
            return CommittedRefinement(analysis=updated_analysis, messages=messages, updated_at=now)
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception("commit_refinement(): DB error")
            raise PersistenceError("Failed to save refinement", details=str(e)) from e
        finally:
            session.close()
