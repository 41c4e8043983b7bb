"""Record store: ancestors, search candidates, blacklist, jobs and admin feedback.

Two implementations share one protocol: ``MemoryRecordStore`` for tests and
single-shot runs, ``SQLiteRecordStore`` for anything that must survive the
process. Structured fields are stored as JSON; callers never see rows.
"""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable, Protocol

import structlog

from .models.ancestor import Ancestor, is_in_subtree
from .models.candidate import SearchCandidateRecord
from .models.job import FeedbackEntry, ResearchJob

logger = structlog.get_logger(__name__)

FEEDBACK_ERA_WINDOW = 25


class RecordStoreError(Exception):
    """The record store failed; fatal for the job that hit it."""


class RecordStore(Protocol):
    def create_ancestor(self, ancestor: Ancestor) -> Ancestor: ...
    def save_ancestor(self, ancestor: Ancestor) -> Ancestor: ...
    def get_ancestor(self, job_id: str, asc: int) -> Ancestor | None: ...
    def update_ancestor(self, job_id: str, asc: int, fields: dict[str, Any]) -> Ancestor: ...
    def list_ancestors(self, job_id: str) -> list[Ancestor]: ...
    def delete_subtree(self, job_id: str, asc: int) -> list[int]: ...

    def add_rejected_source_id(self, job_id: str, source_id: str, provider: str = "", reason: str = "") -> None: ...
    def list_rejected_source_ids(self, job_id: str) -> set[str]: ...

    def record_search_candidate(self, record: SearchCandidateRecord) -> None: ...
    def list_search_candidates(self, job_id: str, asc: int) -> list[SearchCandidateRecord]: ...
    def clear_search_candidates(self, job_id: str, asc: int) -> None: ...

    def create_job(self, job: ResearchJob) -> ResearchJob: ...
    def get_job(self, job_id: str) -> ResearchJob | None: ...
    def update_job(self, job_id: str, **fields: Any) -> ResearchJob: ...

    def add_feedback(self, entry: FeedbackEntry) -> None: ...
    def list_relevant_feedback(
        self,
        surnames: Iterable[str] = (),
        locations: Iterable[str] = (),
        birth_years: Iterable[int] = (),
        limit: int = 50,
    ) -> list[FeedbackEntry]: ...


def _apply_fields(ancestor: Ancestor, fields: dict[str, Any]) -> Ancestor:
    data = ancestor.model_dump()
    data.update(fields)
    return Ancestor.model_validate(data)


def _feedback_matches(entry: FeedbackEntry, surnames: set[str], locations: list[str], years: list[int]) -> bool:
    if entry.surname and entry.surname.lower() in surnames:
        return True
    loc = entry.location.lower()
    if loc and any(l in loc or loc in l for l in locations):
        return True
    if entry.birth_year and any(abs(entry.birth_year - y) <= FEEDBACK_ERA_WINDOW for y in years):
        return True
    return False


def _select_feedback(
    entries: Iterable[FeedbackEntry],
    surnames: Iterable[str],
    locations: Iterable[str],
    birth_years: Iterable[int],
    limit: int,
) -> list[FeedbackEntry]:
    s = {x.lower() for x in surnames if x}
    l = [x.lower() for x in locations if x]
    y = [x for x in birth_years if x]
    ordered = sorted(entries, key=lambda e: e.created_at, reverse=True)
    return [e for e in ordered if _feedback_matches(e, s, l, y)][:limit]


class MemoryRecordStore:
    """Dict-backed store. Returns copies so callers cannot mutate stored state."""

    def __init__(self) -> None:
        self._ancestors: dict[tuple[str, int], Ancestor] = {}
        self._candidates: dict[tuple[str, int], list[SearchCandidateRecord]] = {}
        self._rejected: dict[str, dict[str, dict]] = {}
        self._jobs: dict[str, ResearchJob] = {}
        self._feedback: list[FeedbackEntry] = []

    # Ancestors

    def create_ancestor(self, ancestor: Ancestor) -> Ancestor:
        key = (ancestor.job_id, ancestor.ascendancy_number)
        if key in self._ancestors:
            raise RecordStoreError(f"Position {key[1]} already exists for job {key[0]}")
        self._ancestors[key] = ancestor.model_copy(deep=True)
        return ancestor

    def save_ancestor(self, ancestor: Ancestor) -> Ancestor:
        self._ancestors[(ancestor.job_id, ancestor.ascendancy_number)] = ancestor.model_copy(deep=True)
        return ancestor

    def get_ancestor(self, job_id: str, asc: int) -> Ancestor | None:
        found = self._ancestors.get((job_id, asc))
        return found.model_copy(deep=True) if found else None

    def update_ancestor(self, job_id: str, asc: int, fields: dict[str, Any]) -> Ancestor:
        current = self._ancestors.get((job_id, asc))
        if current is None:
            raise RecordStoreError(f"No position {asc} for job {job_id}")
        updated = _apply_fields(current, fields)
        self._ancestors[(job_id, asc)] = updated
        return updated.model_copy(deep=True)

    def list_ancestors(self, job_id: str) -> list[Ancestor]:
        return [
            a.model_copy(deep=True)
            for (jid, _), a in sorted(self._ancestors.items(), key=lambda kv: kv[0][1])
            if jid == job_id
        ]

    def delete_subtree(self, job_id: str, asc: int) -> list[int]:
        doomed = [n for (jid, n) in self._ancestors if jid == job_id and is_in_subtree(asc, n)]
        for n in doomed:
            del self._ancestors[(job_id, n)]
            self._candidates.pop((job_id, n), None)
        return sorted(doomed)

    # Blacklist

    def add_rejected_source_id(self, job_id: str, source_id: str, provider: str = "", reason: str = "") -> None:
        self._rejected.setdefault(job_id, {})[source_id] = {"provider": provider, "reason": reason}

    def list_rejected_source_ids(self, job_id: str) -> set[str]:
        return set(self._rejected.get(job_id, {}))

    # Search candidates

    def record_search_candidate(self, record: SearchCandidateRecord) -> None:
        self._candidates.setdefault((record.job_id, record.ascendancy_number), []).append(record.model_copy(deep=True))

    def list_search_candidates(self, job_id: str, asc: int) -> list[SearchCandidateRecord]:
        records = self._candidates.get((job_id, asc), [])
        return sorted((r.model_copy(deep=True) for r in records), key=lambda r: r.computed_score, reverse=True)

    def clear_search_candidates(self, job_id: str, asc: int) -> None:
        self._candidates.pop((job_id, asc), None)

    # Jobs

    def create_job(self, job: ResearchJob) -> ResearchJob:
        self._jobs[job.id] = job.model_copy(deep=True)
        return job

    def get_job(self, job_id: str) -> ResearchJob | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    def update_job(self, job_id: str, **fields: Any) -> ResearchJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise RecordStoreError(f"Unknown job {job_id}")
        updated = ResearchJob.model_validate({**job.model_dump(), **fields, "updated_at": datetime.now(UTC)})
        self._jobs[job_id] = updated
        return updated.model_copy(deep=True)

    # Feedback

    def add_feedback(self, entry: FeedbackEntry) -> None:
        self._feedback.append(entry.model_copy(deep=True))

    def list_relevant_feedback(
        self,
        surnames: Iterable[str] = (),
        locations: Iterable[str] = (),
        birth_years: Iterable[int] = (),
        limit: int = 50,
    ) -> list[FeedbackEntry]:
        return _select_feedback(self._feedback, surnames, locations, birth_years, limit)


class SQLiteRecordStore:
    """SQLite-backed store. One connection per call; WAL journal."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _get_conn(self):
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise RecordStoreError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA busy_timeout=5000;")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("store.sqlite_error", error=str(e))
            raise RecordStoreError(str(e)) from e
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._get_conn() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    full_json TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS ancestors (
                    job_id TEXT NOT NULL,
                    ascendancy_number INTEGER NOT NULL,
                    name TEXT,
                    confidence_score INTEGER NOT NULL,
                    confidence_level TEXT NOT NULL,
                    source_person_id TEXT,
                    full_json TEXT NOT NULL,
                    PRIMARY KEY (job_id, ascendancy_number)
                );

                CREATE TABLE IF NOT EXISTS search_candidates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL,
                    ascendancy_number INTEGER NOT NULL,
                    computed_score INTEGER NOT NULL,
                    full_json TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_candidates_position ON search_candidates(job_id, ascendancy_number);

                CREATE TABLE IF NOT EXISTS rejected_sources (
                    job_id TEXT NOT NULL,
                    source_id TEXT NOT NULL,
                    provider TEXT,
                    reason TEXT,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (job_id, source_id)
                );

                CREATE TABLE IF NOT EXISTS feedback (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL,
                    surname TEXT,
                    location TEXT,
                    birth_year INTEGER,
                    created_at TEXT NOT NULL,
                    full_json TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_feedback_surname ON feedback(surname);
                """
            )

    # --------------------------- Ancestors ---------------------------

    def _write_ancestor(self, conn: sqlite3.Connection, ancestor: Ancestor, upsert: bool) -> None:
        verb = "INSERT OR REPLACE" if upsert else "INSERT"
        conn.execute(
            f"""
            {verb} INTO ancestors (
                job_id, ascendancy_number, name, confidence_score,
                confidence_level, source_person_id, full_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                ancestor.job_id,
                ancestor.ascendancy_number,
                ancestor.name,
                ancestor.confidence_score,
                ancestor.confidence_level.value,
                ancestor.source_person_id,
                ancestor.model_dump_json(),
            ),
        )

    def create_ancestor(self, ancestor: Ancestor) -> Ancestor:
        with self._get_conn() as conn:
            self._write_ancestor(conn, ancestor, upsert=False)
        return ancestor

    def save_ancestor(self, ancestor: Ancestor) -> Ancestor:
        with self._get_conn() as conn:
            self._write_ancestor(conn, ancestor, upsert=True)
        return ancestor

    def get_ancestor(self, job_id: str, asc: int) -> Ancestor | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT full_json FROM ancestors WHERE job_id = ? AND ascendancy_number = ?",
                (job_id, asc),
            ).fetchone()
        return Ancestor.model_validate_json(row["full_json"]) if row else None

    def update_ancestor(self, job_id: str, asc: int, fields: dict[str, Any]) -> Ancestor:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT full_json FROM ancestors WHERE job_id = ? AND ascendancy_number = ?",
                (job_id, asc),
            ).fetchone()
            if row is None:
                raise RecordStoreError(f"No position {asc} for job {job_id}")
            updated = _apply_fields(Ancestor.model_validate_json(row["full_json"]), fields)
            self._write_ancestor(conn, updated, upsert=True)
        return updated

    def list_ancestors(self, job_id: str) -> list[Ancestor]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT full_json FROM ancestors WHERE job_id = ? ORDER BY ascendancy_number",
                (job_id,),
            ).fetchall()
        return [Ancestor.model_validate_json(r["full_json"]) for r in rows]

    def delete_subtree(self, job_id: str, asc: int) -> list[int]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT ascendancy_number FROM ancestors WHERE job_id = ? AND ascendancy_number >= ?",
                (job_id, asc),
            ).fetchall()
            doomed = sorted(r["ascendancy_number"] for r in rows if is_in_subtree(asc, r["ascendancy_number"]))
            conn.executemany(
                "DELETE FROM ancestors WHERE job_id = ? AND ascendancy_number = ?",
                [(job_id, n) for n in doomed],
            )
            conn.executemany(
                "DELETE FROM search_candidates WHERE job_id = ? AND ascendancy_number = ?",
                [(job_id, n) for n in doomed],
            )
        return doomed

    # --------------------------- Blacklist ---------------------------

    def add_rejected_source_id(self, job_id: str, source_id: str, provider: str = "", reason: str = "") -> None:
        with self._get_conn() as conn:
            conn.execute(
                """
                INSERT INTO rejected_sources (job_id, source_id, provider, reason, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(job_id, source_id) DO UPDATE SET reason = excluded.reason
                """,
                (job_id, source_id, provider, reason, datetime.now(UTC).isoformat()),
            )

    def list_rejected_source_ids(self, job_id: str) -> set[str]:
        with self._get_conn() as conn:
            rows = conn.execute("SELECT source_id FROM rejected_sources WHERE job_id = ?", (job_id,)).fetchall()
        return {r["source_id"] for r in rows}

    # ----------------------- Search candidates -----------------------

    def record_search_candidate(self, record: SearchCandidateRecord) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """
                INSERT INTO search_candidates (job_id, ascendancy_number, computed_score, full_json)
                VALUES (?, ?, ?, ?)
                """,
                (record.job_id, record.ascendancy_number, record.computed_score, record.model_dump_json()),
            )

    def list_search_candidates(self, job_id: str, asc: int) -> list[SearchCandidateRecord]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """
                SELECT full_json FROM search_candidates
                WHERE job_id = ? AND ascendancy_number = ?
                ORDER BY computed_score DESC, id
                """,
                (job_id, asc),
            ).fetchall()
        return [SearchCandidateRecord.model_validate_json(r["full_json"]) for r in rows]

    def clear_search_candidates(self, job_id: str, asc: int) -> None:
        with self._get_conn() as conn:
            conn.execute(
                "DELETE FROM search_candidates WHERE job_id = ? AND ascendancy_number = ?",
                (job_id, asc),
            )

    # ----------------------------- Jobs ------------------------------

    def create_job(self, job: ResearchJob) -> ResearchJob:
        with self._get_conn() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO jobs (id, status, updated_at, full_json) VALUES (?, ?, ?, ?)",
                (job.id, job.status.value, job.updated_at.isoformat(), job.model_dump_json()),
            )
        return job

    def get_job(self, job_id: str) -> ResearchJob | None:
        with self._get_conn() as conn:
            row = conn.execute("SELECT full_json FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return ResearchJob.model_validate_json(row["full_json"]) if row else None

    def update_job(self, job_id: str, **fields: Any) -> ResearchJob:
        with self._get_conn() as conn:
            row = conn.execute("SELECT full_json FROM jobs WHERE id = ?", (job_id,)).fetchone()
            if row is None:
                raise RecordStoreError(f"Unknown job {job_id}")
            current = ResearchJob.model_validate_json(row["full_json"])
            updated = ResearchJob.model_validate({**current.model_dump(), **fields, "updated_at": datetime.now(UTC)})
            conn.execute(
                "UPDATE jobs SET status = ?, updated_at = ?, full_json = ? WHERE id = ?",
                (updated.status.value, updated.updated_at.isoformat(), updated.model_dump_json(), job_id),
            )
        return updated

    # --------------------------- Feedback ----------------------------

    def add_feedback(self, entry: FeedbackEntry) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """
                INSERT INTO feedback (job_id, surname, location, birth_year, created_at, full_json)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.job_id,
                    entry.surname.lower(),
                    entry.location,
                    entry.birth_year,
                    entry.created_at.isoformat(),
                    entry.model_dump_json(),
                ),
            )

    def list_relevant_feedback(
        self,
        surnames: Iterable[str] = (),
        locations: Iterable[str] = (),
        birth_years: Iterable[int] = (),
        limit: int = 50,
    ) -> list[FeedbackEntry]:
        with self._get_conn() as conn:
            rows = conn.execute("SELECT full_json FROM feedback ORDER BY created_at DESC LIMIT 1000").fetchall()
        entries = [FeedbackEntry.model_validate_json(r["full_json"]) for r in rows]
        return _select_feedback(entries, surnames, locations, birth_years, limit)
