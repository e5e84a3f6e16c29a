"""
SQLite persistence for jobs, tasks and versions.
"""

import json
import logging
import os
import sqlite3
import threading
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence

from adlingo.config import DATABASE_PATH
from adlingo.core.exceptions import TaskNotFoundError
from adlingo.models import (
    CorrectionInput,
    QualityAnalysis,
    TaskKind,
    TaskStatus,
    TranslationJob,
    TranslationTask,
    Version,
)

logger = logging.getLogger(__name__)

CLAIMABLE_STATUSES = (TaskStatus.PENDING, TaskStatus.FAILED)


def _new_id() -> str:
    return str(uuid.uuid4())


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


class Database:
    """
    Manages the SQLite store for translation jobs, tasks and versions.
    Thread-safe for concurrent access.

    Task status is only moved out of pending/failed through ``claim_task``,
    a single conditional UPDATE. Versions are append-only; the active flag is
    moved by ``create_version`` and ``activate_version`` inside one
    transaction so a task never has two active versions.
    """

    def __init__(self, db_path: str = DATABASE_PATH):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._local = threading.local()
        self._lock = threading.RLock()

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self._initialize_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, 'connection') or self._local.connection is None:
            connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0
            )
            connection.row_factory = sqlite3.Row
            connection.execute("PRAGMA foreign_keys = ON")
            self._local.connection = connection
        return self._local.connection

    def _initialize_schema(self):
        """Create database tables if they don't exist."""
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    language TEXT NOT NULL,
                    source TEXT NOT NULL,
                    aspect_ratio TEXT,
                    status TEXT NOT NULL,
                    error_message TEXT,
                    active_version_id TEXT,
                    result TEXT,
                    quality_score INTEGER,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS versions (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    version_number INTEGER NOT NULL,
                    artifact TEXT,
                    is_active INTEGER NOT NULL DEFAULT 0,
                    quality_score INTEGER,
                    quality_analysis JSON,
                    correction_input JSON,
                    generation_duration_seconds REAL NOT NULL DEFAULT 0,
                    error_message TEXT,
                    created_at REAL NOT NULL,
                    UNIQUE (task_id, version_number),
                    FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_tasks_job ON tasks(job_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_versions_task ON versions(task_id)")

            conn.commit()

    def _write(self, statements):
        """
        Run ``statements(cursor)`` in one transaction under the write lock.

        Returns whatever ``statements`` returns; rolls back and re-raises on error.
        """
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                result = statements(cursor)
                conn.commit()
                return result
            except Exception:
                conn.rollback()
                raise

    def _fetchone(self, query: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            cursor = self._get_connection().execute(query, tuple(params))
            return cursor.fetchone()

    def _fetchall(self, query: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            cursor = self._get_connection().execute(query, tuple(params))
            return cursor.fetchall()

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> TranslationJob:
        return TranslationJob(
            id=row['id'],
            name=row['name'],
            kind=TaskKind(row['kind']),
            status=TaskStatus(row['status']),
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> TranslationTask:
        return TranslationTask(
            id=row['id'],
            job_id=row['job_id'],
            kind=TaskKind(row['kind']),
            language=row['language'],
            source=row['source'],
            aspect_ratio=row['aspect_ratio'],
            status=TaskStatus(row['status']),
            error_message=row['error_message'],
            active_version_id=row['active_version_id'],
            result=row['result'],
            quality_score=row['quality_score'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    @staticmethod
    def _row_to_version(row: sqlite3.Row) -> Version:
        analysis = json.loads(row['quality_analysis']) if row['quality_analysis'] else None
        correction = json.loads(row['correction_input']) if row['correction_input'] else None
        return Version(
            id=row['id'],
            task_id=row['task_id'],
            version_number=row['version_number'],
            artifact=row['artifact'],
            is_active=bool(row['is_active']),
            quality_score=row['quality_score'],
            quality_analysis=QualityAnalysis.from_dict(analysis),
            correction_input=CorrectionInput.from_dict(correction),
            generation_duration_seconds=row['generation_duration_seconds'],
            error_message=row['error_message'],
            created_at=row['created_at'],
        )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, name: str, kind: TaskKind) -> TranslationJob:
        now = time.time()
        job = TranslationJob(id=_new_id(), name=name, kind=kind, created_at=now, updated_at=now)

        def statements(cursor):
            cursor.execute(
                "INSERT INTO jobs (id, name, kind, status, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                (job.id, job.name, job.kind.value, job.status.value, now, now)
            )

        self._write(statements)
        return job

    def get_job(self, job_id: str) -> Optional[TranslationJob]:
        row = self._fetchone("SELECT * FROM jobs WHERE id = ?", (job_id,))
        return self._row_to_job(row) if row else None

    def list_jobs(self, limit: int = 50) -> List[TranslationJob]:
        rows = self._fetchall("SELECT * FROM jobs ORDER BY created_at DESC LIMIT ?", (limit,))
        return [self._row_to_job(row) for row in rows]

    def update_job_status(self, job_id: str, status: TaskStatus) -> None:
        def statements(cursor):
            cursor.execute(
                "UPDATE jobs SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, time.time(), job_id)
            )
            if cursor.rowcount == 0:
                raise TaskNotFoundError(f"Job not found: {job_id}", task_id=job_id)

        self._write(statements)

    def job_status_counts(self, job_id: str) -> Dict[str, int]:
        """Task count per status for one job."""
        rows = self._fetchall(
            "SELECT status, COUNT(*) AS n FROM tasks WHERE job_id = ? GROUP BY status",
            (job_id,)
        )
        counts = {status.value: 0 for status in TaskStatus}
        for row in rows:
            counts[row['status']] = row['n']
        return counts

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, job_id: str, kind: TaskKind, language: str, source: str,
                    aspect_ratio: Optional[str] = None) -> TranslationTask:
        now = time.time()
        task = TranslationTask(
            id=_new_id(), job_id=job_id, kind=kind, language=language, source=source,
            aspect_ratio=aspect_ratio, created_at=now, updated_at=now,
        )

        def statements(cursor):
            cursor.execute("""
                INSERT INTO tasks
                (id, job_id, kind, language, source, aspect_ratio, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (task.id, job_id, kind.value, language, source, aspect_ratio,
                  task.status.value, now, now))

        self._write(statements)
        return task

    def get_task(self, task_id: str) -> Optional[TranslationTask]:
        row = self._fetchone("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return self._row_to_task(row) if row else None

    def require_task(self, task_id: str) -> TranslationTask:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}", task_id=task_id)
        return task

    def list_tasks(self, job_id: str, statuses: Optional[Sequence[TaskStatus]] = None) -> List[TranslationTask]:
        query = "SELECT * FROM tasks WHERE job_id = ?"
        params: List[Any] = [job_id]
        if statuses:
            query += f" AND status IN ({_placeholders(statuses)})"
            params.extend(s.value for s in statuses)
        query += " ORDER BY created_at, rowid"
        return [self._row_to_task(row) for row in self._fetchall(query, params)]

    def claim_task(self, task_id: str,
                   allowed: Sequence[TaskStatus] = CLAIMABLE_STATUSES) -> bool:
        """
        Atomically move a task to processing.

        The UPDATE only matches while the task is in one of ``allowed``
        statuses, so of two concurrent claims exactly one sees rowcount 1.

        Returns:
            True if this caller now owns the task
        """
        def statements(cursor):
            cursor.execute(f"""
                UPDATE tasks
                SET status = ?, error_message = NULL, updated_at = ?
                WHERE id = ? AND status IN ({_placeholders(allowed)})
            """, (TaskStatus.PROCESSING.value, time.time(), task_id, *[s.value for s in allowed]))
            return cursor.rowcount == 1

        claimed = self._write(statements)
        if not claimed:
            logger.debug(f"Claim rejected for task {task_id}")
        return claimed

    def release_task(self, task_id: str, status: TaskStatus, error_message: Optional[str] = None) -> bool:
        """Hand a claimed task back in the state it was claimed from."""
        def statements(cursor):
            cursor.execute("""
                UPDATE tasks SET status = ?, error_message = ?, updated_at = ?
                WHERE id = ? AND status = ?
            """, (status.value, error_message, time.time(), task_id, TaskStatus.PROCESSING.value))
            return cursor.rowcount == 1

        return self._write(statements)

    def count_live_tasks(self, job_id: str, stall_window: float) -> int:
        """Tasks of a job in processing whose heartbeat is inside the stall window."""
        row = self._fetchone(
            "SELECT COUNT(*) AS n FROM tasks WHERE job_id = ? AND status = ? AND updated_at >= ?",
            (job_id, TaskStatus.PROCESSING.value, time.time() - stall_window)
        )
        return row['n']

    def heartbeat(self, task_id: str) -> None:
        """Refresh updated_at so the watchdog sees the task as alive."""
        self._write(lambda cursor: cursor.execute(
            "UPDATE tasks SET updated_at = ? WHERE id = ? AND status = ?",
            (time.time(), task_id, TaskStatus.PROCESSING.value)
        ))

    def complete_task(self, task_id: str) -> None:
        def statements(cursor):
            cursor.execute(
                "UPDATE tasks SET status = ?, error_message = NULL, updated_at = ? WHERE id = ?",
                (TaskStatus.COMPLETED.value, time.time(), task_id)
            )
            if cursor.rowcount == 0:
                raise TaskNotFoundError(f"Task not found: {task_id}", task_id=task_id)

        self._write(statements)

    def fail_task(self, task_id: str, message: str) -> None:
        def statements(cursor):
            cursor.execute(
                "UPDATE tasks SET status = ?, error_message = ?, updated_at = ? WHERE id = ?",
                (TaskStatus.FAILED.value, message, time.time(), task_id)
            )
            if cursor.rowcount == 0:
                raise TaskNotFoundError(f"Task not found: {task_id}", task_id=task_id)

        self._write(statements)

    def reclaim_stalled(self, stall_window: float,
                        exclude_ids: Iterable[str] = (),
                        job_id: Optional[str] = None) -> List[str]:
        """
        Move tasks stuck in processing longer than ``stall_window`` back to pending.

        Args:
            stall_window: Seconds since the last update after which a task is abandoned
            exclude_ids: Tasks known to be in flight in this process
            job_id: Restrict to one job

        Returns:
            Ids of the reclaimed tasks
        """
        cutoff = time.time() - stall_window
        excluded = set(exclude_ids)

        def statements(cursor):
            query = "SELECT id FROM tasks WHERE status = ? AND updated_at < ?"
            params: List[Any] = [TaskStatus.PROCESSING.value, cutoff]
            if job_id:
                query += " AND job_id = ?"
                params.append(job_id)
            cursor.execute(query, params)
            candidates = [row['id'] for row in cursor.fetchall() if row['id'] not in excluded]

            reclaimed = []
            for task_id in candidates:
                cursor.execute("""
                    UPDATE tasks SET status = ?, updated_at = ?
                    WHERE id = ? AND status = ? AND updated_at < ?
                """, (TaskStatus.PENDING.value, time.time(), task_id,
                      TaskStatus.PROCESSING.value, cutoff))
                if cursor.rowcount == 1:
                    reclaimed.append(task_id)
            return reclaimed

        reclaimed = self._write(statements)
        for task_id in reclaimed:
            logger.warning(f"Reclaimed stalled task {task_id} (no update for {stall_window:.0f}s)")
        return reclaimed

    def fail_if_stale(self, task_id: str, stale_seconds: float) -> bool:
        """Force a task stuck in processing for ``stale_seconds`` to failed."""
        def statements(cursor):
            cursor.execute("""
                UPDATE tasks SET status = ?, error_message = ?, updated_at = ?
                WHERE id = ? AND status = ? AND updated_at < ?
            """, (TaskStatus.FAILED.value, "Processing timed out", time.time(), task_id,
                  TaskStatus.PROCESSING.value, time.time() - stale_seconds))
            return cursor.rowcount == 1

        reset = self._write(statements)
        if reset:
            logger.warning(f"Task {task_id} was stuck in processing, marked failed")
        return reset

    def requeue_tasks(self, job_id: str, include_stalled: bool = False,
                      stall_window: float = 0.0) -> List[str]:
        """
        Reset failed tasks of a job (and optionally stalled processing ones) to pending.

        Returns:
            Ids of the requeued tasks
        """
        cutoff = time.time() - stall_window

        def statements(cursor):
            cursor.execute(
                "SELECT id, status, updated_at FROM tasks WHERE job_id = ? AND status IN (?, ?)",
                (job_id, TaskStatus.FAILED.value, TaskStatus.PROCESSING.value)
            )
            ids = [
                row['id'] for row in cursor.fetchall()
                if row['status'] == TaskStatus.FAILED.value
                or (include_stalled and row['updated_at'] < cutoff)
            ]
            for task_id in ids:
                cursor.execute(
                    "UPDATE tasks SET status = ?, error_message = NULL, updated_at = ? WHERE id = ?",
                    (TaskStatus.PENDING.value, time.time(), task_id)
                )
            if ids:
                cursor.execute(
                    "UPDATE jobs SET status = ?, updated_at = ? WHERE id = ?",
                    (TaskStatus.PROCESSING.value, time.time(), job_id)
                )
            return ids

        return self._write(statements)

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def count_versions(self, task_id: str) -> int:
        row = self._fetchone("SELECT COUNT(*) AS n FROM versions WHERE task_id = ?", (task_id,))
        return row['n']

    def create_version(self,
                       task_id: str,
                       artifact: Optional[str],
                       activate: bool = True,
                       correction_input: Optional[CorrectionInput] = None,
                       generation_duration_seconds: float = 0.0,
                       error_message: Optional[str] = None) -> Version:
        """
        Append a version to a task.

        The version number is the next in sequence. With ``activate`` every
        prior version is deactivated and the new one marked active in the same
        transaction, and the task's active version and result follow it.
        Failed attempts are stored with ``activate=False`` and an error message.
        """
        now = time.time()
        version_id = _new_id()
        correction_json = json.dumps(correction_input.to_dict()) if correction_input else None

        def statements(cursor):
            cursor.execute(
                "SELECT COALESCE(MAX(version_number), 0) AS n FROM versions WHERE task_id = ?",
                (task_id,)
            )
            number = cursor.fetchone()['n'] + 1

            if activate:
                cursor.execute("UPDATE versions SET is_active = 0 WHERE task_id = ?", (task_id,))

            cursor.execute("""
                INSERT INTO versions
                (id, task_id, version_number, artifact, is_active, correction_input,
                 generation_duration_seconds, error_message, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (version_id, task_id, number, artifact, 1 if activate else 0, correction_json,
                  generation_duration_seconds, error_message, now))

            if activate:
                cursor.execute("""
                    UPDATE tasks
                    SET active_version_id = ?, result = ?, quality_score = NULL, updated_at = ?
                    WHERE id = ?
                """, (version_id, artifact, now, task_id))
            else:
                cursor.execute("UPDATE tasks SET updated_at = ? WHERE id = ?", (now, task_id))
            return number

        number = self._write(statements)
        return Version(
            id=version_id,
            task_id=task_id,
            version_number=number,
            artifact=artifact,
            is_active=activate,
            correction_input=correction_input,
            generation_duration_seconds=generation_duration_seconds,
            error_message=error_message,
            created_at=now,
        )

    def record_version_analysis(self, version_id: str, analysis: QualityAnalysis) -> None:
        """Attach a quality analysis to a version (and to its task when active)."""
        def statements(cursor):
            cursor.execute(
                "UPDATE versions SET quality_score = ?, quality_analysis = ? WHERE id = ?",
                (analysis.score, json.dumps(analysis.to_dict()), version_id)
            )
            cursor.execute("""
                UPDATE tasks SET quality_score = ?, updated_at = ?
                WHERE active_version_id = ?
            """, (analysis.score, time.time(), version_id))

        self._write(statements)

    def activate_version(self, task_id: str, version_id: str) -> Version:
        """Make an existing version the single active one."""
        def statements(cursor):
            cursor.execute(
                "SELECT * FROM versions WHERE id = ? AND task_id = ?",
                (version_id, task_id)
            )
            row = cursor.fetchone()
            if row is None:
                raise TaskNotFoundError(f"Version {version_id} not found for task {task_id}", task_id=task_id)
            cursor.execute("UPDATE versions SET is_active = 0 WHERE task_id = ?", (task_id,))
            cursor.execute("UPDATE versions SET is_active = 1 WHERE id = ?", (version_id,))
            cursor.execute("""
                UPDATE tasks
                SET active_version_id = ?, result = ?, quality_score = ?, updated_at = ?
                WHERE id = ?
            """, (version_id, row['artifact'], row['quality_score'], time.time(), task_id))

        self._write(statements)
        return self.get_version(version_id)

    def get_version(self, version_id: str) -> Optional[Version]:
        row = self._fetchone("SELECT * FROM versions WHERE id = ?", (version_id,))
        return self._row_to_version(row) if row else None

    def get_active_version(self, task_id: str) -> Optional[Version]:
        row = self._fetchone(
            "SELECT * FROM versions WHERE task_id = ? AND is_active = 1",
            (task_id,)
        )
        return self._row_to_version(row) if row else None

    def list_versions(self, task_id: str) -> List[Version]:
        rows = self._fetchall(
            "SELECT * FROM versions WHERE task_id = ? ORDER BY version_number",
            (task_id,)
        )
        return [self._row_to_version(row) for row in rows]

    def close(self):
        """Close the connection of the calling thread."""
        if hasattr(self._local, 'connection') and self._local.connection:
            self._local.connection.close()
            self._local.connection = None
