from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
from typing import Iterator

from pydantic import ValidationError

from studyplan.config import settings
from studyplan.plans import StructuredPlan

logger = logging.getLogger("studyplan.db")

DEFAULT_BIG_TODO = "General"


class PlanPersistenceError(RuntimeError):
    """Raised when a plan cannot be written; the transaction has been rolled back."""


def _database_path() -> Path:
    prefix = "sqlite:///"
    if not settings.database_url.startswith(prefix):
        raise RuntimeError("Only sqlite:/// DATABASE_URL is supported.")
    return Path(settings.database_url[len(prefix) :])


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_db() -> None:
    db_path = _database_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS subjects (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                subject_name TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS plans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                subject_id INTEGER,
                subject TEXT NOT NULL,
                summary TEXT,
                difficulty TEXT,
                key_concepts_json TEXT NOT NULL,
                code_examples_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(subject_id) REFERENCES subjects(id) ON DELETE SET NULL
            );

            CREATE INDEX IF NOT EXISTS idx_plans_user_subject ON plans(user_id, subject, created_at DESC);

            CREATE TABLE IF NOT EXISTS plan_todos (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                plan_id INTEGER NOT NULL,
                position INTEGER NOT NULL,
                group_index INTEGER NOT NULL DEFAULT 0,
                big_todo TEXT NOT NULL,
                small_todo TEXT NOT NULL,
                duration_minutes INTEGER NOT NULL DEFAULT 30,
                percentage INTEGER NOT NULL DEFAULT 0,
                reference TEXT,
                is_completed INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY(plan_id) REFERENCES plans(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_plan_todos_plan ON plan_todos(plan_id, position ASC);
            """
        )
        _ensure_column(conn, "plan_todos", "group_index", "INTEGER NOT NULL DEFAULT 0")


def _ensure_column(conn: sqlite3.Connection, table_name: str, column_name: str, column_def: str) -> None:
    existing = {str(row[1]) for row in conn.execute(f"PRAGMA table_info({table_name})").fetchall()}
    if column_name not in existing:
        conn.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_def}")


@contextmanager
def get_conn() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(_database_path())
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _subject_id(conn: sqlite3.Connection, subject: str) -> int:
    row = conn.execute("SELECT id FROM subjects WHERE subject_name = ?", (subject,)).fetchone()
    if row is not None:
        return int(row["id"])
    cursor = conn.execute(
        "INSERT INTO subjects (subject_name, created_at) VALUES (?, ?)",
        (subject, _utc_now_iso()),
    )
    return int(cursor.lastrowid)


def save_plan(user_id: str, subject: str, result: dict[str, object]) -> int:
    """Persist one reconciled plan with its todos in a single transaction and return its id."""
    try:
        plan = StructuredPlan.model_validate(result)
    except ValidationError as exc:
        raise PlanPersistenceError(f"Plan for subject '{subject}' is not a valid structured plan: {exc}") from exc

    try:
        with get_conn() as conn:
            subject_id = _subject_id(conn, subject) if subject else None
            cursor = conn.execute(
                """
                INSERT INTO plans (
                    user_id, subject_id, subject, summary, difficulty,
                    key_concepts_json, code_examples_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    subject_id,
                    subject,
                    plan.summary,
                    plan.difficulty,
                    json.dumps(plan.key_concepts, ensure_ascii=False),
                    json.dumps(plan.code_examples, ensure_ascii=False),
                    _utc_now_iso(),
                ),
            )
            plan_id = int(cursor.lastrowid)

            position = 0
            for group_index, group in enumerate(plan.plan):
                big_todo = group.big_todo or DEFAULT_BIG_TODO
                for todo in group.small_todos:
                    conn.execute(
                        """
                        INSERT INTO plan_todos (
                            plan_id, position, group_index, big_todo, small_todo,
                            duration_minutes, percentage, reference, is_completed
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0)
                        """,
                        (
                            plan_id,
                            position,
                            group_index,
                            big_todo,
                            todo.todo,
                            todo.duration_minutes,
                            todo.percentage,
                            todo.reference,
                        ),
                    )
                    position += 1
    except sqlite3.Error as exc:
        logger.error(
            "plan_save_failed",
            extra={"event": "plan_save_failed", "user_id": user_id, "subject": subject, "error": str(exc)},
        )
        raise PlanPersistenceError(f"Failed to save plan for subject '{subject}': {exc}") from exc

    logger.info(
        "plan_saved",
        extra={"event": "plan_saved", "plan_id": plan_id, "subject": subject, "todo_count": position},
    )
    return plan_id


def get_plan(plan_id: int) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM plans WHERE id = ?", (plan_id,)).fetchone()
        if row is None:
            return None
        todo_rows = conn.execute(
            "SELECT * FROM plan_todos WHERE plan_id = ? ORDER BY position ASC",
            (plan_id,),
        ).fetchall()

    groups: list[dict[str, object]] = []
    last_key: tuple[int, str] | None = None
    for todo_row in todo_rows:
        # Rows written before group_index existed all carry 0 and split on title changes.
        key = (todo_row["group_index"], todo_row["big_todo"])
        if key != last_key:
            groups.append({"big_todo": todo_row["big_todo"], "small_todos": []})
            last_key = key
        groups[-1]["small_todos"].append(
            {
                "todo": todo_row["small_todo"],
                "duration_minutes": todo_row["duration_minutes"],
                "percentage": todo_row["percentage"],
                "reference": todo_row["reference"],
                "is_completed": bool(todo_row["is_completed"]),
            }
        )

    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "subject_id": row["subject_id"],
        "subject": row["subject"],
        "summary": row["summary"],
        "difficulty": row["difficulty"],
        "key_concepts": json.loads(row["key_concepts_json"]),
        "code_examples": json.loads(row["code_examples_json"]),
        "plan": groups,
        "created_at": row["created_at"],
    }
