"""
Health Reminder Bot — SQLite storage.

The storage collaborator behind the reminder engine: medications and their
intakes, workout groups/variants/sessions with rotation state, per-user
reminder state (snooze, "don't bug me", last notified), measurements, push
subscriptions and per-channel opt-outs.

Timestamps are stored as UTC ISO-8601 strings so that the
(entity, scheduled instant) dedup keys compare exactly.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path

from healthbot.data.models import (
    Intake,
    IntakeStatus,
    Medication,
    PushSubscription,
    ReminderState,
    RotationState,
    SessionStatus,
    SuppressionWindow,
    WorkoutExercise,
    WorkoutGroup,
    WorkoutSession,
    WorkoutVariant,
)

logger = logging.getLogger(__name__)

_SESSION_FLAGS = frozenset({"stale_reminded", "resent"})

_SCHEMA = """
CREATE TABLE IF NOT EXISTS medications (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT    NOT NULL,
    dosage          TEXT    NOT NULL DEFAULT '',
    schedule        TEXT    NOT NULL,
    start_date      TEXT,
    end_date        TEXT,
    inventory_count INTEGER,
    archived        INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS intake_log (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    medication_id INTEGER NOT NULL,
    user_id       INTEGER NOT NULL,
    scheduled_at  TEXT    NOT NULL,
    taken_at      TEXT,
    status        TEXT    NOT NULL DEFAULT 'pending',
    UNIQUE (medication_id, scheduled_at)
);

CREATE TABLE IF NOT EXISTS workout_groups (
    id                           INTEGER PRIMARY KEY AUTOINCREMENT,
    name                         TEXT    NOT NULL,
    description                  TEXT    NOT NULL DEFAULT '',
    is_rotating                  INTEGER NOT NULL DEFAULT 0,
    user_id                      INTEGER NOT NULL,
    days_of_week                 TEXT    NOT NULL,
    scheduled_time               TEXT    NOT NULL,
    notification_advance_minutes INTEGER NOT NULL DEFAULT 15,
    active                       INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS workout_variants (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    group_id       INTEGER NOT NULL,
    name           TEXT    NOT NULL,
    rotation_order INTEGER,
    description    TEXT    NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS workout_exercises (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    variant_id       INTEGER NOT NULL,
    exercise_name    TEXT    NOT NULL,
    target_sets      INTEGER NOT NULL,
    target_reps_min  INTEGER NOT NULL,
    target_reps_max  INTEGER,
    target_weight_kg REAL,
    order_index      INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS workout_sessions (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    group_id                INTEGER NOT NULL,
    variant_id              INTEGER NOT NULL,
    user_id                 INTEGER NOT NULL,
    scheduled_date          TEXT    NOT NULL,
    scheduled_time          TEXT    NOT NULL,
    status                  TEXT    NOT NULL DEFAULT 'pending',
    started_at              TEXT,
    completed_at            TEXT,
    snoozed_until           TEXT,
    snooze_count            INTEGER NOT NULL DEFAULT 0,
    notification_message_id INTEGER,
    stale_reminded          INTEGER NOT NULL DEFAULT 0,
    resent                  INTEGER NOT NULL DEFAULT 0,
    UNIQUE (group_id, scheduled_date)
);

CREATE TABLE IF NOT EXISTS workout_rotation_state (
    group_id           INTEGER PRIMARY KEY,
    current_variant_id INTEGER NOT NULL,
    last_session_id    INTEGER,
    last_advanced_at   TEXT
);

CREATE TABLE IF NOT EXISTS reminder_state (
    user_id                   INTEGER NOT NULL,
    kind                      TEXT    NOT NULL,
    enabled                   INTEGER NOT NULL DEFAULT 1,
    snoozed_until             TEXT,
    dont_remind_until         TEXT,
    last_notification_sent_at TEXT,
    preferred_reminder_hour   INTEGER,
    PRIMARY KEY (user_id, kind)
);

CREATE TABLE IF NOT EXISTS measurement_logs (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL,
    kind        TEXT    NOT NULL,
    measured_at TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS push_subscriptions (
    id       INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id  INTEGER NOT NULL,
    endpoint TEXT    NOT NULL UNIQUE,
    auth     TEXT    NOT NULL,
    p256dh   TEXT    NOT NULL,
    enabled  INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS notification_settings (
    user_id INTEGER NOT NULL,
    channel TEXT    NOT NULL,
    kind    TEXT    NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (user_id, channel, kind)
);

CREATE INDEX IF NOT EXISTS idx_intake_log_status ON intake_log(status);
CREATE INDEX IF NOT EXISTS idx_workout_sessions_status ON workout_sessions(user_id, status);
CREATE INDEX IF NOT EXISTS idx_measurement_logs_user ON measurement_logs(user_id, kind, measured_at);
"""


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


class HealthDB:
    """SQLite-backed implementation of StorePort."""

    def __init__(self, db_path: str | None = None, timeout: float = 5.0) -> None:
        if db_path is None:
            from healthbot.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        self._timeout = timeout
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        # `timeout` bounds how long a call waits on a locked database.
        conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create tables if they don't exist, and migrate schema."""
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(workout_sessions)").fetchall()
            }
            if "rotation_advanced" not in existing_cols:
                conn.execute(
                    "ALTER TABLE workout_sessions ADD COLUMN rotation_advanced INTEGER NOT NULL DEFAULT 0"
                )
        logger.debug("Health tables initialized at %s", self._db_path)

    # ------------------------------------------------------------------
    # Row mappers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_medication(row: sqlite3.Row) -> Medication:
        return Medication(
            id=row["id"],
            name=row["name"],
            dosage=row["dosage"],
            schedule=row["schedule"],
            start_date=_parse_date(row["start_date"]),
            end_date=_parse_date(row["end_date"]),
            inventory_count=row["inventory_count"],
            archived=bool(row["archived"]),
        )

    @staticmethod
    def _row_to_intake(row: sqlite3.Row) -> Intake:
        return Intake(
            id=row["id"],
            medication_id=row["medication_id"],
            user_id=row["user_id"],
            scheduled_at=_parse_ts(row["scheduled_at"]),
            status=IntakeStatus(row["status"]),
            taken_at=_parse_ts(row["taken_at"]),
        )

    @staticmethod
    def _row_to_group(row: sqlite3.Row) -> WorkoutGroup:
        return WorkoutGroup(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            user_id=row["user_id"],
            days_of_week=json.loads(row["days_of_week"]),
            scheduled_time=row["scheduled_time"],
            is_rotating=bool(row["is_rotating"]),
            notification_advance_minutes=row["notification_advance_minutes"],
            active=bool(row["active"]),
        )

    @staticmethod
    def _row_to_variant(row: sqlite3.Row) -> WorkoutVariant:
        return WorkoutVariant(
            id=row["id"],
            group_id=row["group_id"],
            name=row["name"],
            rotation_order=row["rotation_order"],
            description=row["description"],
        )

    @staticmethod
    def _row_to_exercise(row: sqlite3.Row) -> WorkoutExercise:
        return WorkoutExercise(
            id=row["id"],
            variant_id=row["variant_id"],
            exercise_name=row["exercise_name"],
            target_sets=row["target_sets"],
            target_reps_min=row["target_reps_min"],
            target_reps_max=row["target_reps_max"],
            target_weight_kg=row["target_weight_kg"],
            order_index=row["order_index"],
        )

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> WorkoutSession:
        return WorkoutSession(
            id=row["id"],
            group_id=row["group_id"],
            variant_id=row["variant_id"],
            user_id=row["user_id"],
            scheduled_date=_parse_date(row["scheduled_date"]),
            scheduled_time=row["scheduled_time"],
            status=SessionStatus(row["status"]),
            started_at=_parse_ts(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
            snoozed_until=_parse_ts(row["snoozed_until"]),
            snooze_count=row["snooze_count"],
            notification_message_id=row["notification_message_id"],
            stale_reminded=bool(row["stale_reminded"]),
            resent=bool(row["resent"]),
            rotation_advanced=bool(row["rotation_advanced"]),
        )

    # ------------------------------------------------------------------
    # Medications
    # ------------------------------------------------------------------

    def add_medication(
        self,
        name: str,
        schedule: str,
        dosage: str = "",
        start_date: date | None = None,
        end_date: date | None = None,
        inventory_count: int | None = None,
    ) -> Medication:
        """Insert a new medication. `schedule` is "HH:MM" or a JSON schedule."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO medications
                    (name, dosage, schedule, start_date, end_date, inventory_count)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    name, dosage, schedule,
                    start_date.isoformat() if start_date else None,
                    end_date.isoformat() if end_date else None,
                    inventory_count,
                ),
            )
            med_id = cursor.lastrowid

        logger.info("Medication added: #%d '%s' (%s)", med_id, name, schedule)
        return Medication(
            id=med_id,
            name=name,
            dosage=dosage,
            schedule=schedule,
            start_date=start_date,
            end_date=end_date,
            inventory_count=inventory_count,
        )

    def get_medication(self, medication_id: int) -> Medication | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM medications WHERE id = ?", (medication_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_medication(row)

    def list_active_medications(self) -> list[Medication]:
        """Return all non-archived medications."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM medications WHERE archived = 0 ORDER BY id"
            ).fetchall()
        return [self._row_to_medication(r) for r in rows]

    def archive_medication(self, medication_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE medications SET archived = 1 WHERE id = ? AND archived = 0",
                (medication_id,),
            )
        return cursor.rowcount > 0

    def set_inventory(self, medication_id: int, count: int | None) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE medications SET inventory_count = ? WHERE id = ?",
                (count, medication_id),
            )

    def decrement_inventory(self, medication_id: int, quantity: int = 1) -> None:
        """Decrease tracked inventory, never below zero. Untracked stays NULL."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE medications
                SET inventory_count = MAX(inventory_count - ?, 0)
                WHERE id = ? AND inventory_count IS NOT NULL
                """,
                (quantity, medication_id),
            )

    # ------------------------------------------------------------------
    # Intakes (medication due events)
    # ------------------------------------------------------------------

    def find_intake(self, medication_id: int, scheduled_at: datetime) -> Intake | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM intake_log WHERE medication_id = ? AND scheduled_at = ?",
                (medication_id, _ts(scheduled_at)),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_intake(row)

    def create_intake_if_absent(
        self, medication_id: int, user_id: int, scheduled_at: datetime,
    ) -> tuple[int, bool]:
        """Create the intake for (medication, scheduled_at) unless it exists.

        The lookup and the insert share one write transaction, so two ticks
        racing on the same key cannot both insert.

        Returns:
            (intake_id, created)
        """
        key = _ts(scheduled_at)
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT id FROM intake_log WHERE medication_id = ? AND scheduled_at = ?",
                (medication_id, key),
            ).fetchone()
            if row is not None:
                return row["id"], False
            cursor = conn.execute(
                """
                INSERT INTO intake_log (medication_id, user_id, scheduled_at, status)
                VALUES (?, ?, ?, ?)
                """,
                (medication_id, user_id, key, IntakeStatus.PENDING.value),
            )
            return cursor.lastrowid, True

    def get_intake(self, intake_id: int) -> Intake | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM intake_log WHERE id = ?", (intake_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_intake(row)

    def list_pending_intakes(self) -> list[Intake]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM intake_log WHERE status = ? ORDER BY scheduled_at",
                (IntakeStatus.PENDING.value,),
            ).fetchall()
        return [self._row_to_intake(r) for r in rows]

    def confirm_intake(self, intake_id: int, taken_at: datetime) -> bool:
        """Mark a pending intake as taken. Returns False if it was not pending."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE intake_log SET status = ?, taken_at = ? WHERE id = ? AND status = ?",
                (IntakeStatus.CONFIRMED.value, _ts(taken_at), intake_id, IntakeStatus.PENDING.value),
            )
        confirmed = cursor.rowcount > 0
        if confirmed:
            logger.info("Intake #%d confirmed", intake_id)
        return confirmed

    # ------------------------------------------------------------------
    # Workout groups, variants, exercises
    # ------------------------------------------------------------------

    def add_workout_group(
        self,
        name: str,
        user_id: int,
        days_of_week: list[int],
        scheduled_time: str,
        is_rotating: bool = False,
        notification_advance_minutes: int = 15,
        description: str = "",
    ) -> WorkoutGroup:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO workout_groups
                    (name, description, is_rotating, user_id, days_of_week,
                     scheduled_time, notification_advance_minutes)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name, description, int(is_rotating), user_id,
                    json.dumps(days_of_week), scheduled_time, notification_advance_minutes,
                ),
            )
            group_id = cursor.lastrowid

        logger.info("Workout group added: #%d '%s' at %s", group_id, name, scheduled_time)
        return WorkoutGroup(
            id=group_id,
            name=name,
            description=description,
            user_id=user_id,
            days_of_week=list(days_of_week),
            scheduled_time=scheduled_time,
            is_rotating=is_rotating,
            notification_advance_minutes=notification_advance_minutes,
        )

    def get_workout_group(self, group_id: int) -> WorkoutGroup | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM workout_groups WHERE id = ?", (group_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_group(row)

    def list_workout_groups(self, user_id: int, active_only: bool = True) -> list[WorkoutGroup]:
        query = "SELECT * FROM workout_groups WHERE user_id = ?"
        if active_only:
            query += " AND active = 1"
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_group(r) for r in rows]

    def add_workout_variant(
        self,
        group_id: int,
        name: str,
        rotation_order: int | None = None,
        description: str = "",
    ) -> WorkoutVariant:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO workout_variants (group_id, name, rotation_order, description)
                VALUES (?, ?, ?, ?)
                """,
                (group_id, name, rotation_order, description),
            )
            variant_id = cursor.lastrowid
            # The first variant of a rotating group starts its cycle.
            conn.execute(
                """
                INSERT OR IGNORE INTO workout_rotation_state (group_id, current_variant_id)
                SELECT id, ? FROM workout_groups WHERE id = ? AND is_rotating = 1
                """,
                (variant_id, group_id),
            )
        return WorkoutVariant(
            id=variant_id,
            group_id=group_id,
            name=name,
            rotation_order=rotation_order,
            description=description,
        )

    def list_variants(self, group_id: int) -> list[WorkoutVariant]:
        """Variants in rotation order (unordered ones last, then by id)."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM workout_variants WHERE group_id = ?
                ORDER BY rotation_order IS NULL, rotation_order, id
                """,
                (group_id,),
            ).fetchall()
        return [self._row_to_variant(r) for r in rows]

    def get_workout_variant(self, variant_id: int) -> WorkoutVariant | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM workout_variants WHERE id = ?", (variant_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_variant(row)

    def add_workout_exercise(
        self,
        variant_id: int,
        exercise_name: str,
        target_sets: int,
        target_reps_min: int,
        target_reps_max: int | None = None,
        target_weight_kg: float | None = None,
        order_index: int = 0,
    ) -> WorkoutExercise:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO workout_exercises
                    (variant_id, exercise_name, target_sets, target_reps_min,
                     target_reps_max, target_weight_kg, order_index)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    variant_id, exercise_name, target_sets, target_reps_min,
                    target_reps_max, target_weight_kg, order_index,
                ),
            )
            exercise_id = cursor.lastrowid
        return WorkoutExercise(
            id=exercise_id,
            variant_id=variant_id,
            exercise_name=exercise_name,
            target_sets=target_sets,
            target_reps_min=target_reps_min,
            target_reps_max=target_reps_max,
            target_weight_kg=target_weight_kg,
            order_index=order_index,
        )

    def list_exercises(self, variant_id: int) -> list[WorkoutExercise]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM workout_exercises WHERE variant_id = ? ORDER BY order_index, id",
                (variant_id,),
            ).fetchall()
        return [self._row_to_exercise(r) for r in rows]

    # ------------------------------------------------------------------
    # Workout sessions (workout due events)
    # ------------------------------------------------------------------

    def find_session(self, group_id: int, scheduled_date: date) -> WorkoutSession | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM workout_sessions WHERE group_id = ? AND scheduled_date = ?",
                (group_id, scheduled_date.isoformat()),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_session(row)

    def create_session_if_absent(
        self,
        group_id: int,
        variant_id: int,
        user_id: int,
        scheduled_date: date,
        scheduled_time: str,
    ) -> tuple[WorkoutSession, bool]:
        """Create the session for (group, date) unless it exists.

        Returns:
            (session, created)
        """
        day = scheduled_date.isoformat()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT * FROM workout_sessions WHERE group_id = ? AND scheduled_date = ?",
                (group_id, day),
            ).fetchone()
            if row is not None:
                return self._row_to_session(row), False
            cursor = conn.execute(
                """
                INSERT INTO workout_sessions
                    (group_id, variant_id, user_id, scheduled_date, scheduled_time, status)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (group_id, variant_id, user_id, day, scheduled_time, SessionStatus.PENDING.value),
            )
            row = conn.execute(
                "SELECT * FROM workout_sessions WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
        logger.info("Workout session #%d created for group %d on %s", row["id"], group_id, day)
        return self._row_to_session(row), True

    def get_session(self, session_id: int) -> WorkoutSession | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM workout_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_session(row)

    def list_sessions_by_status(self, user_id: int, status: SessionStatus) -> list[WorkoutSession]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM workout_sessions WHERE user_id = ? AND status = ?
                ORDER BY scheduled_date DESC, id DESC
                """,
                (user_id, SessionStatus(status).value),
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def set_session_status(
        self, session_id: int, status: SessionStatus, message_id: int | None = None,
    ) -> None:
        """Set status; also store the chat message id when one is given."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE workout_sessions
                SET status = ?,
                    notification_message_id = COALESCE(?, notification_message_id)
                WHERE id = ?
                """,
                (SessionStatus(status).value, message_id, session_id),
            )

    def set_session_flag(self, session_id: int, flag: str) -> None:
        if flag not in _SESSION_FLAGS:
            raise ValueError(f"Unknown session flag: {flag}")
        with self._connect() as conn:
            conn.execute(f"UPDATE workout_sessions SET {flag} = 1 WHERE id = ?", (session_id,))

    def start_session(self, session_id: int, started_at: datetime) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE workout_sessions SET status = ?, started_at = ?, snoozed_until = NULL
                WHERE id = ? AND status IN (?, ?)
                """,
                (
                    SessionStatus.IN_PROGRESS.value, _ts(started_at), session_id,
                    SessionStatus.PENDING.value, SessionStatus.NOTIFIED.value,
                ),
            )
        return cursor.rowcount > 0

    def complete_session(self, session_id: int, completed_at: datetime) -> bool:
        """Mark a session completed. Returns False if it already was."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE workout_sessions SET status = ?, completed_at = ?, snoozed_until = NULL
                WHERE id = ? AND status != ?
                """,
                (
                    SessionStatus.COMPLETED.value, _ts(completed_at), session_id,
                    SessionStatus.COMPLETED.value,
                ),
            )
        return cursor.rowcount > 0

    def skip_session(self, session_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE workout_sessions SET status = ?, snoozed_until = NULL
                WHERE id = ? AND status NOT IN (?, ?)
                """,
                (
                    SessionStatus.SKIPPED.value, session_id,
                    SessionStatus.COMPLETED.value, SessionStatus.SKIPPED.value,
                ),
            )
        return cursor.rowcount > 0

    def snooze_session(self, session_id: int, until: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE workout_sessions
                SET snoozed_until = ?, snooze_count = snooze_count + 1
                WHERE id = ?
                """,
                (_ts(until), session_id),
            )

    def clear_session_snooze(self, session_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE workout_sessions SET snoozed_until = NULL WHERE id = ?", (session_id,)
            )

    # ------------------------------------------------------------------
    # Rotation state
    # ------------------------------------------------------------------

    def get_rotation_state(self, group_id: int) -> RotationState | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM workout_rotation_state WHERE group_id = ?", (group_id,)
            ).fetchone()
        if row is None:
            return None
        return RotationState(
            group_id=row["group_id"],
            current_variant_id=row["current_variant_id"],
            last_session_id=row["last_session_id"],
            last_advanced_at=_parse_ts(row["last_advanced_at"]),
        )

    def initialize_rotation(self, group_id: int, variant_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO workout_rotation_state
                    (group_id, current_variant_id, last_session_id, last_advanced_at)
                VALUES (?, ?, NULL, NULL)
                """,
                (group_id, variant_id),
            )

    def advance_rotation(self, group_id: int, session_id: int, advanced_at: datetime) -> bool:
        """Move the group to its next variant on behalf of one session.

        The session's rotation_advanced flag is claimed in the same
        transaction, so a session can advance its group at most once.

        Returns:
            True if the rotation moved, False if this session already moved it.

        Raises:
            ValueError: no rotation state, or the group has no variants.
        """
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            claimed = conn.execute(
                """
                UPDATE workout_sessions SET rotation_advanced = 1
                WHERE id = ? AND group_id = ? AND rotation_advanced = 0
                """,
                (session_id, group_id),
            )
            if claimed.rowcount == 0:
                return False

            state = conn.execute(
                "SELECT current_variant_id FROM workout_rotation_state WHERE group_id = ?",
                (group_id,),
            ).fetchone()
            if state is None:
                conn.rollback()
                raise ValueError(f"No rotation state for group {group_id}")

            variant_ids = [
                r["id"] for r in conn.execute(
                    """
                    SELECT id FROM workout_variants WHERE group_id = ?
                    ORDER BY rotation_order IS NULL, rotation_order, id
                    """,
                    (group_id,),
                ).fetchall()
            ]
            if not variant_ids:
                conn.rollback()
                raise ValueError(f"No variants for group {group_id}")

            current = state["current_variant_id"]
            if current in variant_ids:
                next_id = variant_ids[(variant_ids.index(current) + 1) % len(variant_ids)]
            else:
                # Current variant was deleted: restart the cycle.
                next_id = variant_ids[0]

            conn.execute(
                """
                UPDATE workout_rotation_state
                SET current_variant_id = ?, last_session_id = ?, last_advanced_at = ?
                WHERE group_id = ?
                """,
                (next_id, session_id, _ts(advanced_at), group_id),
            )
        logger.info("Rotation for group %d advanced %d -> %d", group_id, current, next_id)
        return True

    # ------------------------------------------------------------------
    # Reminder state and suppression windows
    # ------------------------------------------------------------------

    def get_suppression_window(self, user_id: int, kind: str) -> SuppressionWindow:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT snoozed_until, dont_remind_until FROM reminder_state WHERE user_id = ? AND kind = ?",
                (user_id, kind),
            ).fetchone()
        if row is None:
            return SuppressionWindow(user_id=user_id, kind=kind)
        return SuppressionWindow(
            user_id=user_id,
            kind=kind,
            snoozed_until=_parse_ts(row["snoozed_until"]),
            dont_remind_until=_parse_ts(row["dont_remind_until"]),
        )

    def set_snooze(self, user_id: int, kind: str, until: datetime) -> None:
        """Snooze a reminder kind; replaces any earlier snooze or block."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO reminder_state (user_id, kind, snoozed_until, dont_remind_until)
                VALUES (?, ?, ?, NULL)
                ON CONFLICT(user_id, kind) DO UPDATE SET
                    snoozed_until = excluded.snoozed_until,
                    dont_remind_until = NULL
                """,
                (user_id, kind, _ts(until)),
            )
        logger.info("Reminder '%s' snoozed for user %d until %s", kind, user_id, until)

    def set_block(self, user_id: int, kind: str, until: datetime) -> None:
        """"Don't bug me" for a reminder kind; replaces any earlier snooze or block."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO reminder_state (user_id, kind, snoozed_until, dont_remind_until)
                VALUES (?, ?, NULL, ?)
                ON CONFLICT(user_id, kind) DO UPDATE SET
                    snoozed_until = NULL,
                    dont_remind_until = excluded.dont_remind_until
                """,
                (user_id, kind, _ts(until)),
            )
        logger.info("Reminder '%s' blocked for user %d until %s", kind, user_id, until)

    def get_reminder_state(self, user_id: int, kind: str) -> ReminderState:
        """Return the reminder state, or an enabled default if none is stored."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM reminder_state WHERE user_id = ? AND kind = ?",
                (user_id, kind),
            ).fetchone()
        if row is None:
            return ReminderState(user_id=user_id, kind=kind)
        return ReminderState(
            user_id=user_id,
            kind=kind,
            enabled=bool(row["enabled"]),
            last_notification_sent_at=_parse_ts(row["last_notification_sent_at"]),
            preferred_reminder_hour=row["preferred_reminder_hour"],
        )

    def set_reminder_enabled(self, user_id: int, kind: str, enabled: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO reminder_state (user_id, kind, enabled) VALUES (?, ?, ?)
                ON CONFLICT(user_id, kind) DO UPDATE SET enabled = excluded.enabled
                """,
                (user_id, kind, int(enabled)),
            )

    def set_preferred_reminder_hour(self, user_id: int, kind: str, hour: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO reminder_state (user_id, kind, preferred_reminder_hour) VALUES (?, ?, ?)
                ON CONFLICT(user_id, kind) DO UPDATE SET
                    preferred_reminder_hour = excluded.preferred_reminder_hour
                """,
                (user_id, kind, hour),
            )

    def mark_notified(self, user_id: int, kind: str, sent_at: datetime) -> None:
        """Record a confirmed delivery of a `kind` notification."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO reminder_state (user_id, kind, last_notification_sent_at) VALUES (?, ?, ?)
                ON CONFLICT(user_id, kind) DO UPDATE SET
                    last_notification_sent_at = excluded.last_notification_sent_at
                """,
                (user_id, kind, _ts(sent_at)),
            )

    def list_reminder_users(self, kind: str) -> list[int]:
        """Users with stored state for `kind` and reminders enabled."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT user_id FROM reminder_state WHERE kind = ? AND enabled = 1 ORDER BY user_id",
                (kind,),
            ).fetchall()
        return [r["user_id"] for r in rows]

    # ------------------------------------------------------------------
    # Measurements
    # ------------------------------------------------------------------

    def add_measurement(self, user_id: int, kind: str, measured_at: datetime) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO measurement_logs (user_id, kind, measured_at) VALUES (?, ?, ?)",
                (user_id, kind, _ts(measured_at)),
            )
            conn.execute(
                "INSERT OR IGNORE INTO reminder_state (user_id, kind) VALUES (?, ?)",
                (user_id, kind),
            )
        return cursor.lastrowid

    def get_last_measurement(self, user_id: int, kind: str) -> datetime | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT MAX(measured_at) AS last FROM measurement_logs WHERE user_id = ? AND kind = ?",
                (user_id, kind),
            ).fetchone()
        return _parse_ts(row["last"]) if row else None

    def list_measurements_since(self, user_id: int, kind: str, since: datetime) -> list[datetime]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT measured_at FROM measurement_logs
                WHERE user_id = ? AND kind = ? AND measured_at >= ?
                ORDER BY measured_at DESC
                """,
                (user_id, kind, _ts(since)),
            ).fetchall()
        return [_parse_ts(r["measured_at"]) for r in rows]

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def add_push_subscription(
        self, user_id: int, endpoint: str, auth: str, p256dh: str,
    ) -> PushSubscription:
        """Register (or re-enable) a push subscription endpoint."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO push_subscriptions (user_id, endpoint, auth, p256dh, enabled)
                VALUES (?, ?, ?, ?, 1)
                ON CONFLICT(endpoint) DO UPDATE SET
                    user_id = excluded.user_id,
                    auth = excluded.auth,
                    p256dh = excluded.p256dh,
                    enabled = 1
                """,
                (user_id, endpoint, auth, p256dh),
            )
            row = conn.execute(
                "SELECT id FROM push_subscriptions WHERE endpoint = ?", (endpoint,)
            ).fetchone()
        return PushSubscription(
            id=row["id"], user_id=user_id, endpoint=endpoint, auth=auth, p256dh=p256dh,
        )

    def list_push_subscriptions(self, user_id: int) -> list[PushSubscription]:
        """Enabled subscriptions for a user."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM push_subscriptions WHERE user_id = ? AND enabled = 1 ORDER BY id",
                (user_id,),
            ).fetchall()
        return [
            PushSubscription(
                id=r["id"],
                user_id=r["user_id"],
                endpoint=r["endpoint"],
                auth=r["auth"],
                p256dh=r["p256dh"],
                enabled=bool(r["enabled"]),
            )
            for r in rows
        ]

    def disable_channel_endpoint(self, endpoint: str) -> bool:
        """Stop delivering to a push endpoint the push service reported gone."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE push_subscriptions SET enabled = 0 WHERE endpoint = ? AND enabled = 1",
                (endpoint,),
            )
        disabled = cursor.rowcount > 0
        if disabled:
            logger.info("Push endpoint disabled: %s", endpoint)
        return disabled

    def set_channel_enabled(self, user_id: int, channel: str, kind: str, enabled: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO notification_settings (user_id, channel, kind, enabled)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, channel, kind) DO UPDATE SET enabled = excluded.enabled
                """,
                (user_id, channel, kind, int(enabled)),
            )

    def get_disabled_channels(self, user_id: int, kind: str) -> set[str]:
        """Channels the user opted out of for `kind`. Channels are on by default."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT channel FROM notification_settings WHERE user_id = ? AND kind = ? AND enabled = 0",
                (user_id, kind),
            ).fetchall()
        return {r["channel"] for r in rows}
