"""
Snowflake Repository - Pass-Cut Platform
passcut/repositories/snowflake_repository.py

ExamDataStore backed by Snowflake. Tables are defined in sql/schema.sql.
Snowflake standard tables do not enforce UNIQUE, so uniqueness of
submissions, rescore details and releases is checked inside the unit of
work before inserting. Release headers are additionally written with a
MERGE keyed on (exam_id, release_number); a zero row count is a duplicate.
"""

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional, Tuple

import snowflake.connector
from snowflake.connector import DictCursor
from snowflake.connector.errors import DatabaseError, InterfaceError, ProgrammingError

from passcut.core.exceptions import (
    DatabaseConnectionException,
    DuplicateEntityException,
    ForeignKeyViolationException,
    RepositoryException,
)
from passcut.models.enumerations import (
    BonusType,
    ExamType,
    Gender,
    ReleaseSource,
    SnapshotStatus,
)
from passcut.models.exam import (
    AnswerKey,
    AnswerKeyChangeLog,
    Exam,
    ExamRegionQuota,
    Notice,
    Region,
    Subject,
)
from passcut.models.pass_cut import PassCutRelease, PassCutSnapshot
from passcut.models.rescore import RescoreDetail, RescoreEvent, RescoreSummary
from passcut.models.submission import Submission, SubjectScore, UserAnswer
from passcut.repositories.base import (
    ExamDataStore,
    PopulationFilter,
    QuestionKey,
    RowKey,
    UnitOfWork,
)
from passcut.scoring.distribution import ScoreBand
from passcut.services.snowflake import get_snowflake_connection

logger = logging.getLogger(__name__)

SNAPSHOT_COLUMNS = (
    "region_id", "exam_type", "status", "status_reason", "participant_count",
    "recruit_count", "applicant_count", "target_participant_count", "coverage_rate",
    "stability_score", "average_score", "one_multiple_cut_score", "sure_min_score",
    "likely_min_score", "possible_min_score",
)


class SnowflakeUnitOfWork(UnitOfWork):
    """BEGIN / COMMIT / ROLLBACK on one connection held for the whole block."""

    def __init__(self, repository: "SnowflakeExamDataStore"):
        self.repository = repository

    def begin(self) -> None:
        local = self.repository._local
        if getattr(local, "depth", 0) == 0:
            try:
                local.conn = get_snowflake_connection()
            except InterfaceError as e:
                raise DatabaseConnectionException(f"Failed to connect to Snowflake: {e}")
            try:
                local.conn.cursor().execute("BEGIN")
            except DatabaseError as e:
                self._close()
                raise RepositoryException(f"Failed to begin transaction: {e}")
            local.depth = 0
        local.depth += 1

    def commit(self) -> None:
        local = self.repository._local
        local.depth -= 1
        if local.depth == 0:
            try:
                local.conn.commit()
            finally:
                self._close()

    def rollback(self) -> None:
        local = self.repository._local
        local.depth -= 1
        if local.depth == 0:
            try:
                local.conn.rollback()
                logger.warning("snowflake_transaction_rolled_back")
            finally:
                self._close()

    def _close(self) -> None:
        local = self.repository._local
        conn, local.conn = local.conn, None
        if conn is not None:
            conn.close()


class SnowflakeExamDataStore(ExamDataStore):
    """Snowflake-backed store with connection management and error mapping."""

    def __init__(self):
        self._local = threading.local()

    def unit_of_work(self) -> UnitOfWork:
        return SnowflakeUnitOfWork(self)

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    def _in_transaction(self) -> bool:
        return getattr(self._local, "conn", None) is not None

    @contextmanager
    def get_connection(self) -> Generator[snowflake.connector.SnowflakeConnection, None, None]:
        """Yield the unit-of-work connection, or a short-lived one outside a transaction."""
        if self._in_transaction():
            yield self._local.conn
            return
        conn = None
        try:
            conn = get_snowflake_connection()
            yield conn
        except InterfaceError as e:
            raise DatabaseConnectionException(f"Failed to connect to Snowflake: {e}")
        finally:
            if conn:
                conn.close()

    @contextmanager
    def get_cursor(self, dict_cursor: bool = True) -> Generator[Any, None, None]:
        with self.get_connection() as conn:
            cursor = conn.cursor(DictCursor) if dict_cursor else conn.cursor()
            try:
                yield cursor
            finally:
                cursor.close()

    def execute_query(
        self,
        sql: str,
        params: Optional[tuple] = None,
        fetch_one: bool = False,
        fetch_all: bool = False,
        commit: bool = False,
    ) -> Optional[Any]:
        """
        Execute a SQL query with error handling.

        Args:
            sql: SQL query string
            params: Query parameters
            fetch_one: Return single row
            fetch_all: Return all rows
            commit: Commit after execution (ignored inside a unit of work)

        Returns:
            Query results or row count
        """
        with self.get_cursor() as cursor:
            try:
                cursor.execute(sql, params or ())

                if commit and not self._in_transaction():
                    cursor.connection.commit()

                if fetch_one:
                    row = cursor.fetchone()
                    return self.row_to_dict(row) if row else None
                elif fetch_all:
                    return [self.row_to_dict(row) for row in cursor.fetchall()]

                return cursor.rowcount

            except ProgrammingError as e:
                error_msg = str(e).upper()
                if "UNIQUE" in error_msg or "DUPLICATE" in error_msg:
                    raise DuplicateEntityException(str(e))
                elif "FOREIGN KEY" in error_msg:
                    raise ForeignKeyViolationException(str(e))
                raise RepositoryException(f"Query error: {e}")
            except DatabaseError as e:
                raise RepositoryException(f"Database error: {e}")

    def execute_many(self, sql: str, rows: List[tuple]) -> int:
        if not rows:
            return 0
        with self.get_cursor(dict_cursor=False) as cursor:
            try:
                cursor.executemany(sql, rows)
                if not self._in_transaction():
                    cursor.connection.commit()
                return len(rows)
            except DatabaseError as e:
                raise RepositoryException(f"Database error: {e}")

    def next_id(self, sequence: str) -> int:
        row = self.execute_query(f"SELECT {sequence}.NEXTVAL AS id", fetch_one=True)
        return int(row["id"])

    def row_to_dict(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Convert Snowflake row (uppercase keys) to lowercase dict."""
        if row is None:
            return {}
        return {k.lower(): v for k, v in row.items()}

    def normalize_timestamp(self, dt: Optional[datetime]) -> Optional[datetime]:
        """Ensure timestamp is UTC-aware."""
        if dt is None:
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    @staticmethod
    def _json(value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value)
        return value

    def _population_where(self, population: PopulationFilter) -> Tuple[str, List[Any]]:
        clauses = ["s.exam_id = %s"]
        params: List[Any] = [population.exam_id]
        if population.exam_type is not None:
            clauses.append("s.exam_type = %s")
            params.append(population.exam_type.value)
        if population.region_id is not None:
            clauses.append("s.region_id = %s")
            params.append(population.region_id)
        if population.exclude_suspicious:
            clauses.append("s.is_suspicious = FALSE")
        if population.created_before is not None:
            clauses.append("s.created_at < %s")
            params.append(population.created_before)
        if population.created_since is not None:
            clauses.append("s.created_at >= %s")
            params.append(population.created_since)
        if population.require_subject_scores:
            clauses.append("EXISTS (SELECT 1 FROM subject_scores ss WHERE ss.submission_id = s.id)")
        if population.exclude_failed:
            clauses.append(
                "NOT EXISTS (SELECT 1 FROM subject_scores ss WHERE ss.submission_id = s.id AND ss.is_failed)"
            )
        return " AND ".join(clauses), params

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------
    def get_exam(self, exam_id: int) -> Optional[Exam]:
        row = self.execute_query(
            "SELECT id, name, year, round, is_active FROM exams WHERE id = %s",
            (exam_id,),
            fetch_one=True,
        )
        return Exam(**row) if row else None

    def get_active_exam(self) -> Optional[Exam]:
        row = self.execute_query(
            """
            SELECT id, name, year, round, is_active FROM exams
            WHERE is_active = TRUE
            ORDER BY year DESC, round DESC, id DESC
            LIMIT 1
            """,
            fetch_one=True,
        )
        return Exam(**row) if row else None

    def list_subjects(self, exam_type: ExamType) -> List[Subject]:
        rows = self.execute_query(
            """
            SELECT id, name, exam_type, question_count, point_per_question, max_score
            FROM subjects WHERE exam_type = %s ORDER BY id
            """,
            (exam_type.value,),
            fetch_all=True,
        )
        return [Subject(**row) for row in rows]

    def get_region(self, region_id: int) -> Optional[Region]:
        row = self.execute_query(
            "SELECT id, name, is_active FROM regions WHERE id = %s",
            (region_id,),
            fetch_one=True,
        )
        return Region(**row) if row else None

    def get_quota(self, exam_id: int, region_id: int) -> Optional[ExamRegionQuota]:
        row = self.execute_query(
            "SELECT * FROM exam_region_quotas WHERE exam_id = %s AND region_id = %s",
            (exam_id, region_id),
            fetch_one=True,
        )
        return ExamRegionQuota(**row) if row else None

    def list_quotas(self, exam_id: int) -> List[ExamRegionQuota]:
        rows = self.execute_query(
            "SELECT * FROM exam_region_quotas WHERE exam_id = %s ORDER BY region_id",
            (exam_id,),
            fetch_all=True,
        )
        return [ExamRegionQuota(**row) for row in rows]

    def get_answer_keys(self, exam_id: int, exam_type: ExamType) -> Dict[QuestionKey, int]:
        rows = self.execute_query(
            """
            SELECT subject_id, question_number, correct_answer FROM answer_keys
            WHERE exam_id = %s AND exam_type = %s
            """,
            (exam_id, exam_type.value),
            fetch_all=True,
        )
        return {(row["subject_id"], row["question_number"]): row["correct_answer"] for row in rows}

    def save_answer_keys(self, rows: List[AnswerKey]) -> None:
        for row in rows:
            self.execute_query(
                """
                MERGE INTO answer_keys t
                USING (SELECT %s AS exam_id, %s AS exam_type, %s AS subject_id, %s AS question_number) s
                ON t.exam_id = s.exam_id AND t.exam_type = s.exam_type
                   AND t.subject_id = s.subject_id AND t.question_number = s.question_number
                WHEN MATCHED THEN UPDATE SET correct_answer = %s
                WHEN NOT MATCHED THEN INSERT (exam_id, exam_type, subject_id, question_number, correct_answer)
                    VALUES (s.exam_id, s.exam_type, s.subject_id, s.question_number, %s)
                """,
                (
                    row.exam_id, row.exam_type.value, row.subject_id, row.question_number,
                    row.correct_answer, row.correct_answer,
                ),
                commit=True,
            )

    def add_answer_key_logs(self, logs: List[AnswerKeyChangeLog]) -> List[AnswerKeyChangeLog]:
        saved = []
        for log in logs:
            record = log.model_copy(update={"id": self.next_id("answer_key_logs_seq")})
            self.execute_query(
                """
                INSERT INTO answer_key_logs (
                    id, exam_id, exam_type, subject_id, subject_name, question_number,
                    old_answer, new_answer, changed_by, changed_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    record.id, record.exam_id, record.exam_type.value, record.subject_id,
                    record.subject_name, record.question_number, record.old_answer,
                    record.new_answer, record.changed_by, record.changed_at,
                ),
                commit=True,
            )
            saved.append(record)
        return saved

    def list_answer_key_logs(
        self,
        exam_id: int,
        exam_type: ExamType,
        since: Optional[datetime] = None,
    ) -> List[AnswerKeyChangeLog]:
        sql = "SELECT * FROM answer_key_logs WHERE exam_id = %s AND exam_type = %s"
        params: List[Any] = [exam_id, exam_type.value]
        if since is not None:
            sql += " AND changed_at > %s"
            params.append(since)
        sql += " ORDER BY changed_at, id"
        rows = self.execute_query(sql, tuple(params), fetch_all=True)
        return [
            AnswerKeyChangeLog(**{**row, "changed_at": self.normalize_timestamp(row["changed_at"])})
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------
    def _to_submission(self, row: Dict[str, Any]) -> Submission:
        return Submission(
            id=row["id"],
            user_id=row["user_id"],
            exam_id=row["exam_id"],
            exam_type=ExamType(row["exam_type"]),
            region_id=row["region_id"],
            gender=Gender(row["gender"]),
            exam_number=row["exam_number"],
            total_score=float(row["total_score"]),
            final_score=float(row["final_score"]),
            bonus_type=BonusType(row["bonus_type"]),
            bonus_rate=float(row["bonus_rate"]),
            is_suspicious=bool(row["is_suspicious"]),
            suspicious_reasons=self._json(row["suspicious_reasons"]) or [],
            edit_count=row["edit_count"],
            created_at=self.normalize_timestamp(row["created_at"]),
            updated_at=self.normalize_timestamp(row["updated_at"]),
        )

    def get_submission(self, submission_id: int) -> Optional[Submission]:
        row = self.execute_query("SELECT * FROM submissions WHERE id = %s", (submission_id,), fetch_one=True)
        return self._to_submission(row) if row else None

    def find_submission(self, user_id: int, exam_id: int, exam_type: ExamType) -> Optional[Submission]:
        row = self.execute_query(
            "SELECT * FROM submissions WHERE user_id = %s AND exam_id = %s AND exam_type = %s",
            (user_id, exam_id, exam_type.value),
            fetch_one=True,
        )
        return self._to_submission(row) if row else None

    def save_submission(
        self,
        submission: Submission,
        subject_scores: List[SubjectScore],
        user_answers: List[UserAnswer],
    ) -> Submission:
        existing = self.find_submission(submission.user_id, submission.exam_id, submission.exam_type)
        if existing is not None and existing.id != submission.id:
            raise DuplicateEntityException(
                f"Submission for user {submission.user_id}, exam {submission.exam_id}, "
                f"{submission.exam_type.value} already exists"
            )

        reasons = json.dumps(submission.suspicious_reasons, ensure_ascii=False)
        if submission.id is None:
            record = submission.model_copy(update={"id": self.next_id("submissions_seq")})
            self.execute_query(
                """
                INSERT INTO submissions (
                    id, user_id, exam_id, exam_type, region_id, gender, exam_number,
                    total_score, final_score, bonus_type, bonus_rate, is_suspicious,
                    suspicious_reasons, edit_count, created_at, updated_at
                )
                SELECT %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, PARSE_JSON(%s), %s, %s, %s
                """,
                (
                    record.id, record.user_id, record.exam_id, record.exam_type.value,
                    record.region_id, record.gender.value, record.exam_number,
                    record.total_score, record.final_score, record.bonus_type.value,
                    record.bonus_rate, record.is_suspicious, reasons, record.edit_count,
                    record.created_at, record.updated_at,
                ),
                commit=True,
            )
        else:
            record = submission
            self.execute_query(
                """
                UPDATE submissions SET
                    region_id = %s, gender = %s, exam_number = %s, total_score = %s,
                    final_score = %s, bonus_type = %s, bonus_rate = %s, is_suspicious = %s,
                    suspicious_reasons = PARSE_JSON(%s), edit_count = %s, updated_at = %s
                WHERE id = %s
                """,
                (
                    record.region_id, record.gender.value, record.exam_number, record.total_score,
                    record.final_score, record.bonus_type.value, record.bonus_rate,
                    record.is_suspicious, reasons, record.edit_count, record.updated_at, record.id,
                ),
                commit=True,
            )
            self.execute_query("DELETE FROM subject_scores WHERE submission_id = %s", (record.id,), commit=True)
            self.execute_query("DELETE FROM user_answers WHERE submission_id = %s", (record.id,), commit=True)

        self.execute_many(
            "INSERT INTO subject_scores (submission_id, subject_id, raw_score, is_failed) VALUES (%s, %s, %s, %s)",
            [(record.id, s.subject_id, s.raw_score, s.is_failed) for s in subject_scores],
        )
        self.execute_many(
            """
            INSERT INTO user_answers (submission_id, subject_id, question_number, selected_answer, is_correct)
            VALUES (%s, %s, %s, %s, %s)
            """,
            [
                (record.id, a.subject_id, a.question_number, a.selected_answer, a.is_correct)
                for a in user_answers
            ],
        )
        return record

    def get_subject_scores(self, submission_id: int) -> List[SubjectScore]:
        rows = self.execute_query(
            "SELECT * FROM subject_scores WHERE submission_id = %s ORDER BY subject_id",
            (submission_id,),
            fetch_all=True,
        )
        return [SubjectScore(**row) for row in rows]

    def get_user_answers(self, submission_id: int) -> List[UserAnswer]:
        rows = self.execute_query(
            "SELECT * FROM user_answers WHERE submission_id = %s ORDER BY subject_id, question_number",
            (submission_id,),
            fetch_all=True,
        )
        return [UserAnswer(**row) for row in rows]

    def list_submissions(self, population: PopulationFilter) -> List[Submission]:
        where, params = self._population_where(population)
        rows = self.execute_query(
            f"SELECT s.* FROM submissions s WHERE {where} ORDER BY s.id",
            tuple(params),
            fetch_all=True,
        )
        return [self._to_submission(row) for row in rows]

    def list_submission_exam_types(self, exam_id: int) -> List[ExamType]:
        rows = self.execute_query(
            "SELECT DISTINCT exam_type FROM submissions WHERE exam_id = %s",
            (exam_id,),
            fetch_all=True,
        )
        found = {row["exam_type"] for row in rows}
        return [exam_type for exam_type in ExamType if exam_type.value in found]

    # ------------------------------------------------------------------
    # Population aggregates
    # ------------------------------------------------------------------
    def population_scores(self, population: PopulationFilter, score_field: str = "final_score") -> List[float]:
        if score_field not in ("final_score", "total_score"):
            raise ValueError(f"Unsupported score field: {score_field}")
        where, params = self._population_where(population)
        rows = self.execute_query(
            f"SELECT s.{score_field} AS score FROM submissions s WHERE {where}",
            tuple(params),
            fetch_all=True,
        )
        return [float(row["score"]) for row in rows]

    def subject_population_scores(self, population: PopulationFilter, subject_id: int) -> List[float]:
        where, params = self._population_where(population)
        rows = self.execute_query(
            f"""
            SELECT sc.raw_score AS score
            FROM submissions s
            JOIN subject_scores sc ON sc.submission_id = s.id
            WHERE {where} AND sc.subject_id = %s
            """,
            tuple(params + [subject_id]),
            fetch_all=True,
        )
        return [float(row["score"]) for row in rows]

    def grouped_score_bands(self, population: PopulationFilter) -> Dict[RowKey, List[ScoreBand]]:
        where, params = self._population_where(population)
        rows = self.execute_query(
            f"""
            SELECT s.region_id, s.exam_type, s.final_score, COUNT(*) AS cnt
            FROM submissions s
            WHERE {where}
            GROUP BY s.region_id, s.exam_type, s.final_score
            ORDER BY s.region_id, s.exam_type, s.final_score DESC
            """,
            tuple(params),
            fetch_all=True,
        )
        grouped: Dict[RowKey, List[ScoreBand]] = {}
        for row in rows:
            key = (row["region_id"], row["exam_type"])
            grouped.setdefault(key, []).append(ScoreBand(score=float(row["final_score"]), count=int(row["cnt"])))
        return grouped

    def grouped_counts(self, population: PopulationFilter) -> Dict[RowKey, int]:
        where, params = self._population_where(population)
        rows = self.execute_query(
            f"""
            SELECT s.region_id, s.exam_type, COUNT(*) AS cnt
            FROM submissions s WHERE {where}
            GROUP BY s.region_id, s.exam_type
            """,
            tuple(params),
            fetch_all=True,
        )
        return {(row["region_id"], row["exam_type"]): int(row["cnt"]) for row in rows}

    def answer_tallies(self, population: PopulationFilter) -> Dict[QuestionKey, Tuple[int, int]]:
        where, params = self._population_where(population)
        rows = self.execute_query(
            f"""
            SELECT ua.subject_id, ua.question_number,
                   COUNT(*) AS answered,
                   COUNT_IF(ua.is_correct) AS correct
            FROM submissions s
            JOIN user_answers ua ON ua.submission_id = s.id
            WHERE {where}
            GROUP BY ua.subject_id, ua.question_number
            """,
            tuple(params),
            fetch_all=True,
        )
        return {
            (row["subject_id"], row["question_number"]): (int(row["answered"]), int(row["correct"]))
            for row in rows
        }

    # ------------------------------------------------------------------
    # Rescoring
    # ------------------------------------------------------------------
    def _to_event(self, row: Dict[str, Any]) -> RescoreEvent:
        return RescoreEvent(
            id=row["id"],
            exam_id=row["exam_id"],
            exam_type=ExamType(row["exam_type"]),
            admin_id=row["admin_id"],
            reason=row["reason"],
            summary=RescoreSummary(**(self._json(row["summary"]) or {})),
            created_at=self.normalize_timestamp(row["created_at"]),
        )

    def add_rescore_event(self, event: RescoreEvent) -> RescoreEvent:
        record = event.model_copy(update={"id": self.next_id("rescore_events_seq")})
        self.execute_query(
            """
            INSERT INTO rescore_events (id, exam_id, exam_type, admin_id, reason, summary, created_at)
            SELECT %s, %s, %s, %s, %s, PARSE_JSON(%s), %s
            """,
            (
                record.id, record.exam_id, record.exam_type.value, record.admin_id,
                record.reason, record.summary.model_dump_json(), record.created_at,
            ),
            commit=True,
        )
        return record

    def get_rescore_event(self, event_id: int) -> Optional[RescoreEvent]:
        row = self.execute_query("SELECT * FROM rescore_events WHERE id = %s", (event_id,), fetch_one=True)
        return self._to_event(row) if row else None

    def latest_rescore_event(self, exam_id: int, exam_type: ExamType) -> Optional[RescoreEvent]:
        row = self.execute_query(
            """
            SELECT * FROM rescore_events WHERE exam_id = %s AND exam_type = %s
            ORDER BY created_at DESC, id DESC LIMIT 1
            """,
            (exam_id, exam_type.value),
            fetch_one=True,
        )
        return self._to_event(row) if row else None

    def add_rescore_details(self, details: List[RescoreDetail]) -> List[RescoreDetail]:
        saved = []
        for detail in details:
            duplicate = self.execute_query(
                "SELECT id FROM rescore_details WHERE rescore_event_id = %s AND submission_id = %s",
                (detail.rescore_event_id, detail.submission_id),
                fetch_one=True,
            )
            if duplicate:
                raise DuplicateEntityException(
                    f"Rescore detail for event {detail.rescore_event_id}, submission {detail.submission_id}"
                )
            record = detail.model_copy(update={"id": self.next_id("rescore_details_seq")})
            self.execute_query(
                """
                INSERT INTO rescore_details (
                    id, rescore_event_id, submission_id, user_id, old_total_score, new_total_score,
                    old_final_score, new_final_score, old_rank, new_rank, score_delta, subject_changes,
                    is_read, created_at
                )
                SELECT %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, PARSE_JSON(%s), %s, %s
                """,
                (
                    record.id, record.rescore_event_id, record.submission_id, record.user_id,
                    record.old_total_score, record.new_total_score, record.old_final_score,
                    record.new_final_score, record.old_rank, record.new_rank, record.score_delta,
                    json.dumps([c.model_dump() for c in record.subject_changes], ensure_ascii=False),
                    record.is_read, record.created_at,
                ),
                commit=True,
            )
            saved.append(record)
        return saved

    def list_rescore_details(self, user_id: int, limit: int = 20, unread_only: bool = False) -> List[RescoreDetail]:
        unread_clause = " AND is_read = FALSE" if unread_only else ""
        rows = self.execute_query(
            f"""
            SELECT * FROM rescore_details WHERE user_id = %s{unread_clause}
            ORDER BY created_at DESC, id DESC LIMIT %s
            """,
            (user_id, limit),
            fetch_all=True,
        )
        return [
            RescoreDetail(
                **{
                    **row,
                    "subject_changes": self._json(row.get("subject_changes")) or [],
                    "created_at": self.normalize_timestamp(row["created_at"]),
                }
            )
            for row in rows
        ]

    def count_unread_rescore_details(self, user_id: int) -> int:
        row = self.execute_query(
            "SELECT COUNT(*) AS cnt FROM rescore_details WHERE user_id = %s AND is_read = FALSE",
            (user_id,),
            fetch_one=True,
        )
        return int(row["cnt"]) if row else 0

    def mark_rescore_details_read(self, user_id: int, detail_ids: Optional[List[int]] = None) -> int:
        sql = "UPDATE rescore_details SET is_read = TRUE WHERE user_id = %s AND is_read = FALSE"
        params: List[Any] = [user_id]
        if detail_ids is not None:
            if not detail_ids:
                return 0
            sql += f" AND id IN ({', '.join(['%s'] * len(detail_ids))})"
            params.extend(detail_ids)
        return self.execute_query(sql, tuple(params), commit=True)

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------
    def _load_release(self, row: Dict[str, Any]) -> PassCutRelease:
        snapshots = self.execute_query(
            "SELECT * FROM pass_cut_snapshots WHERE release_id = %s ORDER BY region_id, exam_type",
            (row["id"],),
            fetch_all=True,
        )
        return PassCutRelease(
            id=row["id"],
            exam_id=row["exam_id"],
            release_number=row["release_number"],
            participant_count=row["participant_count"],
            source=ReleaseSource(row["source"]),
            memo=row["memo"],
            created_by=row["created_by"],
            released_at=self.normalize_timestamp(row["released_at"]),
            snapshots=[
                PassCutSnapshot(
                    **{
                        **snapshot,
                        "exam_type": ExamType(snapshot["exam_type"]),
                        "status": SnapshotStatus(snapshot["status"]),
                    }
                )
                for snapshot in snapshots
            ],
        )

    def get_release(self, exam_id: int, release_number: int) -> Optional[PassCutRelease]:
        row = self.execute_query(
            "SELECT * FROM pass_cut_releases WHERE exam_id = %s AND release_number = %s",
            (exam_id, release_number),
            fetch_one=True,
        )
        return self._load_release(row) if row else None

    def list_releases(self, exam_id: int) -> List[PassCutRelease]:
        rows = self.execute_query(
            "SELECT * FROM pass_cut_releases WHERE exam_id = %s ORDER BY release_number, id",
            (exam_id,),
            fetch_all=True,
        )
        return [self._load_release(row) for row in rows]

    def add_release(self, release: PassCutRelease) -> PassCutRelease:
        duplicate = self.execute_query(
            "SELECT id FROM pass_cut_releases WHERE exam_id = %s AND release_number = %s",
            (release.exam_id, release.release_number),
            fetch_one=True,
        )
        if duplicate:
            raise DuplicateEntityException(
                f"Release {release.release_number} of exam {release.exam_id} already exists"
            )
        keys = [(s.region_id, s.exam_type) for s in release.snapshots]
        if len(set(keys)) != len(keys):
            raise DuplicateEntityException("Release contains duplicate (region, exam type) snapshots")

        # MERGE keyed on (exam_id, release_number); zero rows means another create won
        release_id = self.next_id("pass_cut_releases_seq")
        inserted = self.execute_query(
            """
            MERGE INTO pass_cut_releases t
            USING (
                SELECT %s AS id, %s AS exam_id, %s AS release_number, %s AS participant_count,
                       %s AS source, %s AS memo, %s AS created_by, %s AS released_at
            ) s
            ON t.exam_id = s.exam_id AND t.release_number = s.release_number
            WHEN NOT MATCHED THEN INSERT (
                id, exam_id, release_number, participant_count, source, memo, created_by, released_at
            ) VALUES (
                s.id, s.exam_id, s.release_number, s.participant_count,
                s.source, s.memo, s.created_by, s.released_at
            )
            """,
            (
                release_id, release.exam_id, release.release_number, release.participant_count,
                release.source.value, release.memo, release.created_by, release.released_at,
            ),
            commit=True,
        )
        if not inserted:
            raise DuplicateEntityException(
                f"Release {release.release_number} of exam {release.exam_id} already exists"
            )

        snapshots = []
        for snapshot in release.snapshots:
            record = snapshot.model_copy(
                update={"id": self.next_id("pass_cut_snapshots_seq"), "release_id": release_id}
            )
            values = record.model_dump(include=set(SNAPSHOT_COLUMNS), mode="json")
            self.execute_query(
                f"""
                INSERT INTO pass_cut_snapshots (id, release_id, {', '.join(SNAPSHOT_COLUMNS)})
                VALUES (%s, %s, {', '.join(['%s'] * len(SNAPSHOT_COLUMNS))})
                """,
                (record.id, release_id, *[values[column] for column in SNAPSHOT_COLUMNS]),
                commit=True,
            )
            snapshots.append(record)

        return release.model_copy(update={"id": release_id, "snapshots": snapshots})

    def add_notice(self, notice: Notice) -> Notice:
        record = notice.model_copy(update={"id": self.next_id("notices_seq")})
        self.execute_query(
            """
            INSERT INTO notices (id, title, content, priority, is_active, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (record.id, record.title, record.content, record.priority, record.is_active, record.created_at),
            commit=True,
        )
        return record

    def list_notices(self) -> List[Notice]:
        rows = self.execute_query(
            "SELECT * FROM notices ORDER BY priority DESC, id DESC",
            fetch_all=True,
        )
        return [Notice(**{**row, "created_at": self.normalize_timestamp(row["created_at"])}) for row in rows]
