"""
Snowflake Repository Tests - Pass-Cut Platform
tests/test_snowflake_repository.py

Connection handling, error mapping and unit-of-work behaviour with a
mocked connector. No Snowflake account is needed.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from snowflake.connector.errors import DatabaseError, InterfaceError, ProgrammingError

from passcut.core.exceptions import (
    DatabaseConnectionException,
    DuplicateEntityException,
    ForeignKeyViolationException,
    RepositoryException,
)
from passcut.models.enumerations import ExamType
from passcut.models.exam import Notice
from passcut.models.pass_cut import PassCutRelease
from passcut.repositories.base import PopulationFilter
from passcut.repositories.snowflake_repository import SnowflakeExamDataStore


@pytest.fixture
def mock_conn():
    conn = MagicMock()
    cursor = MagicMock()
    cursor.connection = conn
    conn.cursor.return_value = cursor
    return conn


@pytest.fixture
def sf_store(mock_conn):
    with patch(
        "passcut.repositories.snowflake_repository.get_snowflake_connection",
        return_value=mock_conn,
    ) as mock_connect:
        store = SnowflakeExamDataStore()
        store.mock_connect = mock_connect
        yield store


def executed_sql(conn) -> list:
    return [c.args[0] for c in conn.cursor.return_value.execute.call_args_list]


# =============================================================================
# ROW HELPERS
# =============================================================================

class TestRowHelpers:

    def test_row_to_dict_lowercases_keys(self, sf_store):
        assert sf_store.row_to_dict({"ID": 1, "EXAM_TYPE": "PUBLIC"}) == {"id": 1, "exam_type": "PUBLIC"}
        assert sf_store.row_to_dict(None) == {}

    def test_normalize_timestamp(self, sf_store):
        naive = datetime(2026, 3, 14, 9, 0)
        assert sf_store.normalize_timestamp(naive).tzinfo == timezone.utc

        kst = datetime(2026, 3, 14, 18, 0, tzinfo=timezone(timedelta(hours=9)))
        assert sf_store.normalize_timestamp(kst) == datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc)
        assert sf_store.normalize_timestamp(None) is None


# =============================================================================
# QUERIES
# =============================================================================

class TestQueries:

    def test_get_exam_maps_uppercase_row(self, sf_store, mock_conn):
        mock_conn.cursor.return_value.fetchone.return_value = {
            "ID": 1, "NAME": "2026년 제1차 경찰공무원(순경) 채용시험", "YEAR": 2026, "ROUND": 1, "IS_ACTIVE": True,
        }
        exam = sf_store.get_exam(1)
        assert exam.id == 1
        assert exam.year == 2026
        mock_conn.close.assert_called_once()

    def test_get_exam_missing(self, sf_store, mock_conn):
        mock_conn.cursor.return_value.fetchone.return_value = None
        assert sf_store.get_exam(99) is None

    def test_submission_row_parses_variant_reasons(self, sf_store, mock_conn):
        mock_conn.cursor.return_value.fetchone.return_value = {
            "ID": 3, "USER_ID": 10, "EXAM_ID": 1, "EXAM_TYPE": "PUBLIC", "REGION_ID": 9,
            "GENDER": "MALE", "EXAM_NUMBER": "00003", "TOTAL_SCORE": Decimal("245.00"),
            "FINAL_SCORE": Decimal("245.00"), "BONUS_TYPE": "NONE", "BONUS_RATE": Decimal("0"),
            "IS_SUSPICIOUS": True, "SUSPICIOUS_REASONS": '["제출 시간 45초"]', "EDIT_COUNT": 0,
            "CREATED_AT": datetime(2026, 3, 14, 9, 0), "UPDATED_AT": datetime(2026, 3, 14, 9, 0),
        }
        submission = sf_store.get_submission(3)
        assert submission.exam_type == ExamType.PUBLIC
        assert submission.final_score == 245.0
        assert submission.suspicious_reasons == ["제출 시간 45초"]
        assert submission.created_at.tzinfo == timezone.utc

    def test_commit_outside_transaction(self, sf_store, mock_conn):
        mock_conn.cursor.return_value.rowcount = 2
        assert sf_store.mark_rescore_details_read(10) == 2
        mock_conn.commit.assert_called_once()

    def test_mark_read_with_empty_ids_skips_query(self, sf_store):
        assert sf_store.mark_rescore_details_read(10, []) == 0
        sf_store.mock_connect.assert_not_called()

    def test_population_filter_clauses(self, sf_store, mock_conn):
        mock_conn.cursor.return_value.fetchall.return_value = []
        cutoff = datetime(2026, 3, 14, tzinfo=timezone.utc)
        sf_store.population_scores(
            PopulationFilter(
                exam_id=1, exam_type=ExamType.CAREER, region_id=9,
                exclude_failed=True, created_before=cutoff,
            )
        )
        sql, params = mock_conn.cursor.return_value.execute.call_args.args
        assert "s.exam_type = %s" in sql
        assert "s.is_suspicious = FALSE" in sql
        assert "ss.is_failed" in sql
        assert "s.created_at < %s" in sql
        assert params == (1, "CAREER", 9, cutoff)

    def test_population_scores_rejects_unknown_field(self, sf_store):
        with pytest.raises(ValueError):
            sf_store.population_scores(PopulationFilter(exam_id=1), score_field="edit_count")

    def test_grouped_score_bands(self, sf_store, mock_conn):
        mock_conn.cursor.return_value.fetchall.return_value = [
            {"REGION_ID": 9, "EXAM_TYPE": "PUBLIC", "FINAL_SCORE": Decimal("250.00"), "CNT": 2},
            {"REGION_ID": 9, "EXAM_TYPE": "PUBLIC", "FINAL_SCORE": Decimal("245.00"), "CNT": 1},
        ]
        grouped = sf_store.grouped_score_bands(PopulationFilter(exam_id=1))
        assert [(b.score, b.count) for b in grouped[(9, "PUBLIC")]] == [(250.0, 2), (245.0, 1)]


# =============================================================================
# ERROR MAPPING
# =============================================================================

class TestErrorMapping:

    @pytest.mark.parametrize(
        "error,expected",
        [
            (ProgrammingError("Duplicate key value violates unique constraint"), DuplicateEntityException),
            (ProgrammingError("FOREIGN KEY constraint failed"), ForeignKeyViolationException),
            (ProgrammingError("SQL compilation error"), RepositoryException),
            (DatabaseError("warehouse suspended"), RepositoryException),
        ],
    )
    def test_query_errors(self, sf_store, mock_conn, error, expected):
        mock_conn.cursor.return_value.execute.side_effect = error
        with pytest.raises(expected):
            sf_store.get_exam(1)
        mock_conn.close.assert_called_once()

    def test_connection_failure(self, sf_store):
        sf_store.mock_connect.side_effect = InterfaceError("could not connect")
        with pytest.raises(DatabaseConnectionException):
            sf_store.get_exam(1)

    def test_executemany_failure(self, sf_store, mock_conn):
        mock_conn.cursor.return_value.executemany.side_effect = DatabaseError("boom")
        with pytest.raises(RepositoryException):
            sf_store.execute_many("INSERT INTO t VALUES (%s)", [(1,)])

    def test_duplicate_release_is_rejected_before_insert(self, sf_store, mock_conn):
        mock_conn.cursor.return_value.fetchone.return_value = {"ID": 5}
        release = PassCutRelease(exam_id=1, release_number=1, participant_count=0, created_by=1)
        with pytest.raises(DuplicateEntityException):
            sf_store.add_release(release)
        assert not any("INSERT" in sql for sql in executed_sql(mock_conn))

    def test_release_merge_matching_nothing_is_a_duplicate(self, sf_store, mock_conn):
        cursor = mock_conn.cursor.return_value
        cursor.fetchone.side_effect = [None, {"ID": 5}]
        cursor.rowcount = 0
        release = PassCutRelease(exam_id=1, release_number=1, participant_count=0, created_by=1)
        with pytest.raises(DuplicateEntityException):
            sf_store.add_release(release)
        statements = executed_sql(mock_conn)
        assert any("MERGE INTO pass_cut_releases" in sql for sql in statements)
        assert not any("INSERT INTO pass_cut_snapshots" in sql for sql in statements)

    def test_release_merge_inserts_header(self, sf_store, mock_conn):
        cursor = mock_conn.cursor.return_value
        cursor.fetchone.side_effect = [None, {"ID": 5}]
        cursor.rowcount = 1
        release = PassCutRelease(exam_id=1, release_number=2, participant_count=30, created_by=1)
        created = sf_store.add_release(release)
        assert created.id == 5
        merge_call = next(
            c for c in cursor.execute.call_args_list if "MERGE INTO pass_cut_releases" in c.args[0]
        )
        assert merge_call.args[1][:3] == (5, 1, 2)


# =============================================================================
# UNIT OF WORK
# =============================================================================

class TestUnitOfWork:

    def test_single_connection_and_commit(self, sf_store, mock_conn):
        mock_conn.cursor.return_value.fetchone.return_value = {"ID": 7}
        with sf_store.unit_of_work():
            first = sf_store.add_notice(Notice(title="1차 합격컷 발표 안내", content="본문"))
            second = sf_store.add_notice(Notice(title="2차 합격컷 발표 안내", content="본문"))

        assert first.id == second.id == 7
        assert sf_store.mock_connect.call_count == 1
        assert executed_sql(mock_conn)[0] == "BEGIN"
        mock_conn.commit.assert_called_once()
        mock_conn.close.assert_called_once()

    def test_nested_units_commit_once(self, sf_store, mock_conn):
        with sf_store.unit_of_work():
            with sf_store.unit_of_work():
                pass
            mock_conn.commit.assert_not_called()
        mock_conn.commit.assert_called_once()

    def test_rollback_on_error(self, sf_store, mock_conn):
        with pytest.raises(RuntimeError):
            with sf_store.unit_of_work():
                raise RuntimeError("boom")
        mock_conn.rollback.assert_called_once()
        mock_conn.commit.assert_not_called()
        mock_conn.close.assert_called_once()
        assert sf_store._in_transaction() is False

    def test_begin_connection_failure(self, sf_store):
        sf_store.mock_connect.side_effect = InterfaceError("could not connect")
        with pytest.raises(DatabaseConnectionException):
            with sf_store.unit_of_work():
                pass

    def test_begin_failure_closes_connection(self, sf_store, mock_conn):
        mock_conn.cursor.return_value.execute.side_effect = DatabaseError("warehouse suspended")
        with pytest.raises(RepositoryException):
            with sf_store.unit_of_work():
                pass
        mock_conn.close.assert_called_once()
        mock_conn.commit.assert_not_called()
        assert sf_store._in_transaction() is False
