"""
Tests for the transaction timeout helper
"""
from types import SimpleNamespace

import pytest

from app.database.database import set_transaction_timeout


class RecordingSession:
    """Stand-in for a Session bound to a given dialect that records executed SQL."""

    def __init__(self, dialect_name):
        self.dialect_name = dialect_name
        self.statements = []

    def get_bind(self):
        return SimpleNamespace(dialect=SimpleNamespace(name=self.dialect_name))

    def execute(self, statement):
        self.statements.append(str(statement))


def test_sets_local_statement_timeout_on_postgresql():
    db = RecordingSession("postgresql")
    set_transaction_timeout(db, 30000)
    assert db.statements == ["SET LOCAL statement_timeout = 30000"]


@pytest.mark.parametrize("timeout_ms", [0, -5])
def test_non_positive_timeout_never_disables_server_limit(timeout_ms):
    db = RecordingSession("postgresql")
    set_transaction_timeout(db, timeout_ms)
    assert db.statements == []


def test_other_dialects_are_left_alone():
    db = RecordingSession("sqlite")
    set_transaction_timeout(db, 30000)
    assert db.statements == []
