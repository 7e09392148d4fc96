"""Database engine configuration tests"""
import pytest

from lemons.db.session import engine_options


@pytest.mark.high
class TestEngineOptions:

    def test_sqlite_is_shareable_across_threads(self):
        assert engine_options("sqlite:///:memory:") == {"connect_args": {"check_same_thread": False}}

    def test_postgres_gets_pool_health_checks(self):
        options = engine_options("postgresql://lemons:secret@db:5432/lemons")
        assert options["pool_pre_ping"] is True
        assert options["pool_recycle"] == 1800
        assert "connect_args" not in options
