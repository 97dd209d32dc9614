import json
import logging

from pythonjsonlogger import jsonlogger

from trustdesk.config import Settings
from trustdesk.core.logging import get_logger, log_context, setup_logging
from trustdesk.db import _engine_kwargs, session_scope
from trustdesk.services.cron import AUTO_RELEASE_JOB, auto_release_escrows_once
from trustdesk.services.scheduler_lock import is_scheduler_active, last_sweeps, set_scheduler_active

ESCROW_ID = "65f0c0ffee0000000000abcd"


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("trustdesk.services.escrow", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def _emit(handler: logging.Handler, record: logging.LogRecord) -> dict:
    assert handler.filter(record)
    return json.loads(handler.format(record))


def test_setup_logging_emits_json_with_extras():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging("debug", env="staging")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        handler = root.handlers[0]
        assert isinstance(handler.formatter, jsonlogger.JsonFormatter)

        payload = _emit(handler, _record("Escrow funded", escrow_id=ESCROW_ID))
        assert payload["message"] == "Escrow funded"
        assert payload["levelname"] == "INFO"
        assert payload["name"] == "trustdesk.services.escrow"
        assert payload["escrow_id"] == ESCROW_ID
        assert payload["service"] == "trustdesk-backend"
        assert payload["env"] == "staging"
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_log_context_tags_nested_records():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging("info")
        handler = root.handlers[0]

        with log_context(job=AUTO_RELEASE_JOB):
            with log_context(escrow_id=ESCROW_ID):
                payload = _emit(handler, _record("Escrow released"))
                assert payload["job"] == AUTO_RELEASE_JOB
                assert payload["escrow_id"] == ESCROW_ID

                # explicit extras are not overwritten by the bound context
                payload = _emit(handler, _record("Escrow released", escrow_id="other"))
                assert payload["escrow_id"] == "other"

            payload = _emit(handler, _record("Auto-release sweep done"))
            assert payload["job"] == AUTO_RELEASE_JOB
            assert "escrow_id" not in payload

        payload = _emit(handler, _record("Application startup"))
        assert "job" not in payload
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_get_logger_level_override():
    logger = get_logger("trustdesk.tests.quiet", level="warning")
    assert logger.level == logging.WARNING
    assert get_logger("trustdesk.tests.quiet") is logger


def test_scheduler_flag_roundtrip():
    assert is_scheduler_active() is False
    set_scheduler_active(True)
    try:
        assert is_scheduler_active() is True
    finally:
        set_scheduler_active(False)


def test_sweeps_are_recorded(db_session):
    auto_release_escrows_once(db_session)
    sweep = last_sweeps()[AUTO_RELEASE_JOB]
    assert sweep["processed"] == 0
    assert sweep["at"]


def test_engine_kwargs_follow_settings():
    sqlite = _engine_kwargs(Settings(database_url="sqlite:///./x.db", DB_ECHO=True))
    assert sqlite["echo"] is True
    assert sqlite["connect_args"] == {"check_same_thread": False}
    assert "pool_size" not in sqlite

    postgres = _engine_kwargs(Settings(database_url="postgresql+psycopg://db/trustdesk", DB_POOL_SIZE=12))
    assert postgres["echo"] is False
    assert postgres["pool_pre_ping"] is True
    assert postgres["pool_size"] == 12
    assert "connect_args" not in postgres


def test_session_scope_reuses_given_session(db_session):
    with session_scope(db_session) as session:
        assert session is db_session
    assert db_session.is_active
