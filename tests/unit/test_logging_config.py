"""Unit tests for logging setup."""

import structlog

from chatbridge.logging_config import LOG_LEVEL_ENV, setup_logging


def test_setup_logging_filters_below_level(monkeypatch, capsys):
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)

    setup_logging("warning")
    try:
        log = structlog.get_logger("chatbridge.test")
        log.info("hidden %s", 1)
        log.warning("shown %s", 2)
        err = capsys.readouterr().err
    finally:
        structlog.reset_defaults()

    assert "shown 2" in err
    assert "hidden" not in err


def test_unknown_level_falls_back_to_info(monkeypatch, capsys):
    monkeypatch.setenv(LOG_LEVEL_ENV, "chatty")

    setup_logging()
    try:
        log = structlog.get_logger("chatbridge.test")
        log.debug("quiet")
        log.info("loud")
        err = capsys.readouterr().err
    finally:
        structlog.reset_defaults()

    assert "loud" in err
    assert "quiet" not in err


def test_positional_arguments_and_context_are_rendered(monkeypatch, capsys):
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)

    setup_logging("info")
    try:
        structlog.get_logger("chatbridge.test").info("Turn completed for %s", "app:claude", project="app")
        err = capsys.readouterr().err
    finally:
        structlog.reset_defaults()

    assert "Turn completed for app:claude" in err
    assert '"project": "app"' in err
