"""Tests for the application factory."""

from __future__ import annotations

import logging
from unittest.mock import patch

from formbridge.api import main
from formbridge.core.config import Settings


def test_configure_logging_uses_settings_level() -> None:
    """The configured log level should reach logging.basicConfig."""
    settings = Settings(log_level="debug", _env_file=None)  # type: ignore[call-arg]
    with patch.object(main.logging, "basicConfig") as basic_config:
        main.configure_logging(settings)
    assert basic_config.call_args.kwargs["level"] == logging.DEBUG


def test_unknown_log_level_falls_back_to_info() -> None:
    settings = Settings(log_level="chatty", _env_file=None)  # type: ignore[call-arg]
    with patch.object(main.logging, "basicConfig") as basic_config:
        main.configure_logging(settings)
    assert basic_config.call_args.kwargs["level"] == logging.INFO


def test_create_app_configures_logging() -> None:
    with patch.object(main, "configure_logging") as configure:
        app = main.create_app()
    configure.assert_called_once()
    assert app.title == configure.call_args.args[0].app_name
