"""Tests for the femtologging helpers."""

from __future__ import annotations

import dataclasses as dc

import pytest

from pubsync.config import PublishSettings
from pubsync.logging import LogLevel, log_error, log_info, normalise_level


@dc.dataclass
class _RecordingLogger:
    records: list[tuple[str, str, object | None]] = dc.field(default_factory=list)

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> None:
        self.records.append((level, message, exc_info))


@pytest.mark.parametrize(
    ("requested", "expected", "used_default"),
    [
        ("debug", LogLevel.DEBUG, False),
        (" Error ", LogLevel.ERROR, False),
        (None, LogLevel.INFO, True),
        ("loud", LogLevel.INFO, True),
    ],
)
def test_normalise_level(
    requested: str | None,
    expected: LogLevel,
    used_default: bool,  # noqa: FBT001
) -> None:
    """Levels are case-insensitive and fall back to INFO."""
    assert normalise_level(requested) == (expected, used_default)


def test_warn_is_a_deprecated_alias() -> None:
    """``WARN`` maps to ``WARNING`` with a deprecation warning."""
    with pytest.warns(DeprecationWarning):
        assert normalise_level("warn") == (LogLevel.WARNING, False)


def test_settings_supply_the_default_level() -> None:
    """The configured settings level is what applications pass through."""
    settings = PublishSettings.from_env({"PUBSYNC_LOG_LEVEL": "error"})

    assert normalise_level(settings.log_level) == (LogLevel.ERROR, False)


def test_messages_are_formatted_once_emitted() -> None:
    """Templates are interpolated and exception details are forwarded."""
    logger = _RecordingLogger()
    failure = RuntimeError("boom")

    log_info(logger, "Published %s key(s).", 3)
    log_error(logger, "Publish failed: %s", failure, exc_info=failure)

    assert logger.records == [
        (LogLevel.INFO, "Published 3 key(s).", None),
        (LogLevel.ERROR, "Publish failed: boom", failure),
    ]
