"""femtologging helpers shared by the publishing components.

Every module obtains its logger with ``get_logger(__name__)`` and emits
percent-formatted messages through the ``log_*`` helpers, so formatting only
happens once a message is actually emitted.

Examples
--------
Configure logging from settings and emit a message:

>>> configure_logging(settings=PublishSettings.from_env())
('INFO', False)
>>> log_info(get_logger(__name__), "Published %s entity type(s).", 3)
"""

from __future__ import annotations

import enum
import typing as typ
import warnings

from femtologging import basicConfig, get_logger

if typ.TYPE_CHECKING:
    from pubsync.config import PublishSettings


class LogLevel(enum.StrEnum):
    """Levels accepted by ``configure_logging``.

    ``WARN`` is kept as a deprecated spelling of ``WARNING``.
    """

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def normalise_level(level: str | None) -> tuple[LogLevel, bool]:
    """Return the effective level and whether the default was used.

    Parameters
    ----------
    level : str | None
        Requested level in any letter case, or None.

    Returns
    -------
    tuple[LogLevel, bool]
        The level to configure and True when ``level`` was missing or
        unrecognised, in which case ``LogLevel.INFO`` is returned.
    """
    requested = level.strip().upper() if level else ""
    if requested not in LogLevel.__members__:
        return (LogLevel.INFO, True)
    normalised = LogLevel(requested)
    if normalised is LogLevel.WARN:
        warnings.warn(
            "LogLevel.WARN is deprecated; use LogLevel.WARNING instead.",
            DeprecationWarning,
            stacklevel=3,
        )
        normalised = LogLevel.WARNING
    return (normalised, False)


def configure_logging(
    level: str | None = None,
    *,
    settings: PublishSettings | None = None,
    force: bool = False,
) -> tuple[str, bool]:
    """Configure femtologging for the publishing components.

    Parameters
    ----------
    level : str | None, optional
        Explicit level; takes precedence over ``settings.log_level``.
    settings : PublishSettings | None, optional
        Settings supplying the level when ``level`` is omitted.
    force : bool, optional
        Replace handlers installed by an earlier configuration.

    Returns
    -------
    tuple[str, bool]
        The configured level and whether the default had to be used.
    """
    if level is None and settings is not None:
        level = settings.log_level
    normalised, used_default = normalise_level(level)
    basicConfig(level=normalised, force=force)
    return (normalised, used_default)


class _SupportsLog(typ.Protocol):
    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> None: ...


def _emit(
    logger: _SupportsLog,
    level: LogLevel,
    template: str,
    args: tuple[object, ...],
    exc_info: object | None = None,
) -> None:
    message = template % args if args else template
    logger.log(level, message, exc_info=exc_info, stack_info=False)


def log_debug(logger: _SupportsLog, template: str, *args: object) -> None:
    """Emit a DEBUG message."""
    _emit(logger, LogLevel.DEBUG, template, args)


def log_info(logger: _SupportsLog, template: str, *args: object) -> None:
    """Emit an INFO message."""
    _emit(logger, LogLevel.INFO, template, args)


def log_warning(logger: _SupportsLog, template: str, *args: object) -> None:
    """Emit a WARNING message."""
    _emit(logger, LogLevel.WARNING, template, args)


def log_error(
    logger: _SupportsLog,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Emit an ERROR message, optionally with exception details.

    Parameters
    ----------
    logger : _SupportsLog
        femtologging logger, usually from ``get_logger(__name__)``.
    template : str
        Percent-style format string.
    *args : object
        Values interpolated into ``template``.
    exc_info : object | None, optional
        Exception or exception tuple attached to the record.

    Raises
    ------
    TypeError
        If ``template`` and ``args`` do not line up.
    """
    _emit(logger, LogLevel.ERROR, template, args, exc_info=exc_info)


__all__ = (
    "LogLevel",
    "configure_logging",
    "get_logger",
    "log_debug",
    "log_error",
    "log_info",
    "log_warning",
    "normalise_level",
)
