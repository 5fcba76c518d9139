"""Runtime settings for draft/production synchronisation.

Settings are plain frozen dataclasses. ``PublishSettings.from_env`` reads
``PUBSYNC_*`` environment variables so deployments can tune behaviour without
code changes.

Examples
--------
Load settings from the environment:

>>> settings = PublishSettings.from_env({"PUBSYNC_DRAFT_SUFFIX": "_staging"})
>>> settings.naming.draft_table_name("orders")
'orders_staging'
"""

from __future__ import annotations

import dataclasses as dc
import os
import typing as typ

from pubsync.logging import LogLevel

if typ.TYPE_CHECKING:
    import collections.abc as cabc

_ENV_PREFIX = "PUBSYNC_"
_ISOLATION_LEVELS = frozenset({
    "READ COMMITTED",
    "READ UNCOMMITTED",
    "REPEATABLE READ",
    "SERIALIZABLE",
})
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


class ConfigurationError(ValueError):
    """Raised when publishing settings are invalid."""


@dc.dataclass(frozen=True, slots=True)
class DraftNaming:
    """Maps a production table name to its draft counterpart.

    Attributes
    ----------
    prefix : str
        Text prepended to the production table name.
    suffix : str
        Text appended to the production table name.
    """

    prefix: str = ""
    suffix: str = "_draft"

    def __post_init__(self) -> None:
        if not self.prefix and not self.suffix:
            msg = "Draft naming needs a prefix or a suffix."
            raise ConfigurationError(msg)

    def draft_table_name(self, table: str) -> str:
        """Return the draft table name for ``table``."""
        return f"{self.prefix}{table}{self.suffix}"

    def __call__(self, table: str) -> str:
        return self.draft_table_name(table)


@dc.dataclass(frozen=True, slots=True)
class PublishSettings:
    """Settings shared by resolve, publish and discard.

    Attributes
    ----------
    naming : DraftNaming
        Draft table naming convention.
    status_column : str
        Name of the status column present only on draft tables.
    max_keys_per_statement : int
        Upper bound on key tuples bound into one statement.
    isolation_level : str | None
        Optional isolation level for the resolve-and-apply transaction.
    timeout_seconds : float | None
        Optional deadline for one publish or discard call.
    defer_constraints : bool
        Issue ``SET CONSTRAINTS ALL DEFERRED`` before applying on PostgreSQL.
    log_level : str
        Level passed to ``configure_logging`` by applications.
    """

    naming: DraftNaming = dc.field(default_factory=DraftNaming)
    status_column: str = "publish_status"
    max_keys_per_statement: int = 500
    isolation_level: str | None = None
    timeout_seconds: float | None = None
    defer_constraints: bool = False
    log_level: str = LogLevel.INFO

    def __post_init__(self) -> None:
        if self.max_keys_per_statement < 1:
            msg = "max_keys_per_statement must be a positive integer."
            raise ConfigurationError(msg)
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            msg = "timeout_seconds must be positive when set."
            raise ConfigurationError(msg)
        if (
            self.isolation_level is not None
            and self.isolation_level not in _ISOLATION_LEVELS
        ):
            msg = f"Unsupported isolation level {self.isolation_level!r}."
            raise ConfigurationError(msg)
        if not self.status_column:
            msg = "status_column must not be empty."
            raise ConfigurationError(msg)

    @classmethod
    def from_env(
        cls,
        environ: cabc.Mapping[str, str] | None = None,
    ) -> PublishSettings:
        """Build settings from ``PUBSYNC_*`` environment variables.

        Parameters
        ----------
        environ : collections.abc.Mapping[str, str] | None, optional
            Mapping to read instead of ``os.environ``.

        Returns
        -------
        PublishSettings
            Settings with defaults for every unset variable.

        Raises
        ------
        ConfigurationError
            If a variable holds a value that cannot be parsed.
        """
        env = os.environ if environ is None else environ

        def _get(name: str) -> str | None:
            value = env.get(_ENV_PREFIX + name)
            return value.strip() if value is not None else None

        suffix = _get("DRAFT_SUFFIX")
        naming = DraftNaming(
            prefix=_get("DRAFT_PREFIX") or "",
            suffix="_draft" if suffix is None else suffix,
        )
        kwargs: dict[str, typ.Any] = {"naming": naming}
        if status_column := _get("STATUS_COLUMN"):
            kwargs["status_column"] = status_column
        if raw := _get("MAX_KEYS_PER_STATEMENT"):
            kwargs["max_keys_per_statement"] = _parse_int(
                "MAX_KEYS_PER_STATEMENT", raw
            )
        if raw := _get("ISOLATION_LEVEL"):
            kwargs["isolation_level"] = raw.upper().replace("_", " ")
        if raw := _get("TIMEOUT_SECONDS"):
            kwargs["timeout_seconds"] = _parse_float("TIMEOUT_SECONDS", raw)
        if raw := _get("DEFER_CONSTRAINTS"):
            kwargs["defer_constraints"] = _parse_bool("DEFER_CONSTRAINTS", raw)
        if raw := _get("LOG_LEVEL"):
            kwargs["log_level"] = raw
        return cls(**kwargs)


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        msg = f"{_ENV_PREFIX}{name} must be an integer, got {raw!r}."
        raise ConfigurationError(msg) from exc


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        msg = f"{_ENV_PREFIX}{name} must be a number, got {raw!r}."
        raise ConfigurationError(msg) from exc


def _parse_bool(name: str, raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    msg = f"{_ENV_PREFIX}{name} must be a boolean flag, got {raw!r}."
    raise ConfigurationError(msg)


__all__ = ("ConfigurationError", "DraftNaming", "PublishSettings")
