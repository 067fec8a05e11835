"""Settings of the MongoDB driver, read from connection-string options."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

DEFAULT_MIGRATIONS_COLLECTION = "schema_migrations"
DEFAULT_LOCKING_COLLECTION = "migrate_advisory_lock"
DEFAULT_LOCK_TIMEOUT = 15
DEFAULT_LOCK_TIMEOUT_INTERVAL = 10
DEFAULT_ADVISORY_LOCKING_FLAG = True
LOCK_INDEX_NAME = "lock_unique_key"
LOCK_KEY_UNIQUE_VALUE = 0
CONTEXT_WAIT_TIMEOUT = 5.0

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})
_INTEGER = re.compile(r"[+-]?[0-9]+")

_INTERVAL_KEY = "x-advisory-lock-timeout-interval"
# The first release misspelled this option; it is still accepted.
_INTERVAL_KEY_TYPO = "x-advisory-lock-timout-interval"


class LockTimeoutConfigConflictError(ValueError):
    """Both spellings of the lock timeout interval option were given."""

    def __init__(self) -> None:
        super().__init__(
            "both x-advisory-lock-timeout-interval and "
            "x-advisory-lock-timout-interval were specified"
        )


@dataclass
class Locking:
    """Advisory locking settings; timeout and interval are in seconds."""

    collection_name: str = ""
    timeout: int = 0
    enabled: bool = False
    interval: int = 0


@dataclass
class Config:
    """Settings of a MongoDB driver instance."""

    database_name: str = ""
    migrations_collection: str = ""
    transaction_mode: bool = False
    locking: Locking = field(default_factory=Locking)


def parse_boolean(url_param: str, default_value: bool) -> bool:
    """Parse a boolean option, returning the default when it is empty."""
    if not url_param:
        return default_value
    if url_param in _TRUE_WORDS:
        return True
    if url_param in _FALSE_WORDS:
        return False
    raise ValueError(f'parsing "{url_param}": invalid syntax')


def parse_int(url_param: str, default_value: int) -> int:
    """Parse an integer option, returning the default when it is empty."""
    if not url_param:
        return default_value
    if not _INTEGER.fullmatch(url_param):
        raise ValueError(f'parsing "{url_param}": invalid syntax')
    return int(url_param)


def lock_timeout_interval(params: Mapping[str, str]) -> int:
    """Return the maximum lock check interval given by either spelling."""
    value = params.get(_INTERVAL_KEY, "")
    typo_value = params.get(_INTERVAL_KEY_TYPO, "")
    if value and typo_value:
        raise LockTimeoutConfigConflictError()
    return parse_int(value or typo_value, DEFAULT_LOCK_TIMEOUT_INTERVAL)


def config_from_params(database_name: str, params: Mapping[str, str]) -> Config:
    """Build the configuration the driver runs with from URL options.

    Empty names and non-positive durations fall back to their defaults.
    """
    if not database_name:
        raise ValueError("no database name")

    transaction_mode = parse_boolean(params.get("x-transaction-mode", ""), False)
    locking_enabled = parse_boolean(
        params.get("x-advisory-locking", ""), DEFAULT_ADVISORY_LOCKING_FLAG
    )
    timeout = parse_int(params.get("x-advisory-lock-timeout", ""), DEFAULT_LOCK_TIMEOUT)
    interval = lock_timeout_interval(params)

    config = Config(
        database_name=database_name,
        migrations_collection=params.get("x-migrations-collection", ""),
        transaction_mode=transaction_mode,
        locking=Locking(
            collection_name=params.get("x-advisory-lock-collection", ""),
            timeout=timeout,
            enabled=locking_enabled,
            interval=interval,
        ),
    )
    if not config.migrations_collection:
        config.migrations_collection = DEFAULT_MIGRATIONS_COLLECTION
    if not config.locking.collection_name:
        config.locking.collection_name = DEFAULT_LOCKING_COLLECTION
    if config.locking.timeout <= 0:
        config.locking.timeout = DEFAULT_LOCK_TIMEOUT
    if config.locking.interval <= 0:
        config.locking.interval = DEFAULT_LOCK_TIMEOUT_INTERVAL
    return config