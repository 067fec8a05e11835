import pytest

from schemamigrate.mongodb import (
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_LOCK_TIMEOUT_INTERVAL,
    Config,
    LockTimeoutConfigConflictError,
    Locking,
    config_from_params,
    lock_timeout_interval,
    parse_boolean,
    parse_int,
)


@pytest.mark.parametrize("text", ["1", "t", "T", "TRUE", "true", "True"])
def test_parse_boolean_true_words(text):
    assert parse_boolean(text, False) is True


@pytest.mark.parametrize("text", ["0", "f", "F", "FALSE", "false", "False"])
def test_parse_boolean_false_words(text):
    assert parse_boolean(text, True) is False


@pytest.mark.parametrize("default", [True, False])
def test_parse_boolean_empty_gives_default(default):
    assert parse_boolean("", default) is default


@pytest.mark.parametrize("text", ["yes", "tRuE", "2", " true"])
def test_parse_boolean_rejects_invalid(text):
    with pytest.raises(ValueError):
        parse_boolean(text, True)


def test_parse_int_values():
    assert parse_int("42", 7) == 42
    assert parse_int("-3", 7) == -3
    assert parse_int("", 7) == 7


@pytest.mark.parametrize("text", ["abc", "1.5", " 4", "1_000"])
def test_parse_int_rejects_invalid(text):
    with pytest.raises(ValueError):
        parse_int(text, 7)


def test_lock_timeout_interval_either_spelling():
    assert lock_timeout_interval({"x-advisory-lock-timeout-interval": "30"}) == 30
    assert lock_timeout_interval({"x-advisory-lock-timout-interval": "20"}) == 20
    assert lock_timeout_interval({}) == DEFAULT_LOCK_TIMEOUT_INTERVAL


def test_lock_timeout_interval_conflict():
    params = {
        "x-advisory-lock-timeout-interval": "30",
        "x-advisory-lock-timout-interval": "20",
    }
    with pytest.raises(LockTimeoutConfigConflictError) as info:
        lock_timeout_interval(params)
    assert "were specified" in str(info.value)


def test_config_defaults():
    config = config_from_params("testdb", {})
    assert config == Config(
        database_name="testdb",
        migrations_collection="schema_migrations",
        transaction_mode=False,
        locking=Locking(
            collection_name="migrate_advisory_lock",
            timeout=DEFAULT_LOCK_TIMEOUT,
            enabled=True,
            interval=DEFAULT_LOCK_TIMEOUT_INTERVAL,
        ),
    )


def test_config_from_options():
    config = config_from_params(
        "testdb",
        {
            "x-migrations-collection": "migrations",
            "x-advisory-lock-collection": "locks",
            "x-transaction-mode": "true",
            "x-advisory-locking": "false",
            "x-advisory-lock-timeout": "30",
            "x-advisory-lock-timeout-interval": "5",
        },
    )
    assert config.migrations_collection == "migrations"
    assert config.locking.collection_name == "locks"
    assert config.transaction_mode is True
    assert config.locking.enabled is False
    assert config.locking.timeout == 30
    assert config.locking.interval == 5


def test_config_non_positive_durations_fall_back():
    config = config_from_params(
        "testdb",
        {"x-advisory-lock-timeout": "0", "x-advisory-lock-timeout-interval": "-1"},
    )
    assert config.locking.timeout == DEFAULT_LOCK_TIMEOUT
    assert config.locking.interval == DEFAULT_LOCK_TIMEOUT_INTERVAL


def test_config_requires_database_name():
    with pytest.raises(ValueError, match="no database name"):
        config_from_params("", {})


def test_config_rejects_bad_boolean():
    with pytest.raises(ValueError):
        config_from_params("testdb", {"x-transaction-mode": "maybe"})


def test_config_propagates_conflict():
    with pytest.raises(LockTimeoutConfigConflictError):
        config_from_params(
            "testdb",
            {
                "x-advisory-lock-timeout-interval": "1",
                "x-advisory-lock-timout-interval": "2",
            },
        )