import pytest

from deadlock_retry import RetryPolicy


def test_defaults_when_env_unset(monkeypatch):
    for name in ("MAX_RETRIES", "WAIT_TIMES", "SIGNATURES"):
        monkeypatch.delenv("DEADLOCK_RETRY_" + name, raising=False)
    assert RetryPolicy.from_env() == RetryPolicy()


def test_reads_env(monkeypatch):
    monkeypatch.setenv("DEADLOCK_RETRY_MAX_RETRIES", "3")
    monkeypatch.setenv("DEADLOCK_RETRY_WAIT_TIMES", "0, 0.5,2")
    monkeypatch.setenv("DEADLOCK_RETRY_SIGNATURES", "Try restarting transaction|database is locked")
    p = RetryPolicy.from_env()
    assert p.max_retries == 3
    assert p.wait_times == (0.0, 0.5, 2.0)
    assert p.signatures == ("Try restarting transaction", "database is locked")


def test_custom_prefix(monkeypatch):
    monkeypatch.setenv("APP_TX_MAX_RETRIES", "1")
    assert RetryPolicy.from_env(prefix="APP_TX_").max_retries == 1


def test_malformed_value_raises(monkeypatch):
    monkeypatch.setenv("DEADLOCK_RETRY_MAX_RETRIES", "lots")
    with pytest.raises(ValueError):
        RetryPolicy.from_env()
