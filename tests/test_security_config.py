from decimal import Decimal

import pytest

from config import Settings
from security import LibrarianCredentials, PasswordHasher


@pytest.fixture
def hasher():
    return PasswordHasher(rounds=4)


def test_hash_and_verify(hasher):
    hashed = hasher.hash("correct horse")

    assert hashed.startswith("$2")
    assert hasher.verify("correct horse", hashed)
    assert not hasher.verify("battery staple", hashed)


@pytest.mark.parametrize("bad_hash", [None, "", "plaintext", "$2b$not-a-real-hash"])
def test_verify_rejects_missing_or_malformed_hashes(hasher, bad_hash):
    assert hasher.verify("anything", bad_hash) is False


def test_verify_rejects_missing_password(hasher):
    assert hasher.verify(None, hasher.hash("pw")) is False


def test_librarian_credentials_with_hash(hasher):
    creds = LibrarianCredentials("admin", password_hash=hasher.hash("s3cret"), hasher=hasher)

    assert creds.check("admin", "s3cret")
    assert not creds.check("admin", "wrong")
    assert not creds.check("root", "s3cret")


def test_librarian_credentials_unconfigured():
    creds = LibrarianCredentials("admin")

    assert not creds.check("admin", "")
    assert not creds.check("admin", "admin")


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///test.db")
    monkeypatch.setenv("LOAN_PERIOD_DAYS", "21")
    monkeypatch.setenv("FINE_PER_DAY", "1.5")
    monkeypatch.setenv("LIBRARIAN_USERNAME", "head")
    monkeypatch.setenv("LIBRARIAN_PASSWORD", "pw")
    monkeypatch.delenv("LIBRARIAN_PASSWORD_HASH", raising=False)

    settings = Settings.from_env()

    assert settings.database_url == "sqlite:///test.db"
    assert settings.loan_period_days == 21
    assert settings.fine_per_day == Decimal("1.50")
    assert settings.librarian_username == "head"
    assert settings.librarian_password == "pw"
    assert settings.librarian_password_hash is None


def test_settings_defaults(monkeypatch):
    for name in ("DATABASE_URL", "LOAN_PERIOD_DAYS", "FINE_PER_DAY", "LIBRARIAN_USERNAME"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.database_url == "sqlite:///library.db"
    assert settings.loan_period_days == 14
    assert settings.fine_per_day == Decimal("5.00")


@pytest.mark.parametrize("name,value", [("FINE_PER_DAY", "five"), ("LOAN_PERIOD_DAYS", "two weeks"), ("LOAN_PERIOD_DAYS", "0")])
def test_settings_reject_bad_numbers(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        Settings.from_env()
