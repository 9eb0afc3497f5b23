import hmac
from typing import Optional

import bcrypt


class PasswordHasher:
    """bcrypt hashing of member and librarian passwords."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: Optional[str], password_hash: Optional[str]) -> bool:
        # Null or non-bcrypt hashes never match.
        if password is None or not password_hash or not password_hash.startswith("$2"):
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False


class LibrarianCredentials:
    """The single librarian account, supplied by configuration.

    The password is checked against a bcrypt hash when one is configured,
    otherwise against a plaintext password. With neither, every login fails.
    """

    def __init__(
        self,
        username: str,
        password_hash: Optional[str] = None,
        password: Optional[str] = None,
        hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self.username = username
        self.password_hash = password_hash
        self.password = password
        self.hasher = hasher or PasswordHasher()

    @classmethod
    def from_settings(cls, settings, hasher: Optional[PasswordHasher] = None) -> "LibrarianCredentials":
        return cls(
            settings.librarian_username,
            password_hash=settings.librarian_password_hash,
            password=settings.librarian_password,
            hasher=hasher,
        )

    def check(self, username: str, password: str) -> bool:
        if not username or not hmac.compare_digest(username.encode("utf-8"), self.username.encode("utf-8")):
            return False
        if self.password_hash:
            return self.hasher.verify(password, self.password_hash)
        if self.password:
            return hmac.compare_digest((password or "").encode("utf-8"), self.password.encode("utf-8"))
        return False
