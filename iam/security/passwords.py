"""Password hashing."""

from __future__ import annotations

import logging

import bcrypt

logger = logging.getLogger(__name__)


class PasswordHasher:
    """Bcrypt password hashing with a fresh salt on every call."""

    def __init__(self, rounds: int = 12) -> None:
        """Initialise with the bcrypt cost factor."""
        self.rounds = rounds

    def hash(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        """Return ``True`` when ``password`` matches the stored hash."""
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            logger.warning("stored password hash is malformed")
            return False
