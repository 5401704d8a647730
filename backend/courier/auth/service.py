"""User accounts: bcrypt password hashes in DuckDB, PyJWT bearer tokens.

The chat core treats identities as opaque strings; this service is where
they come from. A user's ``id`` (a UUID) is the identity clients join with.

Usage:
    service = UserService.get_instance()
    service.signup("alice@example.com", "s3cret")
    token, user_id = service.login("alice@example.com", "s3cret")
    claims = service.verify_token(token)
"""
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import bcrypt
import duckdb
import jwt

from courier.config import get_config
from courier.errors import InvalidCredentials, PersistenceError, UserAlreadyExists, UserNotFound

from .schemas import User

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id            VARCHAR PRIMARY KEY,
    email         VARCHAR NOT NULL UNIQUE,
    password_hash VARCHAR NOT NULL,
    created_at    TIMESTAMP NOT NULL
)
"""


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:
    """Singleton service for user signup, login and token checks.

    Args:
        db_path: DuckDB file (``:memory:`` for tests).
        secret_key: JWT signing key; defaults to the configured secret.
        algorithm: JWT algorithm; defaults to the configured one.
        token_expire_minutes: Token lifetime.
        bcrypt_rounds: bcrypt cost factor.
    """

    _instance: Optional["UserService"] = None
    _default_db_path: str = "users.duckdb"

    def __init__(
        self,
        db_path: Optional[str] = None,
        *,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        token_expire_minutes: Optional[int] = None,
        bcrypt_rounds: Optional[int] = None,
    ) -> None:
        config = get_config()
        self._db_path = db_path or self._default_db_path
        self._secret_key = secret_key or config.secrets.jwt.secret_key
        self._algorithm = algorithm or config.secrets.jwt.algorithm
        self._token_expire = timedelta(
            minutes=token_expire_minutes or config.auth.token_expire_minutes
        )
        self._bcrypt_rounds = bcrypt_rounds or config.auth.bcrypt_rounds
        self._lock = threading.Lock()
        self._conn = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_TABLE)
        logger.info("[Auth] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "UserService":
        if cls._instance is None:
            cls._instance = cls(db_path or get_config().storage.users_db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and forget the singleton (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    # -----------------------------------------------------------------------
    # Accounts
    # -----------------------------------------------------------------------

    def signup(self, email: str, password: str) -> User:
        """Create a user with a bcrypt-hashed password.

        Raises:
            UserAlreadyExists: If the email is already registered.
        """
        email = normalize_email(email)
        salt = bcrypt.gensalt(rounds=self._bcrypt_rounds)
        password_hash = bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")
        user_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).replace(tzinfo=None)

        with self._lock:
            exists = self._conn.execute(
                "SELECT 1 FROM users WHERE email = ?", [email]
            ).fetchone()
            if exists:
                raise UserAlreadyExists(f"User already exists: {email}")
            try:
                self._conn.execute(
                    "INSERT INTO users (id, email, password_hash, created_at) VALUES (?, ?, ?, ?)",
                    [user_id, email, password_hash, now],
                )
            except duckdb.Error as exc:
                logger.error("[Auth] Could not create user %s: %s", email, exc)
                raise PersistenceError(f"Could not create user: {exc}") from exc

        logger.info("[Auth] Created user %s (%s)", user_id, email)
        return User(id=user_id, email=email, createdAt=now.replace(tzinfo=timezone.utc))

    def login(self, email: str, password: str) -> Tuple[str, str]:
        """Check credentials and issue a token.

        Returns:
            Tuple of (token, user_id).

        Raises:
            UserNotFound: Unknown email.
            InvalidCredentials: Wrong password.
        """
        email = normalize_email(email)
        with self._lock:
            row = self._conn.execute(
                "SELECT id, password_hash FROM users WHERE email = ?", [email]
            ).fetchone()
        if row is None:
            raise UserNotFound(f"User not found: {email}")

        user_id, password_hash = row
        if not bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8")):
            logger.info("[Auth] Invalid password for %s", email)
            raise InvalidCredentials("Invalid password.")

        return self.issue_token(user_id), user_id

    def list_users(self) -> List[User]:
        """All users, oldest first, without password hashes.

        Raises:
            PersistenceError: If the users table could not be read.
        """
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT id, email, created_at FROM users ORDER BY created_at ASC"
                ).fetchall()
        except duckdb.Error as exc:
            logger.error("[Auth] Could not list users: %s", exc)
            raise PersistenceError(f"Could not list users: {exc}") from exc
        return [
            User(id=r[0], email=r[1], createdAt=r[2].replace(tzinfo=timezone.utc))
            for r in rows
        ]

    # -----------------------------------------------------------------------
    # Tokens
    # -----------------------------------------------------------------------

    def issue_token(self, user_id: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {"id": user_id, "iat": now, "exp": now + self._token_expire}
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify_token(self, token: str) -> dict:
        """Decode a token issued by :meth:`issue_token`.

        Raises:
            InvalidCredentials: Expired, tampered or otherwise invalid token.
        """
        try:
            return jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise InvalidCredentials("Token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidCredentials(f"Invalid token: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._conn.close()
