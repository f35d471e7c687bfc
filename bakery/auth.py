# bakery/auth.py
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import settings
from .db import get_connection
from .schemas import RegisterRequest, Role, User

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=settings.jwt_expire_days))
    return jwt.encode({"sub": str(user_id), "exp": expire}, settings.jwt_secret, algorithm=ALGORITHM)


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        first_name=row["first_name"],
        last_name=row["last_name"] or "",
        email=row["email"],
        phone=row["phone"] or "",
        role=Role(row["role"]),
        rewards=row["rewards"] or 0,
    )


def get_user_by_id(user_id: int) -> Optional[User]:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT * FROM users WHERE id = ?", (user_id,))
    row = cur.fetchone()
    conn.close()
    return _row_to_user(row) if row else None


def create_user(payload: RegisterRequest, role: Role = Role.customer) -> User:
    """
    Registers a user. Raises HTTPException 409 if the email is taken.
    """
    conn = get_connection()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            INSERT INTO users (first_name, last_name, email, phone, password_hash, role)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                payload.first_name,
                payload.last_name,
                payload.email.lower(),
                payload.phone,
                get_password_hash(payload.password),
                role.value,
            ),
        )
    except sqlite3.IntegrityError:
        conn.close()
        raise HTTPException(status_code=409, detail="A user with this email already exists")

    user_id = cur.lastrowid
    conn.commit()
    conn.close()
    return get_user_by_id(user_id)


def authenticate(email: str, password: str) -> Optional[User]:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT * FROM users WHERE email = ?", (email.lower(),))
    row = cur.fetchone()
    conn.close()
    if not row or not verify_password(password, row["password_hash"]):
        return None
    return _row_to_user(row)


def ensure_admin(email: str, password: str) -> None:
    """Seeds an admin account if ADMIN_EMAIL/ADMIN_PASSWORD are configured."""
    if not email or not password:
        return

    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT id FROM users WHERE email = ?", (email.lower(),))
    row = cur.fetchone()
    conn.close()
    if row:
        return

    create_user(
        RegisterRequest(first_name="Admin", email=email, password=password),
        role=Role.admin,
    )
    logger.info("Admin user seeded: %s", email)


def add_rewards(user_id: int, points: int) -> None:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("UPDATE users SET rewards = rewards + ? WHERE id = ?", (points, user_id))
    conn.commit()
    conn.close()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authorized, please login",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = jwt.decode(credentials.credentials, settings.jwt_secret, algorithms=[ALGORITHM])
        subject = payload.get("sub")
        if subject is None:
            raise credentials_exception
        user_id = int(subject)
    except (JWTError, ValueError):
        raise credentials_exception

    user = get_user_by_id(user_id)
    if not user:
        raise credentials_exception
    return user


async def get_current_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != Role.admin:
        raise HTTPException(status_code=403, detail="Not authorized as an admin")
    return user
