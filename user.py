"""Minimal user directory consumed by the circulation engine.

Accounts are owned by user management; circulation only needs to know whether
a user exists and is allowed to borrow.
"""
from __future__ import annotations

import logging
import sqlite3
import uuid
from typing import Optional

from database import get_db_connection, to_db_timestamp, utcnow
from errors import InternalError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

USER_ROLES = ("admin", "librarian", "member")


class User:
    def __init__(self, id: str, name: str, email: str, membership_id: str,
                 role: str = "member", is_active: bool = True) -> None:
        self.id = id
        self.name = name
        self.email = email
        self.membership_id = membership_id
        self.role = role
        self.is_active = is_active

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "membership_id": self.membership_id,
            "role": self.role,
            "is_active": self.is_active,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "User":
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            membership_id=row["membership_id"],
            role=row["role"],
            is_active=bool(row["is_active"]),
        )


class UserDirectory:
    """SQLite backed lookup of library members."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def add_user(self, name: str, email: str, role: str = "member",
                 membership_id: Optional[str] = None) -> User:
        if role not in USER_ROLES:
            raise ValidationError(f"Invalid role: {role}")
        if not name or not name.strip():
            raise ValidationError("Name cannot be empty.")
        if not email or "@" not in email:
            raise ValidationError("Invalid email address.")

        user = User(
            id=uuid.uuid4().hex,
            name=name.strip(),
            email=email.strip().lower(),
            membership_id=membership_id or f"LIB{uuid.uuid4().hex[:8].upper()}",
            role=role,
        )
        conn = get_db_connection(self.db_file)
        try:
            conn.execute(
                "INSERT INTO users (id, name, email, membership_id, role, is_active, created_at) "
                "VALUES (?, ?, ?, ?, ?, 1, ?)",
                (user.id, user.name, user.email, user.membership_id, user.role, to_db_timestamp(utcnow())),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"User with email {user.email} already exists.") from e
        except sqlite3.Error as e:
            logger.error(f"Failed to create user {user.email}: {e}")
            raise InternalError() from e
        finally:
            conn.close()
        return user

    def get_user(self, user_id: str) -> User:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to load user {user_id}: {e}")
            raise InternalError() from e
        finally:
            conn.close()
        if row is None:
            raise NotFoundError("User not found")
        return User.from_row(row)

    def set_active(self, user_id: str, is_active: bool) -> User:
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(
                "UPDATE users SET is_active = ? WHERE id = ?", (1 if is_active else 0, user_id)
            )
            updated = cursor.rowcount
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to update user {user_id}: {e}")
            raise InternalError() from e
        finally:
            conn.close()
        if updated == 0:
            raise NotFoundError("User not found")
        return self.get_user(user_id)
