"""
Email/password identity provider.

``IdentityProvider`` owns the user and session tables and signs session
tokens. ``AuthClient`` is the per-client handle the session gate talks to:
it tracks who is signed in on that client and tells listeners whenever that
changes.
"""

import hashlib
import hmac
import logging
import re
import secrets
import threading
from typing import Callable, Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import User, UserSession

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
PBKDF2_ITERATIONS = 260000
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class IdentityError(Exception):
    """Identity failure; the message is shown to the user as is."""


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        _, iterations, salt, expected = stored.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


class IdentityProvider:
    def __init__(self, session_factory, secret_key: str, token_ttl: int = 14 * 24 * 3600):
        self.session_factory = session_factory
        self.serializer = URLSafeTimedSerializer(secret_key, salt="crm-session")
        self.token_ttl = token_ttl

    def create_user(self, email: str, password: str) -> User:
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise IdentityError("The email address is badly formatted.")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise IdentityError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters.")

        db = self.session_factory()
        try:
            if db.query(User).filter(User.email == email).first():
                raise IdentityError("The email address is already in use by another account.")
            user = User(email=email, password_hash=hash_password(password))
            db.add(user)
            db.commit()
            db.refresh(user)
            db.expunge(user)
            logger.info("Created user %s", user.id)
            return user
        except IntegrityError:
            db.rollback()
            raise IdentityError("The email address is already in use by another account.")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to create user: %s", e)
            raise IdentityError("Unable to create account. Please try again.") from e
        finally:
            db.close()

    def authenticate(self, email: str, password: str) -> User:
        email = (email or "").strip().lower()
        db = self.session_factory()
        try:
            user = db.query(User).filter(User.email == email).first()
            if not user or not verify_password(password or "", user.password_hash):
                logger.info("Rejected sign-in for %s", email)
                raise IdentityError("Invalid email or password.")
            db.expunge(user)
            return user
        finally:
            db.close()

    def set_display_name(self, user_id: str, display_name: str) -> User:
        db = self.session_factory()
        try:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                raise IdentityError("User not found.")
            user.display_name = display_name
            db.commit()
            db.refresh(user)
            db.expunge(user)
            return user
        finally:
            db.close()

    # ----- sessions -----
    def open_session(self, user: User) -> str:
        db = self.session_factory()
        try:
            session = UserSession(user_id=user.id)
            db.add(session)
            db.commit()
            return self.serializer.dumps({"uid": user.id, "sid": session.id})
        finally:
            db.close()

    def revoke(self, token: str):
        data = self._load(token)
        if not data:
            return
        db = self.session_factory()
        try:
            session = db.query(UserSession).filter(UserSession.id == data["sid"]).first()
            if session:
                session.revoked = True
                db.commit()
        finally:
            db.close()

    def resolve(self, token: str) -> Optional[User]:
        """Return the user a live session token belongs to, or None."""
        data = self._load(token)
        if not data:
            return None
        db = self.session_factory()
        try:
            session = db.query(UserSession).filter(UserSession.id == data["sid"]).first()
            if not session or session.revoked or session.user_id != data["uid"]:
                return None
            user = db.query(User).filter(User.id == session.user_id).first()
            if user:
                db.expunge(user)
            return user
        finally:
            db.close()

    def _load(self, token):
        if not token:
            return None
        try:
            return self.serializer.loads(token, max_age=self.token_ttl)
        except SignatureExpired:
            logger.info("Session token expired")
            return None
        except BadSignature:
            return None


AuthListener = Callable[[Optional[User]], None]


class AuthClient:
    """Per-client authentication handle."""

    def __init__(self, provider: IdentityProvider, token: Optional[str] = None):
        self.provider = provider
        self.token = None
        self.current_user: Optional[User] = None
        self._listeners = []
        self._lock = threading.Lock()
        if token:
            user = provider.resolve(token)
            if user:
                self.token = token
                self.current_user = user

    def on_auth_state_changed(self, listener: AuthListener):
        """Register a listener; it is called right away with the current user."""
        with self._lock:
            self._listeners.append(listener)
        listener(self.current_user)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def create_user_with_email_and_password(self, email: str, password: str) -> User:
        user = self.provider.create_user(email, password)
        self._signed_in(user)
        return user

    def sign_in_with_email_and_password(self, email: str, password: str) -> User:
        user = self.provider.authenticate(email, password)
        self._signed_in(user)
        return user

    def update_profile(self, display_name: str) -> User:
        if self.current_user is None:
            raise IdentityError("No user is signed in.")
        self.current_user = self.provider.set_display_name(self.current_user.id, display_name)
        return self.current_user

    def sign_out(self):
        if self.token:
            self.provider.revoke(self.token)
        self.token = None
        self.current_user = None
        self._notify()

    def _signed_in(self, user):
        self.token = self.provider.open_session(user)
        self.current_user = user
        self._notify()

    def _notify(self):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(self.current_user)
