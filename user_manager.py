"""
User Authentication & Management
Handles magic-link sign-in, user records and Google Calendar connection state
"""

import hashlib
import hmac
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from database import Database, from_iso, to_iso, utcnow
from validations import normalize_email

logger = logging.getLogger(__name__)

MAGIC_LINK_TTL = timedelta(hours=24)


class UserManager:
    """Manages user authentication and accounts"""

    def __init__(self, db: Database):
        """Initialize UserManager with database connection"""
        self.db = db

    # ==================== MAGIC LINK TOKENS ====================

    @staticmethod
    def hash_token(token: str) -> str:
        """SHA-256 of a magic-link token; only the hash is persisted."""
        return hashlib.sha256(token.encode('utf-8')).hexdigest()

    def create_magic_link_token(self, email: str) -> Tuple[str, str]:
        """
        Issue a one-time sign-in token for an email address.

        Returns:
            (normalized_email, raw_token)

        Raises:
            ValueError: if the email address is invalid
        """
        normalized = normalize_email(email)
        if not normalized:
            raise ValueError("Valid email is required")

        now = utcnow()
        self.db.delete_expired_tokens(to_iso(now))

        token = secrets.token_urlsafe(32)
        self.db.create_verification_token(
            normalized, self.hash_token(token), to_iso(now + MAGIC_LINK_TTL)
        )
        logger.info("[OK] Magic link token issued for %s", normalized)
        return normalized, token

    def verify_magic_link(self, email: str, token: str) -> Optional[Dict[str, Any]]:
        """
        Consume a magic-link token and return the signed-in user.

        The token is single use. The user is created on first sign-in and
        the email is marked verified. Returns None for unknown or expired tokens.
        """
        normalized = normalize_email(email)
        if not normalized or not token:
            return None

        candidate = self.hash_token(token)
        now = utcnow()
        for row in self.db.get_verification_tokens(normalized):
            if not hmac.compare_digest(row['token_hash'], candidate):
                continue
            # A concurrent request may have consumed it first
            if not self.db.delete_verification_token(row['id']):
                return None
            if from_iso(row['expires_at']) < now:
                logger.info("[!] Expired magic link used for %s", normalized)
                return None
            user = self.get_or_create_user(normalized)
            self.db.update_user(user['id'], email_verified=to_iso(now))
            logger.info("[OK] User signed in: %s (ID: %s)", normalized, user['id'])
            return self.db.get_user(user['id'])

        return None

    # ==================== USER MANAGEMENT ====================

    def get_or_create_user(self, email: str) -> Dict[str, Any]:
        user = self.db.get_user_by_email(email)
        if user:
            return user
        user_id = self.db.create_user(email)
        logger.info("[OK] User registered: %s (ID: %s)", email, user_id)
        return self.db.get_user(user_id)

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Get user by ID"""
        return self.db.get_user(user_id)

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        normalized = normalize_email(email)
        return self.db.get_user_by_email(normalized) if normalized else None

    @staticmethod
    def public_profile(user: Dict[str, Any]) -> Dict[str, Any]:
        """User fields that are safe to return to the browser."""
        return {
            'id': user['id'],
            'email': user['email'],
            'name': user.get('name'),
            'emailVerified': user.get('email_verified'),
        }

    # ==================== GOOGLE CALENDAR CONNECTION ====================

    def store_google_refresh_token(self, user_id: int, refresh_token: str,
                                   calendar_id: str = 'primary') -> bool:
        updated = self.db.update_user(
            user_id, google_refresh_token=refresh_token, google_calendar_id=calendar_id
        )
        if updated:
            logger.info("[OK] Google Calendar connected for user %s", user_id)
        return updated

    def disconnect_calendar(self, user_id: int) -> bool:
        updated = self.db.update_user(user_id, google_refresh_token=None, google_calendar_id=None)
        if updated:
            logger.info("[OK] Google Calendar disconnected for user %s", user_id)
        return updated

    def get_calendar_status(self, user_id: int) -> Dict[str, Any]:
        user = self.db.get_user(user_id) or {}
        return {
            'connected': bool(user.get('google_refresh_token')),
            'calendarId': user.get('google_calendar_id') or 'primary',
        }
