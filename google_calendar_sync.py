"""
Google Calendar Sync - Mirrors dated tasks as events on the owner's Google Calendar
Also drives the web OAuth flow that connects a user's calendar.
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config import Config
from database import from_iso

logger = logging.getLogger(__name__)

EVENT_DURATION = timedelta(minutes=30)


class GoogleCalendarSync:
    """
    Synchronizes tasks with Google Calendar.
    - Per-user refresh tokens (connected through the OAuth callback)
    - Application-wide refresh token as fallback
    - Every API failure is logged and reported as None, never raised
    """

    # Google Calendar API scope
    SCOPES = ['https://www.googleapis.com/auth/calendar']
    TOKEN_URI = "https://oauth2.googleapis.com/token"
    AUTH_URI = "https://accounts.google.com/o/oauth2/auth"

    def __init__(self, client_id: str = None, client_secret: str = None,
                 default_refresh_token: str = None, default_calendar_id: str = None,
                 service_factory: Callable[[str], Any] = None):
        """
        Initialize Google Calendar sync.

        Args:
            client_id: OAuth client ID
            client_secret: OAuth client secret
            default_refresh_token: Refresh token used for users who have not connected
            default_calendar_id: Calendar used with the default refresh token
            service_factory: Builds a Calendar service from a refresh token
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.default_refresh_token = default_refresh_token
        self.default_calendar_id = default_calendar_id
        self.service_factory = service_factory or self._build_service

    @classmethod
    def from_config(cls, config: Config) -> "GoogleCalendarSync":
        return cls(
            client_id=config.google_client_id,
            client_secret=config.google_client_secret,
            default_refresh_token=config.google_refresh_token,
            default_calendar_id=config.google_calendar_id,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    # ==================== AUTHENTICATION ====================

    def _build_service(self, refresh_token: str):
        creds = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=self.SCOPES,
        )
        return build('calendar', 'v3', credentials=creds, cache_discovery=False)

    def _resolve_target(self, user: Optional[Dict[str, Any]]) -> Optional[Tuple[str, str]]:
        """Pick (refresh_token, calendar_id): the user's own connection, else the app default."""
        if not self.is_configured:
            logger.warning("[!] Missing Google OAuth client credentials. Skipping event sync.")
            return None

        if user and user.get('google_refresh_token'):
            return user['google_refresh_token'], user.get('google_calendar_id') or 'primary'

        if self.default_refresh_token and self.default_calendar_id:
            return self.default_refresh_token, self.default_calendar_id

        logger.warning("[!] No Google Calendar connected for user %s. Skipping event sync.",
                       user.get('id') if user else None)
        return None

    def _client(self, user):
        target = self._resolve_target(user)
        if target is None:
            return None, None
        refresh_token, calendar_id = target
        return self.service_factory(refresh_token), calendar_id

    # ==================== WEB OAUTH FLOW ====================

    def _flow(self, redirect_uri: str, state: str = None) -> Flow:
        client_config = {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": self.AUTH_URI,
                "token_uri": self.TOKEN_URI,
                "redirect_uris": [redirect_uri],
            }
        }
        return Flow.from_client_config(
            client_config,
            scopes=self.SCOPES,
            redirect_uri=redirect_uri,
            state=state,
            autogenerate_code_verifier=False,
        )

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        """Consent-screen URL; offline access with forced consent so Google returns a refresh token."""
        url, _ = self._flow(redirect_uri, state).authorization_url(
            access_type='offline',
            prompt='consent',
            include_granted_scopes='true',
        )
        return url

    def exchange_code(self, code: str, redirect_uri: str, state: str = None) -> Optional[str]:
        """Exchange an authorization code; returns the refresh token if Google issued one."""
        flow = self._flow(redirect_uri, state)
        flow.fetch_token(code=code)
        return flow.credentials.refresh_token

    # ==================== EVENT BODY ====================

    def _create_event_body(self, task: Dict[str, Any]) -> Dict[str, Any]:
        """
        Convert task to Google Calendar event format.

        Args:
            task: Task dictionary from database (must carry a due date)

        Returns:
            dict: Event body for Google Calendar API
        """
        due = from_iso(task['due_date'])
        end = due + EVENT_DURATION
        description_parts = [
            task.get('description'),
            f"Priority: {task.get('priority') or 'MEDIUM'}",
            f"Task ID: {task['id']}",
        ]
        return {
            'summary': task['title'],
            'description': "\n".join(part for part in description_parts if part),
            'start': {'dateTime': due.isoformat()},
            'end': {'dateTime': end.isoformat()},
        }

    # ==================== CREATE / UPDATE / DELETE ====================

    def create_event(self, task: Dict[str, Any], user: Dict[str, Any] = None) -> Optional[str]:
        """
        Create a Google Calendar event for a task.

        Returns:
            The new event ID, or None if sync was skipped or failed
        """
        if not task.get('due_date'):
            return None
        try:
            service, calendar_id = self._client(user)
            if service is None:
                return None
            event = service.events().insert(
                calendarId=calendar_id,
                body=self._create_event_body(task),
            ).execute()
        except (HttpError, GoogleAuthError, OSError) as e:
            logger.error("[!] Failed to create event for task %s: %s", task.get('id'), e)
            return None

        logger.info("[OK] Created Google Calendar event for task %s", task['id'])
        return event.get('id')

    def update_event(self, event_id: str, task: Dict[str, Any],
                     user: Dict[str, Any] = None) -> Optional[str]:
        """
        Patch the event linked to a task.

        Returns:
            The event ID (Google's, or the one passed in), or None on failure
        """
        if not event_id or not task.get('due_date'):
            return None
        try:
            service, calendar_id = self._client(user)
            if service is None:
                return None
            event = service.events().patch(
                calendarId=calendar_id,
                eventId=event_id,
                body=self._create_event_body(task),
            ).execute()
        except (HttpError, GoogleAuthError, OSError) as e:
            logger.error("[!] Failed to update event %s for task %s: %s", event_id, task.get('id'), e)
            return None

        logger.info("[OK] Updated Google Calendar event for task %s", task['id'])
        return (event or {}).get('id') or event_id

    def delete_event(self, event_id: Optional[str], user: Dict[str, Any] = None) -> bool:
        """Delete a calendar event. Empty IDs are a no-op."""
        if not event_id:
            return False
        try:
            service, calendar_id = self._client(user)
            if service is None:
                return False
            service.events().delete(calendarId=calendar_id, eventId=event_id).execute()
        except (HttpError, GoogleAuthError, OSError) as e:
            logger.error("[!] Failed to delete event %s: %s", event_id, e)
            return False

        logger.info("[OK] Deleted Google Calendar event %s", event_id)
        return True
