"""
backend/app/services/google_calendar.py

Google Calendar integration for stylists.

Handles:
- OAuth URL generation and token exchange
- Access token refresh
- Calendar event CRUD operations

Errors are normalized: revoked/invalid credentials raise CalendarAuthError,
every other API failure raises ProviderError.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import CalendarAuthError, ProviderError

logger = logging.getLogger(__name__)

# Scopes needed for calendar access
SCOPES = ["https://www.googleapis.com/auth/calendar.events"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


def _encode_state(stylist_id: int) -> str:
    """Format: s:{stylist_id}:{nonce}"""
    return f"s:{stylist_id}:{secrets.token_hex(8)}"


def _decode_state(state: str) -> Optional[int]:
    parts = (state or "").split(":")
    if len(parts) >= 2 and parts[0] == "s":
        try:
            return int(parts[1])
        except ValueError:
            return None
    return None


class GoogleCalendarClient:
    """Thin wrapper over the Calendar v3 API keyed by per-stylist tokens."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str = "",
        timezone: str = "Asia/Singapore",
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timezone = timezone

    # ── OAuth ────────────────────────────────────────────────────────────

    def _client_config(self) -> dict:
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": TOKEN_URI,
                "redirect_uris": [self.redirect_uri],
            }
        }

    def get_oauth_url(self, stylist_id: int) -> str:
        """Authorization URL the stylist is redirected to."""
        flow = Flow.from_client_config(
            self._client_config(),
            scopes=SCOPES,
            redirect_uri=self.redirect_uri,
        )
        authorization_url, _ = flow.authorization_url(
            access_type="offline",
            include_granted_scopes="true",
            state=_encode_state(stylist_id),
            prompt="consent",
        )
        return authorization_url

    def exchange_code_for_tokens(self, code: str, state: str) -> dict:
        """
        Exchange an authorization code for tokens.

        Returns:
            {"stylist_id", "access_token", "refresh_token", "token_expires_at"}

        Raises:
            ValueError: invalid state or failed exchange
        """
        stylist_id = _decode_state(state)
        if stylist_id is None:
            raise ValueError("Invalid state parameter")

        flow = Flow.from_client_config(
            self._client_config(),
            scopes=SCOPES,
            redirect_uri=self.redirect_uri,
        )
        try:
            flow.fetch_token(code=code)
        except Exception as e:
            logger.error(f"Token exchange failed: {e}")
            raise ValueError(f"Token exchange failed: {e}") from e

        credentials = flow.credentials
        expires_at = None
        if credentials.expiry:
            expires_at = credentials.expiry.strftime("%Y-%m-%d %H:%M:%S")

        return {
            "stylist_id": stylist_id,
            "access_token": credentials.token,
            "refresh_token": credentials.refresh_token,
            "token_expires_at": expires_at,
        }

    def refresh_access_token(self, refresh_token: Optional[str]) -> dict:
        """
        Refresh an expired access token.

        Returns:
            {"access_token": str, "token_expires_at": str | None}

        Raises:
            CalendarAuthError: refresh token missing, revoked or invalid
            ProviderError: Google unreachable
        """
        if not refresh_token:
            raise CalendarAuthError("No refresh token stored")

        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        try:
            credentials.refresh(Request())
        except RefreshError as e:
            logger.error(f"Token refresh failed: {e}")
            raise CalendarAuthError(f"Token refresh failed: {e}") from e
        except Exception as e:
            raise ProviderError(f"Token refresh request failed: {e}") from e

        expires_at = None
        if credentials.expiry:
            expires_at = credentials.expiry.strftime("%Y-%m-%d %H:%M:%S")
        return {
            "access_token": credentials.token,
            "token_expires_at": expires_at,
        }

    # ── Events ───────────────────────────────────────────────────────────

    def _service(self, access_token: str, refresh_token: Optional[str]):
        credentials = Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        return build("calendar", "v3", credentials=credentials, cache_discovery=False)

    def build_event_body(self, appointment: dict) -> dict:
        """
        Event resource for an appointment.

        appointment keys: date, time, duration_minutes, services (list of
        names), customer_name, customer_email, total_price
        """
        start = datetime.strptime(f"{appointment['date']} {appointment['time']}", "%Y-%m-%d %H:%M")
        end = start + timedelta(minutes=appointment["duration_minutes"])
        services = ", ".join(appointment.get("services") or []) or "Appointment"

        description_parts = [f"\U0001F6CE {services} ({appointment['duration_minutes']} min)"]
        if appointment.get("customer_email"):
            description_parts.append(f"✉ {appointment['customer_email']}")
        if appointment.get("total_price") is not None:
            description_parts.append(f"\U0001F4B0 {appointment['total_price'] / 100:.2f}")

        return {
            "summary": f"{services} — {appointment.get('customer_name', 'Client')}",
            "description": "\n".join(description_parts),
            "start": {"dateTime": start.isoformat(), "timeZone": self.timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.timezone},
            "reminders": {
                "useDefault": False,
                "overrides": [{"method": "popup", "minutes": 30}],
            },
        }

    def create_event(
        self,
        access_token: str,
        refresh_token: Optional[str],
        calendar_id: str,
        appointment: dict,
    ) -> str:
        """Create an event; returns its id."""
        try:
            service = self._service(access_token, refresh_token)
            created = service.events().insert(
                calendarId=calendar_id,
                body=self.build_event_body(appointment),
            ).execute()
        except (HttpError, RefreshError) as e:
            raise self._translate(e, "create") from e
        except Exception as e:
            raise self._unreachable(e, "create") from e

        logger.info(f"Created Google Calendar event: {created.get('id')}")
        return created.get("id")

    def update_event(
        self,
        access_token: str,
        refresh_token: Optional[str],
        calendar_id: str,
        event_id: str,
        appointment: dict,
    ) -> str:
        """Replace an existing event; returns its id."""
        try:
            service = self._service(access_token, refresh_token)
            updated = service.events().update(
                calendarId=calendar_id,
                eventId=event_id,
                body=self.build_event_body(appointment),
            ).execute()
        except (HttpError, RefreshError) as e:
            raise self._translate(e, "update") from e
        except Exception as e:
            raise self._unreachable(e, "update") from e

        logger.info(f"Updated Google Calendar event: {event_id}")
        return updated.get("id", event_id)

    def delete_event(
        self,
        access_token: str,
        refresh_token: Optional[str],
        calendar_id: str,
        event_id: str,
    ) -> bool:
        """Delete an event. An event that is already gone counts as deleted."""
        try:
            service = self._service(access_token, refresh_token)
            service.events().delete(
                calendarId=calendar_id,
                eventId=event_id,
            ).execute()
        except HttpError as e:
            if e.resp.status in (404, 410):
                logger.warning(f"Calendar event not found: {event_id}")
                return True
            raise self._translate(e, "delete") from e
        except RefreshError as e:
            raise self._translate(e, "delete") from e
        except Exception as e:
            raise self._unreachable(e, "delete") from e

        logger.info(f"Deleted Google Calendar event: {event_id}")
        return True

    @staticmethod
    def _translate(error: Exception, action: str) -> ProviderError:
        if isinstance(error, RefreshError):
            return CalendarAuthError(f"Calendar {action} failed, credentials rejected: {error}")
        if isinstance(error, HttpError) and error.resp.status == 401:
            return CalendarAuthError(f"Calendar {action} failed with 401: {error}")
        logger.error(f"Failed to {action} calendar event: {error}")
        return ProviderError(f"Calendar {action} failed: {error}")

    @staticmethod
    def _unreachable(error: Exception, action: str) -> ProviderError:
        # Transport failures from .execute(), e.g. httplib2.ServerNotFoundError
        logger.error(f"Google Calendar unreachable during {action}: {type(error).__name__}: {error}")
        return ProviderError(f"Calendar {action} failed, Google unreachable: {error}")
