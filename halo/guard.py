"""Checks every state-changing request passes before the store is touched.

A mutation moves through: authenticated (identity cookie decrypts), CSRF
checked (cookie token equals the submitted one), ownership checked (edit and
delete only), applied. Any failure ends the request.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from fastapi import Request

from .crypto import CookieSessions
from .events import Event, EventStore


logger = logging.getLogger(__name__)


class GuardError(Exception):
    """Base class for rejected requests."""

    status_code = 403

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationAbsent(GuardError):
    """No identity decrypts from the cookies; answered with a login redirect."""

    status_code = 303


class CSRFMismatch(GuardError):
    pass


class AuthorizationDenied(GuardError):
    pass


class ValidationFailure(GuardError):
    status_code = 400


def authenticate(sessions: CookieSessions, cookies: Mapping[str, str]) -> str:
    user = sessions.resolve(cookies)
    if user is None:
        raise AuthenticationAbsent("you are not logged in")
    return user


def check_csrf(
    sessions: CookieSessions, request: Request, submitted: Optional[str]
) -> str:
    token = sessions.csrf_token(request.cookies)
    if not token or not submitted or token != submitted:
        logger.warning("Invalid CSRF token for %s %s", request.method, request.url.path)
        raise CSRFMismatch("bad CSRF token")
    return token


def require_owner(store: EventStore, event_id: int, user: str, action: str) -> Event:
    event = store.get(event_id)
    if event is None or event.owner != user:
        logger.warning("%s denied %s of event %s", user, action, event_id)
        raise AuthorizationDenied(
            f"you cannot {action} this event because you have not created it"
        )
    return event
