"""Login / logout dialogs and the user-facing auth messages."""
from __future__ import annotations

import structlog

from dialogs.models import Dialog, DialogLibrary
from dialogs.session import CALENDAR_ID, CREDENTIALS, DialogSession
from models.schemas import Intent

logger = structlog.get_logger()

LOGIN_DIALOG = "login"
LOGOUT_DIALOG = "logout"

SIGNED_IN_MESSAGE = "Thanks, you're signed in."
LOGIN_FAILED_MESSAGE = "Login didn't complete, so nothing was changed. Say 'login' to try again."
NEEDS_CALENDAR_MESSAGE = "I still don't know which calendar to use. Say 'use my primary calendar'."
NEEDS_CREDENTIALS_MESSAGE = "I still don't have access to your calendar. Say 'login' to sign in."


def sign_in_message(url: str) -> str:
    return f"Please sign in to your calendar account first: {url}"


async def _login(session: DialogSession, args: Intent) -> None:
    if session.has(CREDENTIALS) and session.has(CALENDAR_ID):
        session.send("You're already signed in.")
        return
    if session.has(CREDENTIALS):
        # Signed in but no calendar chosen yet: no need to visit the provider again
        dialog_name, follow_up_args = session.dispatcher.resolver.resolve_post_login(None, None)
        await session.begin_dialog(dialog_name, follow_up_args)
        return
    url = await session.request_auth()
    session.send(sign_in_message(url))


async def _logout(session: DialogSession, args: Intent) -> None:
    had_credentials = session.delete(CREDENTIALS)
    session.delete(CALENDAR_ID)
    if had_credentials:
        logger.info("user_logged_out", address=session.address)
        session.send("You're signed out.")
    else:
        session.send("You weren't signed in.")


def create_library() -> DialogLibrary:
    return DialogLibrary("auth", [
        Dialog(name=LOGIN_DIALOG, begin=_login, intents=["Login"],
               description="Sign in to the calendar provider"),
        Dialog(name=LOGOUT_DIALOG, begin=_logout, intents=["Logout"],
               description="Forget stored credentials and calendar"),
    ])
