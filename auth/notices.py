"""
auth/notices.py -- Builders for the transactional emails the auth flows emit.

Each function returns a Notification value; nothing here sends mail. The
template_name values match the files under notify/templates/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from auth.models import Notification, User
from core.config import AuthConfig


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def welcome(user: User, config: AuthConfig) -> Notification:
    return Notification(
        recipient=user.email,
        subject="Welcome to ProgressTrack!",
        template_name="welcome",
        variables={"name": user.name, "dashboard_url": f"{config.client_url}/dashboard"},
    )


def login_alert(user: User, config: AuthConfig, succeeded: bool, ip: str = "Unknown") -> Notification:
    variables = {
        "name": user.name,
        "status": "Successful" if succeeded else "Failed",
        "success": succeeded,
        "time": _timestamp(),
        "ip": ip,
    }
    if not succeeded:
        variables["reset_url"] = f"{config.client_url}/forgot-password"
    return Notification(
        recipient=user.email,
        subject="Successful Login" if succeeded else "Failed Login Attempt",
        template_name="login_alert",
        variables=variables,
    )


def registration_alert(user: User, config: AuthConfig, ip: str = "Unknown") -> Notification:
    """Someone tried to register with an email that already has an account."""
    return Notification(
        recipient=user.email,
        subject="Failed Registration Attempt",
        template_name="login_alert",
        variables={
            "name": user.name,
            "status": "Failed",
            "success": False,
            "time": _timestamp(),
            "ip": ip,
            "reset_url": f"{config.client_url}/forgot-password",
        },
    )


def reset_link(user: User, config: AuthConfig, plain_token: str) -> Notification:
    return Notification(
        recipient=user.email,
        subject="Password Reset Request",
        template_name="reset_password",
        variables={
            "name": user.name,
            "reset_url": f"{config.client_url}/reset-password/{plain_token}",
            "expires_minutes": config.reset_token_expire_seconds // 60,
        },
    )


def password_changed(user: User, via_reset: bool = False) -> Notification:
    return Notification(
        recipient=user.email,
        subject="Password Reset Successful" if via_reset else "Your password was changed",
        template_name="password_changed",
        variables={"name": user.name, "via_reset": via_reset, "time": _timestamp()},
    )
