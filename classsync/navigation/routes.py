"""
Route Table.

Paths and segment helpers shared by the router, the Navigation Guard,
the Session Resolver and the Auth Flow Controller.
"""

from __future__ import annotations

from typing import Sequence

from classsync.models.enums import UserRole

AUTH_SEGMENT: str = "auth"
CONFIRM_SCREEN: str = "confirm"

LOGIN_ROUTE: str = "/auth/login"
SIGNUP_ROUTE: str = "/auth/signup"
CONFIRM_ROUTE: str = "/auth/confirm"
FORGOT_PASSWORD_ROUTE: str = "/auth/forgot-password"

# Screens of the sign-up / confirmation flow; the resolver never
# redirects away from them.
AUTH_FLOW_SCREENS: frozenset[str] = frozenset({"signup", CONFIRM_SCREEN})

HOME_ROUTES: dict[UserRole, str] = {
    UserRole.TEACHER: "/teacher/dashboard",
    UserRole.STUDENT: "/student/dashboard",
}


def home_route_for(role: UserRole) -> str:
    """Landing route of *role*."""
    return HOME_ROUTES[role]


def path_to_segments(path: str) -> tuple[str, ...]:
    """``"/auth/login"`` -> ``("auth", "login")``."""
    return tuple(part for part in path.split("/") if part)


def segments_to_path(segments: Sequence[str]) -> str:
    """``["auth", "login"]`` -> ``"/auth/login"``; empty -> ``"/"``."""
    return "/" + "/".join(segments)


def is_auth_flow_screen(segments: Sequence[str]) -> bool:
    return (
        len(segments) >= 2
        and segments[0] == AUTH_SEGMENT
        and segments[1] in AUTH_FLOW_SCREENS
    )


def is_confirm_screen(segments: Sequence[str]) -> bool:
    return (
        len(segments) >= 2
        and segments[0] == AUTH_SEGMENT
        and segments[1] == CONFIRM_SCREEN
    )
