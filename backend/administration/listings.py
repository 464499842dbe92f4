"""Read-side queries for admin screens and the announcements feed."""
from __future__ import annotations

from typing import Any, Dict, List

from identity_access.domain import Identity, InvalidIdentityError, parse_role

from .audit import Page
from .repo import AdminRepo, ProfileQuery


USER_PAGE_SIZE = 10

# Verification filter values accepted from query strings.
_STATUS_FILTERS = {"verified": True, "unverified": False}


def list_users(
    repo: AdminRepo,
    *,
    search: str | None = None,
    role: str | None = None,
    status: str | None = None,
    page: int = 1,
) -> Page:
    """Newest accounts first. Unknown role/status filter values are ignored."""
    page = max(1, int(page or 1))
    role_filter = None
    if role and role != "all":
        try:
            role_filter = parse_role(role)
        except InvalidIdentityError:
            role_filter = None
    query = ProfileQuery(
        search=(search or "").strip() or None,
        role=role_filter,
        verified=_STATUS_FILTERS.get((status or "").strip().lower()),
        offset=(page - 1) * USER_PAGE_SIZE,
        limit=USER_PAGE_SIZE,
    )
    rows, total = repo.list_profiles(query)
    return Page(rows=rows, total_count=total, page=page, page_size=USER_PAGE_SIZE)


def list_unverified_users(repo: AdminRepo) -> List[Dict[str, Any]]:
    """Pending self-registrations, oldest first."""
    return repo.list_unverified_profiles()


def list_classes(repo: AdminRepo) -> List[Dict[str, Any]]:
    return repo.list_classes()


def list_subjects(repo: AdminRepo) -> List[Dict[str, Any]]:
    return repo.list_subjects()


def announcements_feed(repo: AdminRepo, viewer: Identity) -> List[Dict[str, Any]]:
    # Admins manage every announcement; everyone else sees untargeted ones plus their role's.
    return repo.list_announcements(None if viewer.is_admin else viewer.role)


__all__ = [
    "USER_PAGE_SIZE",
    "announcements_feed",
    "list_classes",
    "list_subjects",
    "list_unverified_users",
    "list_users",
]
