"""Supabase Auth (GoTrue) admin client for the user migration.

Migrated users need an auth identity before their profile row can exist,
because ``public.users.id`` is the identity id assigned by GoTrue. This client
wraps the three admin calls the migration needs: create, look up by email and
delete (used to compensate a half-finished user import).

All calls authenticate with the Service Role key and carry an explicit timeout.
"""

from __future__ import annotations

import logging
from typing import Any

import requests


logger = logging.getLogger("castingboard.identity.supabase_admin")

_CONFLICT_CODES = {"email_exists", "user_already_exists"}


class IdentityExistsError(RuntimeError):
    """GoTrue already has an identity registered for this email."""

    def __init__(self, email: str) -> None:
        super().__init__(f"identity already exists for {mask_email(email)}")
        self.email = email


def mask_email(email: str) -> str:
    """Mask email for logs to reduce PII exposure in migration output."""
    local, sep, domain = (email or "").partition("@")
    if not sep:
        return "***"
    return f"{local[:2]}***@{domain}"


def _is_email_conflict(resp: Any) -> bool:
    if resp.status_code not in (400, 409, 422):
        return False
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = str(body.get("error_code") or body.get("code") or "")
    if code in _CONFLICT_CODES:
        return True
    message = str(body.get("msg") or body.get("message") or body.get("error_description") or getattr(resp, "text", ""))
    return "already" in message.lower() and "registered" in message.lower()


class SupabaseAuthAdminClient:
    """Minimal GoTrue admin client (sync, requests-based)."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        session: requests.Session | None = None,
        timeout: float = 10.0,
        page_size: int = 1000,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.page_size = page_size
        self.session.headers.update({
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
        })

    def _users_url(self, user_id: str | None = None) -> str:
        url = f"{self.base_url}/auth/v1/admin/users"
        return f"{url}/{user_id}" if user_id else url

    # --- REST helpers -----------------------------------------------------

    def create_user(
        self,
        email: str,
        password: str,
        *,
        email_confirm: bool = False,
        user_metadata: dict | None = None,
    ) -> str:
        """Create an auth identity and return its id.

        Raises ``IdentityExistsError`` when the email is already registered so
        the caller can adopt the existing identity instead of failing the row.
        """
        resp = self.session.post(
            self._users_url(),
            json={
                "email": email,
                "password": password,
                "email_confirm": bool(email_confirm),
                "user_metadata": user_metadata or {},
            },
            timeout=self.timeout,
        )
        if _is_email_conflict(resp):
            raise IdentityExistsError(email)
        resp.raise_for_status()
        data = resp.json() or {}
        user_id = data.get("id") or (data.get("user") or {}).get("id")
        if user_id:
            return str(user_id)
        user_id = self.find_user_id(email)
        if not user_id:
            raise RuntimeError("User creation succeeded but id lookup failed")
        return user_id

    def find_user_id(self, email: str) -> str | None:
        """Return the identity id for ``email`` by paging the admin user list."""
        target = (email or "").strip().lower()
        page = 1
        while True:
            resp = self.session.get(
                self._users_url(),
                params={"page": page, "per_page": self.page_size},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
            users = data.get("users", []) if isinstance(data, dict) else (data or [])
            for user in users:
                if (user.get("email") or "").strip().lower() == target:
                    return str(user["id"])
            if len(users) < self.page_size:
                return None
            page += 1

    def delete_user(self, user_id: str) -> None:
        resp = self.session.delete(self._users_url(user_id), timeout=self.timeout)
        resp.raise_for_status()
        logger.info("Deleted auth identity %s", user_id)


__all__ = ["IdentityExistsError", "SupabaseAuthAdminClient", "mask_email"]
