import logging
from typing import Any, Dict, Optional

from .exceptions import (
    AuthenticationRequired, PermissionDenied, RemoteServiceError, ValidationFailed
)
from .supabase import SupabaseClient
from .validation import validate_email, validate_password

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_USER = "user"


class AuthService:
    """
    Sign-in/sign-up against the auth service and role lookup via RPC.
    Auth failures are reported with generic messages.
    """

    def __init__(self, client: SupabaseClient):
        self.client = client

    def _credentials(self, email: str, password: str):
        email_result = validate_email(email)
        if not email_result.is_valid:
            raise ValidationFailed(email_result.error)
        password_result = validate_password(password)
        if not password_result.is_valid:
            raise ValidationFailed(password_result.error)
        return email_result.value, password_result.value

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        email, password = self._credentials(email, password)
        try:
            return self.client.sign_in(email, password)
        except RemoteServiceError as e:
            # Outages stay remote failures; only a refusal reads as bad credentials
            if e.remote_status is None or e.remote_status >= 500:
                raise
            logger.info("Sign-in rejected for %s: %s", email, e)
            raise AuthenticationRequired("Invalid email or password")

    def _create_account(self, email: str, password: str, redirect_to: Optional[str]) -> Dict[str, Any]:
        try:
            data = self.client.sign_up(email, password, redirect_to=redirect_to)
        except RemoteServiceError as e:
            if "already registered" in e.message:
                raise ValidationFailed("An account with this email already exists")
            raise RemoteServiceError("Failed to create account. Please try again.", original_error=e)

        # Depending on confirmation settings the user is top-level or nested
        user = data.get("user") or (data if data.get("id") else None)
        if not user:
            raise RemoteServiceError("Failed to create account")
        return user

    def sign_up(self, email: str, password: str, redirect_to: Optional[str] = None) -> Dict[str, Any]:
        email, password = self._credentials(email, password)
        user = self._create_account(email, password, redirect_to)
        self.client.insert("user_roles", {"user_id": user["id"], "role": ROLE_USER})
        return user

    def sign_out(self, access_token: str) -> None:
        self.client.sign_out(access_token)

    def get_current_user(self, access_token: Optional[str]) -> Dict[str, Any]:
        if not access_token:
            raise AuthenticationRequired("Please log in to continue")
        user = self.client.get_user(access_token)
        if not user:
            raise AuthenticationRequired("Please log in to continue")
        return user

    def get_role(self, user_id: str, access_token: Optional[str] = None) -> str:
        """Role from the get_user_role RPC; anything missing reads as "user"."""
        try:
            role = self.client.rpc("get_user_role", {"_user_id": user_id}, access_token=access_token)
        except RemoteServiceError as e:
            logger.warning("Role lookup failed for %s: %s", user_id, e)
            return ROLE_USER
        return role or ROLE_USER

    def require_admin(self, user: Dict[str, Any], access_token: Optional[str] = None) -> None:
        if self.get_role(user["id"], access_token) != ROLE_ADMIN:
            raise PermissionDenied("You don't have permission to access this page.")

    def admin_sign_in(self, email: str, password: str) -> Dict[str, Any]:
        session = self.sign_in(email, password)
        access_token = session.get("access_token")
        user = session.get("user") or {}

        if self.get_role(user.get("id"), access_token) != ROLE_ADMIN:
            self.client.sign_out(access_token)
            raise PermissionDenied("You don't have admin access. Please use the regular login.")

        return session

    def admin_sign_up(self,
                      email: str,
                      password: str,
                      invite_code: str,
                      redirect_to: Optional[str] = None) -> Dict[str, Any]:
        email, password = self._credentials(email, password)

        code = (invite_code or "").strip().upper()
        if not code:
            raise ValidationFailed("Invite code is required for admin registration")

        try:
            is_valid_code = self.client.rpc("validate_invite_code", {"code_to_check": code})
        except RemoteServiceError as e:
            logger.warning("Invite code validation failed: %s", e)
            is_valid_code = False
        if not is_valid_code:
            raise ValidationFailed("Invalid or expired invite code")

        user = self._create_account(email, password, redirect_to)

        try:
            assigned = self.client.rpc(
                "assign_admin_role",
                {"user_id_to_assign": user["id"], "invite_code": code},
            )
        except RemoteServiceError as e:
            raise RemoteServiceError("Failed to assign admin role. Please contact support.", original_error=e)
        if not assigned:
            raise RemoteServiceError("Failed to assign admin role. Please contact support.")

        return user
