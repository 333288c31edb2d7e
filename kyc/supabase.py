"""Thin client for the managed Supabase backend (auth, tables, RPC, storage)."""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests

from config import settings
from .exceptions import RemoteServiceError, StorageError

logger = logging.getLogger(__name__)

Filters = Sequence[Tuple[str, str]]


class SupabaseClient:
    """
    Talks to the GoTrue, PostgREST and Storage REST endpoints.

    Calls made with a user's access token run under that user's row-level
    security; calls without one use the service role key.
    """

    def __init__(self,
                 url: str = None,
                 anon_key: str = None,
                 service_role_key: str = None,
                 timeout: int = None,
                 session: requests.Session = None):
        self.url = (url or settings.SUPABASE_URL).rstrip("/")
        self.anon_key = anon_key if anon_key is not None else settings.SUPABASE_ANON_KEY
        self.service_role_key = service_role_key or settings.SUPABASE_SERVICE_ROLE_KEY or self.anon_key
        self.timeout = timeout or settings.HTTP_TIMEOUT
        self.session = session or requests.Session()

    # ------------------------
    # Plumbing
    # ------------------------
    def _headers(self, access_token: Optional[str] = None, **extra: str) -> Dict[str, str]:
        token = access_token or self.service_role_key
        headers = {
            "apikey": self.anon_key if access_token else self.service_role_key,
            "Authorization": f"Bearer {token}",
        }
        headers.update(extra)
        return headers

    def _request(self,
                 method: str,
                 path: str,
                 error_class=RemoteServiceError,
                 **kwargs) -> requests.Response:
        url = f"{self.url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error("Supabase request failed: %s %s: %s", method, path, e)
            raise error_class(f"Backend request failed: {e}", original_error=e)

        if response.status_code >= 400:
            logger.error(
                "Supabase returned %s for %s %s: %s",
                response.status_code, method, path, response.text
            )
            raise error_class(_error_message(response), remote_status=response.status_code)

        return response

    # ------------------------
    # Auth
    # ------------------------
    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        response = self._request(
            "POST", "/auth/v1/token",
            params={"grant_type": "password"},
            headers={"apikey": self.anon_key},
            json={"email": email, "password": password},
        )
        return response.json()

    def sign_up(self, email: str, password: str, redirect_to: Optional[str] = None) -> Dict[str, Any]:
        params = {"redirect_to": redirect_to} if redirect_to else None
        response = self._request(
            "POST", "/auth/v1/signup",
            params=params,
            headers={"apikey": self.anon_key},
            json={"email": email, "password": password},
        )
        return response.json()

    def sign_out(self, access_token: str) -> None:
        self._request("POST", "/auth/v1/logout", headers=self._headers(access_token))

    def get_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        """Returns the user owning the token, or None when the session is invalid"""
        try:
            response = self._request("GET", "/auth/v1/user", headers=self._headers(access_token))
        except RemoteServiceError as e:
            if e.remote_status in (401, 403):
                return None
            raise
        return response.json()

    # ------------------------
    # RPC
    # ------------------------
    def rpc(self, function: str, params: Dict[str, Any], access_token: Optional[str] = None) -> Any:
        response = self._request(
            "POST", f"/rest/v1/rpc/{function}",
            headers=self._headers(access_token),
            json=params,
        )
        if not response.content:
            return None
        return response.json()

    # ------------------------
    # Tables
    # ------------------------
    def select(self,
               table: str,
               filters: Filters = (),
               order: Optional[str] = None,
               access_token: Optional[str] = None) -> List[Dict[str, Any]]:
        params = [("select", "*")] + list(filters)
        if order:
            params.append(("order", order))
        response = self._request(
            "GET", f"/rest/v1/{table}",
            headers=self._headers(access_token),
            params=params,
        )
        return response.json()

    def insert(self, table: str, row: Dict[str, Any], access_token: Optional[str] = None) -> Dict[str, Any]:
        response = self._request(
            "POST", f"/rest/v1/{table}",
            headers=self._headers(access_token, Prefer="return=representation"),
            json=row,
        )
        rows = response.json()
        return rows[0] if rows else {}

    def update(self,
               table: str,
               values: Dict[str, Any],
               filters: Filters,
               access_token: Optional[str] = None) -> List[Dict[str, Any]]:
        """Updates matching rows and returns them; an empty list means nothing matched"""
        response = self._request(
            "PATCH", f"/rest/v1/{table}",
            headers=self._headers(access_token, Prefer="return=representation"),
            params=list(filters),
            json=values,
        )
        return response.json()

    # ------------------------
    # Storage
    # ------------------------
    def storage_upload(self,
                       bucket: str,
                       path: str,
                       content: bytes,
                       content_type: str,
                       upsert: bool = True,
                       access_token: Optional[str] = None) -> Dict[str, Any]:
        response = self._request(
            "POST", f"/storage/v1/object/{bucket}/{quote(path)}",
            error_class=StorageError,
            headers=self._headers(
                access_token,
                **{"Content-Type": content_type, "x-upsert": "true" if upsert else "false"}
            ),
            data=content,
        )
        return response.json()

    def storage_sign(self,
                     bucket: str,
                     path: str,
                     expires_in: int,
                     access_token: Optional[str] = None) -> str:
        response = self._request(
            "POST", f"/storage/v1/object/sign/{bucket}/{quote(path)}",
            error_class=StorageError,
            headers=self._headers(access_token),
            json={"expiresIn": expires_in},
        )
        signed_path = response.json().get("signedURL")
        if not signed_path:
            raise StorageError("Storage response did not contain signedURL")
        return self._absolute_storage_url(signed_path)

    def storage_remove(self, bucket: str, paths: List[str], access_token: Optional[str] = None) -> None:
        self._request(
            "DELETE", f"/storage/v1/object/{bucket}",
            error_class=StorageError,
            headers=self._headers(access_token),
            json={"prefixes": paths},
        )

    def _absolute_storage_url(self, signed_path: str) -> str:
        # Storage returns a path relative to /storage/v1
        if signed_path.startswith("http"):
            return signed_path
        if not signed_path.startswith("/"):
            signed_path = f"/{signed_path}"
        if not signed_path.startswith("/storage/v1"):
            signed_path = f"/storage/v1{signed_path}"
        return f"{self.url}{signed_path}"


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return response.text
