"""OAuth helpers that hand bearer credentials to the Sheets client."""

from __future__ import annotations

import json
import logging
import os
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from roombook.errors import AuthError

logger = logging.getLogger(__name__)

SCOPES: Sequence[str] = ("https://www.googleapis.com/auth/spreadsheets",)

REQUIRED_REFRESH_FIELDS: Iterable[str] = ("client_id", "client_secret", "refresh_token")
REQUIRED_CLIENT_SECRET_FIELDS: Iterable[str] = ("client_id", "client_secret", "auth_uri", "token_uri")


def missing_fields(payload: Mapping[str, object], required: Iterable[str]) -> List[str]:
    """Return the sorted names of required string fields that are blank."""

    missing = []
    for name in required:
        value = payload.get(name)
        if not isinstance(value, str) or not value.strip():
            missing.append(name)
    return sorted(dict.fromkeys(missing))


def _load_json(path: str) -> Dict[str, object]:
    try:
        with open(path, "r", encoding="utf-8-sig") as handle:
            raw = handle.read()
    except OSError as exc:
        raise AuthError(f"Unable to read credential file {path}: {exc}") from exc

    text = raw.lstrip("\ufeff").strip()
    if not text:
        raise AuthError(f"Credential file {path} is empty.")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise AuthError(f"Credential file {path} is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise AuthError(f"Credential file {path} must contain a JSON object.")
    return payload


def validate_client_secrets(path: str) -> Dict[str, object]:
    """Return the ``installed``/``web`` section of a client secrets file."""

    payload = _load_json(path)
    section = payload.get("installed") or payload.get("web")
    if not isinstance(section, dict):
        raise AuthError("Client secrets file must contain an 'installed' or 'web' section.")
    missing = missing_fields(section, REQUIRED_CLIENT_SECRET_FIELDS)
    if missing:
        raise AuthError(f"Client secrets file is missing fields: {', '.join(missing)}")
    return section


class TokenProvider:
    """Produce OAuth user credentials for the Sheets API.

    Credentials come from the authorized-user file written by
    :func:`run_authorization_flow`, from an explicit refresh-token triple, or
    as a last resort from a static access token that cannot be refreshed.
    """

    def __init__(
        self,
        *,
        client_id: str = "",
        client_secret: str = "",
        refresh_token: str = "",
        access_token: str = "",
        token_path: Optional[str] = None,
        token_uri: str = "https://oauth2.googleapis.com/token",
        scopes: Sequence[str] = SCOPES,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._access_token = access_token
        self._token_path = token_path
        self._token_uri = token_uri
        self._scopes = list(scopes)
        self._credentials: Optional[Credentials] = None

    @classmethod
    def from_settings(cls, settings) -> "TokenProvider":
        return cls(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            refresh_token=settings.refresh_token,
            access_token=settings.access_token,
            token_path=settings.token_path,
            token_uri=settings.token_uri,
        )

    @property
    def is_configured(self) -> bool:
        if self._token_path and os.path.exists(self._token_path):
            return True
        if not missing_fields(self._triple(), REQUIRED_REFRESH_FIELDS):
            return True
        return bool(self._access_token)

    def _triple(self) -> Dict[str, object]:
        return {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": self._refresh_token,
        }

    def _load(self) -> Credentials:
        if self._token_path and os.path.exists(self._token_path):
            logger.debug("Loading authorized user credentials from %s", self._token_path)
            try:
                return Credentials.from_authorized_user_file(self._token_path, self._scopes)
            except ValueError as exc:
                raise AuthError(f"Authorized user file {self._token_path} is invalid: {exc}") from exc

        triple = self._triple()
        if not missing_fields(triple, REQUIRED_REFRESH_FIELDS):
            return Credentials(
                token=self._access_token or None,
                refresh_token=self._refresh_token,
                token_uri=self._token_uri,
                client_id=self._client_id,
                client_secret=self._client_secret,
                scopes=self._scopes,
            )

        if self._access_token:
            return Credentials(token=self._access_token)

        missing = missing_fields(triple, REQUIRED_REFRESH_FIELDS)
        raise AuthError(
            "No Google credentials are configured. Missing fields: "
            f"{', '.join(missing)}. Run 'python app.py authorize' or set an access token."
        )

    def credentials(self) -> Credentials:
        """Return valid credentials, refreshing them when expired."""

        if self._credentials is None:
            self._credentials = self._load()

        credentials = self._credentials
        if credentials.valid:
            return credentials

        if credentials.refresh_token:
            try:
                credentials.refresh(Request())
            except GoogleAuthError as exc:
                if self._access_token:
                    logger.warning("Token refresh failed, using the static access token: %s", exc)
                    self._credentials = Credentials(token=self._access_token)
                    return self._credentials
                raise AuthError(f"Unable to refresh the Google access token: {exc}") from exc
            return credentials

        if credentials.token:
            # A bare access token carries no expiry information.
            return credentials
        raise AuthError("The configured Google credential has no usable token.")

    def get_access_token(self) -> str:
        token = self.credentials().token
        if not token:
            raise AuthError("The configured Google credential has no usable token.")
        return token


def run_authorization_flow(
    client_secret_path: str,
    token_path: str,
    scopes: Sequence[str] = SCOPES,
) -> Credentials:
    """Run the installed-app OAuth flow once and store the authorized user JSON."""

    if not os.path.exists(client_secret_path):
        raise AuthError(f"Client secret file not found: {client_secret_path}")
    validate_client_secrets(client_secret_path)

    flow = InstalledAppFlow.from_client_secrets_file(client_secret_path, list(scopes))
    credentials = flow.run_local_server(port=0)

    os.makedirs(os.path.dirname(token_path) or ".", exist_ok=True)
    with open(token_path, "w", encoding="utf-8") as handle:
        handle.write(credentials.to_json())
    logger.info("Stored authorized user credentials at %s", token_path)
    return credentials


__all__ = [
    "REQUIRED_CLIENT_SECRET_FIELDS",
    "REQUIRED_REFRESH_FIELDS",
    "SCOPES",
    "TokenProvider",
    "missing_fields",
    "run_authorization_flow",
    "validate_client_secrets",
]
