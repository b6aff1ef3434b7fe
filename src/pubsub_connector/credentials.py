"""Service-account credential loading."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import structlog
from google.oauth2 import service_account

from pubsub_connector.errors import CredentialLoadError

logger = structlog.get_logger()

DEFAULT_SCOPES = ("https://www.googleapis.com/auth/cloud-platform",)


class CredentialLoader:
    """Builds Google service-account credentials from a JSON keyfile.

    A missing, unreadable or malformed keyfile is a configuration problem:
    :class:`CredentialLoadError` is raised and nothing is retried.
    """

    def __init__(self, scopes: Sequence[str] = DEFAULT_SCOPES) -> None:
        self._scopes = list(scopes)

    def load(self, path: str | Path) -> service_account.Credentials:
        p = Path(path)
        if not p.is_file():
            msg = (
                f"Service account credential file not found: {p}. "
                "Check the credential.path option."
            )
            raise CredentialLoadError(msg, path=p)

        try:
            credentials = service_account.Credentials.from_service_account_file(
                str(p), scopes=self._scopes
            )
        except OSError as exc:
            msg = f"Service account credential file {p} could not be read: {exc}"
            raise CredentialLoadError(msg, path=p) from exc
        except ValueError as exc:
            # Covers invalid JSON, missing fields and unparsable private keys
            msg = f"Service account credential file {p} is malformed: {exc}"
            raise CredentialLoadError(msg, path=p) from exc

        logger.info(
            "credentials.loaded",
            path=str(p),
            service_account=credentials.service_account_email,
        )
        return credentials
