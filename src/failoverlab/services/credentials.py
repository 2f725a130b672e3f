"""Credential gate deciding whether the clustered failover path runs."""

import os
from typing import Mapping, Optional

from failoverlab.models import Credentials


def resolve_credentials(environ: Optional[Mapping[str, str]] = None) -> Optional[Credentials]:
    """Returns AWS credentials, or ``None`` when the clustered path must be skipped.

    Both the access key and the secret are required; an empty value counts as absent.
    """
    environ = os.environ if environ is None else environ
    access_key = (environ.get("AWS_ACCESS_KEY_ID") or "").strip()
    secret_key = (environ.get("AWS_SECRET_ACCESS_KEY") or "").strip()
    if not access_key or not secret_key:
        return None

    session_token = (environ.get("AWS_SESSION_TOKEN") or "").strip() or None
    return Credentials(
        access_key_id=access_key,
        secret_access_key=secret_key,
        session_token=session_token,
    )
