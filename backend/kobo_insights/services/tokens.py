"""
Registry of KoboToolbox API tokens.

Tokens live in the storage backend under ``token:<id>``. The full value is
only read back by the sync code; everything shown to clients goes through
``KoboTokenInfo``, which carries an 8-character preview instead.
"""
import logging
import uuid
from typing import List, Optional

from kobo_insights.core.errors import TokenNotFound
from kobo_insights.core.schemas import KoboToken, KoboTokenInfo
from kobo_insights.core.storage import get_storage
from kobo_insights.services import repository
from kobo_insights.services.values import utc_now_iso

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 8


def _token_key(token_id: str) -> str:
    return f"token:{token_id}"


def token_preview(token: str) -> str:
    return f"{token[:PREVIEW_LENGTH]}..."


def public(token: KoboToken) -> KoboTokenInfo:
    return KoboTokenInfo(**token.model_dump(exclude={"token"}))


def add_token(token: str, name: Optional[str] = None) -> KoboToken:
    """
    Store a new API token.

    Raises:
        ValueError: If the token is blank
    """
    token = token.strip()
    if not token:
        raise ValueError("API token is required")

    created_at = utc_now_iso()
    record = KoboToken(
        id=uuid.uuid4().hex,
        name=(name or "").strip() or f"Token {created_at[:19]}",
        token=token,
        token_preview=token_preview(token),
        created_at=created_at,
    )
    get_storage().set(_token_key(record.id), record.model_dump())
    logger.info(f"Stored API token {record.id} ({record.token_preview})")
    return record


def get_token(token_id: str) -> KoboToken:
    data = get_storage().get(_token_key(token_id))
    if not data:
        raise TokenNotFound(token_id)
    return KoboToken(**data)


def list_tokens() -> List[KoboToken]:
    """All stored tokens, newest first."""
    storage = get_storage()
    tokens = [KoboToken(**data) for data in (storage.get(key) for key in storage.keys("token:")) if data]
    return sorted(tokens, key=lambda t: t.created_at, reverse=True)


def rename_token(token_id: str, name: str) -> KoboToken:
    """
    Raises:
        TokenNotFound: If the token id is unknown
        ValueError: If the new name is blank
    """
    name = name.strip()
    if not name:
        raise ValueError("Token name is required")
    token = get_token(token_id).model_copy(update={"name": name})
    get_storage().set(_token_key(token_id), token.model_dump())
    return token


def delete_token(token_id: str) -> KoboToken:
    """Remove a token and turn off auto-sync for the projects that used it."""
    token = get_token(token_id)
    get_storage().delete(_token_key(token_id))
    detached = repository.detach_token(token_id)
    logger.info(f"Deleted API token {token_id}; auto-sync disabled on {detached} projects")
    return token
