"""
Stored KoboToolbox API tokens. Responses only ever carry the token preview.
"""
import logging
from typing import List
from fastapi import APIRouter, Request
from kobo_insights.api.routes import http_error
from kobo_insights.core.errors import ErrorCodes, TokenNotFound
from kobo_insights.core.schemas import KoboTokenInfo, TokenCreate, TokenUpdate
from kobo_insights.services import tokens

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tokens")


@router.get("", response_model=List[KoboTokenInfo])
async def list_tokens():
    return [tokens.public(t) for t in tokens.list_tokens()]


@router.post("", response_model=KoboTokenInfo)
async def add_token(payload: TokenCreate, request: Request):
    try:
        return tokens.public(tokens.add_token(payload.token, payload.name))
    except ValueError as e:
        raise http_error(request, 400, ErrorCodes.INVALID_TOKEN, str(e))


@router.put("/{token_id}", response_model=KoboTokenInfo)
async def rename_token(token_id: str, payload: TokenUpdate, request: Request):
    try:
        return tokens.public(tokens.rename_token(token_id, payload.name))
    except TokenNotFound:
        raise http_error(request, 404, ErrorCodes.TOKEN_NOT_FOUND)
    except ValueError as e:
        raise http_error(request, 400, ErrorCodes.INVALID_TOKEN, str(e))


@router.delete("/{token_id}", response_model=KoboTokenInfo)
async def delete_token(token_id: str, request: Request):
    """Delete a token; projects that auto-synced with it stop doing so."""
    try:
        return tokens.public(tokens.delete_token(token_id))
    except TokenNotFound:
        raise http_error(request, 404, ErrorCodes.TOKEN_NOT_FOUND)
