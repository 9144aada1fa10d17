"""
KoboToolbox endpoints: list a token's projects, sync one into storage and
manage its auto-sync schedule.
"""
import logging
from typing import Optional, Tuple
from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool
from kobo_insights.api.routes import check_dataset_id, http_error, load_dataset
from kobo_insights.core.errors import ErrorCodes, KoboAPIError, SyncInProgress, TokenNotFound
from kobo_insights.core.schemas import AutoSyncUpdate, Dataset, KoboTokenRequest
from kobo_insights.services import repository, tokens
from kobo_insights.services.autosync import get_auto_sync
from kobo_insights.services.kobo import KoboClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/kobo")


def _kobo_error(request: Request, error: KoboAPIError):
    logger.warning(f"KoboToolbox request failed: {error}")
    status_code = 401 if error.status_code in (401, 403) or "HTML" in str(error) else 502
    return http_error(request, status_code, ErrorCodes.KOBO_API_ERROR, str(error))


def _stored_token(request: Request, token_id: str):
    try:
        return tokens.get_token(token_id)
    except TokenNotFound:
        raise http_error(request, 404, ErrorCodes.TOKEN_NOT_FOUND)


def _client(request: Request, payload: KoboTokenRequest) -> Tuple[KoboClient, Optional[str]]:
    """Client for a raw token, or for a stored token id (also returned)."""
    if payload.token:
        return KoboClient(payload.token), None
    return KoboClient(_stored_token(request, payload.token_id).token), payload.token_id


def _schedule(dataset: Dataset):
    return dataset.model_dump(include={"dataset_id", *repository.AUTO_SYNC_FIELDS})


@router.post("/projects")
async def list_projects(payload: KoboTokenRequest, request: Request):
    """Projects visible to the token, each with its submissions."""
    client, _ = _client(request, payload)
    try:
        projects = await run_in_threadpool(client.fetch_projects)
    except KoboAPIError as e:
        raise _kobo_error(request, e)
    return {"success": True, "projects": projects, "total_projects": len(projects)}


@router.post("/projects/{asset_uid}/sync", response_model=Dataset)
async def sync(asset_uid: str, payload: KoboTokenRequest, request: Request):
    """
    Fetch one project's submissions and store them (overwrites previous sync).

    Syncing with a stored token id links the project to that token.
    """
    check_dataset_id(request, asset_uid)
    client, token_id = _client(request, payload)
    try:
        return await run_in_threadpool(get_auto_sync().sync_now, client, asset_uid, payload.project_name, token_id)
    except SyncInProgress:
        raise http_error(request, 409, ErrorCodes.SYNC_IN_PROGRESS)
    except KoboAPIError as e:
        raise _kobo_error(request, e)


@router.put("/projects/{asset_uid}/auto-sync")
async def configure_auto_sync(asset_uid: str, update: AutoSyncUpdate, request: Request):
    """Turn periodic re-syncing of a stored project on or off."""
    load_dataset(request, asset_uid)
    if update.token_id:
        _stored_token(request, update.token_id)
    try:
        dataset = repository.configure_auto_sync(asset_uid, update.enabled, update.interval_minutes, update.token_id)
    except ValueError as e:
        raise http_error(request, 400, ErrorCodes.INVALID_TOKEN, str(e))
    return _schedule(dataset)


@router.get("/auto-sync/status")
async def auto_sync_status():
    return await run_in_threadpool(get_auto_sync().status)


@router.post("/auto-sync/run")
async def run_auto_sync():
    """Sync every due project now instead of waiting for the next poll."""
    return await run_in_threadpool(get_auto_sync().run_due_syncs)
