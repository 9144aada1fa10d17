import logging
from typing import Optional
from urllib.parse import quote
from fastapi import APIRouter, Body, HTTPException, Query, Request, Response
from starlette.concurrency import run_in_threadpool
from kobo_insights.core.config import get_settings
from kobo_insights.core.rate_limit import analysis_rate_limit, limiter
from kobo_insights.core.schemas import (
    AnalysisResult,
    AnalyzeRequest,
    ColumnSelection,
    Dataset,
    DatasetPayload,
)
from kobo_insights.core.errors import AnalysisError, DatasetNotFound, ErrorCodes, get_error_response
from kobo_insights.core.sanitization import sanitize_for_logging, validate_identifier
from kobo_insights.services import repository
from kobo_insights.services.analysis import analyze_dataset
from kobo_insights.services.exporter import SUPPORTED_FORMATS, export_dataset

logger = logging.getLogger(__name__)

router = APIRouter()


def http_error(request: Request, status_code: int, error_code: str, additional_detail: Optional[str] = None) -> HTTPException:
    """HTTPException carrying the user-facing error payload and correlation id."""
    error_info = get_error_response(error_code, additional_detail)
    error_info['correlation_id'] = getattr(request.state, 'correlation_id', 'unknown')
    return HTTPException(status_code=status_code, detail=error_info)


def check_dataset_id(request: Request, dataset_id: str):
    if not validate_identifier(dataset_id):
        raise http_error(request, 400, ErrorCodes.INVALID_DATASET, "The project id contains unsupported characters.")


def load_dataset(request: Request, dataset_id: str) -> Dataset:
    check_dataset_id(request, dataset_id)
    try:
        return repository.get_dataset(dataset_id)
    except DatasetNotFound:
        raise http_error(request, 404, ErrorCodes.DATASET_NOT_FOUND)


@router.get("/health")
async def health_check():
    return {"status": "ok"}


@router.put("/datasets/{dataset_id}", response_model=Dataset)
async def upsert_dataset(dataset_id: str, payload: DatasetPayload, request: Request):
    """Store (or overwrite) the submissions of a project."""
    check_dataset_id(request, dataset_id)
    max_records = get_settings().max_records_per_request
    if len(payload.records) > max_records:
        raise http_error(request, 413, ErrorCodes.INVALID_DATASET, f"At most {max_records} submissions are accepted.")
    return repository.save_dataset(dataset_id, payload.records, name=payload.name, columns=payload.columns)


@router.get("/datasets/{dataset_id}", response_model=Dataset)
async def get_dataset(dataset_id: str, request: Request):
    return load_dataset(request, dataset_id)


@router.put("/datasets/{dataset_id}/columns", response_model=Dataset)
async def select_columns(dataset_id: str, selection: ColumnSelection, request: Request):
    """Save which columns the user wants to analyze and export."""
    load_dataset(request, dataset_id)
    try:
        return repository.select_columns(dataset_id, selection.selected_columns)
    except ValueError as e:
        raise http_error(request, 400, ErrorCodes.INVALID_DATASET, str(e))


async def _run_analysis(request: Request, dataset_id: str, body: Optional[AnalyzeRequest], store_log: bool = True) -> AnalysisResult:
    """
    Analyze posted records, or the stored dataset when none are posted.

    Posted records under an id with no stored dataset are never logged.
    """
    check_dataset_id(request, dataset_id)
    if body is not None and body.records is not None:
        records, columns = body.records, body.columns
        store_log = store_log and repository.dataset_exists(dataset_id)
    else:
        dataset = load_dataset(request, dataset_id)
        records = dataset.records
        columns = (body.columns if body else None) or dataset.selected_columns or dataset.available_columns

    try:
        return await run_in_threadpool(analyze_dataset, dataset_id, records, columns, store_log)
    except AnalysisError as e:
        raise http_error(request, 400, ErrorCodes.INVALID_DATASET, str(e))


@router.post("/datasets/{dataset_id}/analyze", response_model=AnalysisResult)
@limiter.limit(analysis_rate_limit)
async def analyze(dataset_id: str, request: Request, body: Optional[AnalyzeRequest] = Body(default=None)):
    """
    Run the smart analysis and replace the project's auto-generated charts.

    Charts are only saved for stored projects; posted records under an
    unknown id are analyzed without saving anything.
    Rate limited per IP address (configurable).
    """
    try:
        result = await _run_analysis(request, dataset_id, body)
        if repository.dataset_exists(dataset_id):
            repository.replace_auto_charts(dataset_id, result.suggestions)
        return result
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unexpected error analyzing {sanitize_for_logging(dataset_id)}: {e}", exc_info=True)
        raise http_error(request, 500, ErrorCodes.PROCESSING_ERROR)


@router.post("/datasets/{dataset_id}/quality")
async def data_quality(dataset_id: str, request: Request, body: Optional[AnalyzeRequest] = Body(default=None)):
    """Data quality report and domain insights without saving charts."""
    result = await _run_analysis(request, dataset_id, body, store_log=False)
    return {
        "data_quality": result.data_quality,
        "domain_insights": result.domain_insights,
        "total_records": result.total_records,
    }


@router.get("/datasets/{dataset_id}/analysis-logs")
async def analysis_logs(dataset_id: str, request: Request, limit: int = Query(10, ge=1, le=100)):
    check_dataset_id(request, dataset_id)
    return {
        "logs": repository.get_analysis_logs(dataset_id, limit=limit),
        "stats": repository.get_analysis_stats(dataset_id),
    }


@router.get("/datasets/{dataset_id}/export")
async def export(
    dataset_id: str,
    request: Request,
    format: str = Query("csv"),
    include_all_columns: bool = Query(False),
):
    """Download the project's submissions as CSV, Excel or JSON."""
    if format.lower() not in SUPPORTED_FORMATS:
        raise http_error(request, 400, ErrorCodes.UNSUPPORTED_EXPORT_FORMAT)

    dataset = load_dataset(request, dataset_id)
    if not dataset.records:
        raise http_error(request, 400, ErrorCodes.NO_SUBMISSIONS)

    exported = await run_in_threadpool(export_dataset, dataset, format, include_all_columns)
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(exported.filename)}"},
    )
