"""
Chart config endpoints: list, render, edit, toggle and delete saved charts,
plus a stateless render for ad-hoc configurations.
"""
import logging
from typing import List
from fastapi import APIRouter, Query, Request
from starlette.concurrency import run_in_threadpool
from kobo_insights.api.routes import check_dataset_id, http_error, load_dataset
from kobo_insights.core.errors import ChartNotFound, ChartRenderError, ErrorCodes
from kobo_insights.core.schemas import ChartConfigRecord, ChartConfigUpdate, ChartData, RenderRequest
from kobo_insights.services import repository
from kobo_insights.services.renderer import render_chart

logger = logging.getLogger(__name__)

router = APIRouter()


def _chart_or_404(request: Request, chart_id: str) -> ChartConfigRecord:
    try:
        return repository.get_chart(chart_id)
    except ChartNotFound:
        raise http_error(request, 404, ErrorCodes.CHART_NOT_FOUND)


@router.get("/datasets/{dataset_id}/charts", response_model=List[ChartConfigRecord])
async def list_charts(dataset_id: str, request: Request, enabled_only: bool = Query(False)):
    check_dataset_id(request, dataset_id)
    return repository.list_charts(dataset_id, enabled_only=enabled_only)


@router.delete("/datasets/{dataset_id}/charts")
async def delete_dataset_charts(dataset_id: str, request: Request, auto_generated_only: bool = Query(False)):
    check_dataset_id(request, dataset_id)
    deleted = repository.delete_dataset_charts(dataset_id, auto_generated_only=auto_generated_only)
    return {"deleted": deleted}


@router.post("/charts/render", response_model=ChartData)
async def render(payload: RenderRequest, request: Request):
    """Render a chart configuration against posted records without saving anything."""
    try:
        return await run_in_threadpool(render_chart, payload.chart_type, payload.configuration, payload.records)
    except ChartRenderError as e:
        raise http_error(request, 400, ErrorCodes.INVALID_CHART_CONFIG, str(e))


@router.get("/charts/{chart_id}/data", response_model=ChartData)
async def chart_data(chart_id: str, request: Request):
    """Render a saved chart against its project's stored submissions."""
    chart = _chart_or_404(request, chart_id)
    dataset = load_dataset(request, chart.dataset_id)
    try:
        data = await run_in_threadpool(render_chart, chart.chart_type, chart.configuration, dataset.records)
    except ChartRenderError as e:
        raise http_error(request, 400, ErrorCodes.INVALID_CHART_CONFIG, str(e))
    data.metadata["chart_id"] = chart.id
    data.metadata["name"] = chart.name
    return data


@router.patch("/charts/{chart_id}", response_model=ChartConfigRecord)
async def update_chart(chart_id: str, update: ChartConfigUpdate, request: Request):
    try:
        return repository.update_chart(chart_id, update)
    except ChartNotFound:
        raise http_error(request, 404, ErrorCodes.CHART_NOT_FOUND)


@router.post("/charts/{chart_id}/toggle", response_model=ChartConfigRecord)
async def toggle_chart(chart_id: str, request: Request):
    try:
        return repository.toggle_chart(chart_id)
    except ChartNotFound:
        raise http_error(request, 404, ErrorCodes.CHART_NOT_FOUND)


@router.delete("/charts/{chart_id}")
async def delete_chart(chart_id: str, request: Request):
    try:
        repository.delete_chart(chart_id)
    except ChartNotFound:
        raise http_error(request, 404, ErrorCodes.CHART_NOT_FOUND)
    logger.info(f"Deleted chart {chart_id}")
    return {"deleted": True}
