# src/livepreview/api/routes.py
"""
HTTP routes for live previews.

Handlers read the ``LivePreviewService`` from ``request.app.state.service``
and translate ``LivePreviewError`` subclasses into HTTP status codes.
"""

import logging

from fastapi import APIRouter, HTTPException, Query, Request, status

from ..exceptions import (
    AllocationError,
    BuildError,
    LivePreviewError,
    NotFoundError,
    RuntimeStartError,
    SnapshotError,
)
from ..models import PreviewOptions
from ..service import LivePreviewService
from .models import (
    ContainerInfoResponse,
    CreatePreviewRequest,
    ErrorAnalysisResponse,
    ExecRequest,
    ExecResponse,
    LogsResponse,
    MessageResponse,
    PreviewListResponse,
    PreviewResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def status_for(error: LivePreviewError) -> int:
    """Map a live preview error to an HTTP status code."""
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, SnapshotError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, AllocationError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(error, (BuildError, RuntimeStartError)):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _raise_http(error: LivePreviewError) -> None:
    code = status_for(error)
    if code >= 500:
        logger.error(f"Live preview request failed: {error}")
    raise HTTPException(status_code=code, detail=error.to_dict()) from error


def get_service(request: Request) -> LivePreviewService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        logger.error("Live preview service not found in app state")
        raise HTTPException(status_code=503, detail="Live preview service is not available")
    return service


@router.post("/{project_id}", response_model=PreviewResponse, status_code=status.HTTP_201_CREATED)
async def create_preview(
    project_id: str, request: Request, body: CreatePreviewRequest | None = None
) -> PreviewResponse:
    """Start a preview for a project, or return the one already running."""
    service = get_service(request)
    body = body or CreatePreviewRequest()
    options = PreviewOptions(auto_cleanup=body.auto_cleanup, timeout_minutes=body.timeout_minutes)
    try:
        sandbox = await service.create_preview(project_id, user_id=body.user_id, options=options)
    except LivePreviewError as e:
        _raise_http(e)
    return PreviewResponse(preview=sandbox.to_dict())


@router.get("/", response_model=PreviewListResponse)
async def list_previews(request: Request) -> PreviewListResponse:
    service = get_service(request)
    previews = [s.to_dict(include_logs=False) for s in service.list_previews()]
    return PreviewListResponse(previews=previews, count=len(previews))


@router.get("/{project_id}", response_model=PreviewResponse)
async def get_preview(project_id: str, request: Request) -> PreviewResponse:
    service = get_service(request)
    try:
        sandbox = await service.get_preview(project_id)
    except LivePreviewError as e:
        _raise_http(e)
    return PreviewResponse(preview=sandbox.to_dict())


@router.put("/{project_id}", response_model=PreviewResponse)
async def update_preview(project_id: str, request: Request) -> PreviewResponse:
    """Sync the project's current files into its preview."""
    service = get_service(request)
    try:
        sandbox = await service.update_preview(project_id)
    except LivePreviewError as e:
        _raise_http(e)
    return PreviewResponse(preview=sandbox.to_dict())


@router.delete("/{project_id}", response_model=MessageResponse)
async def stop_preview(project_id: str, request: Request) -> MessageResponse:
    service = get_service(request)
    try:
        await service.stop_preview(project_id)
    except LivePreviewError as e:
        _raise_http(e)
    return MessageResponse(message=f"Preview for project {project_id} stopped")


@router.get("/containers/{runtime_handle}/logs", response_model=LogsResponse)
async def get_container_logs(
    runtime_handle: str, request: Request, tail: int | None = Query(default=None, ge=1)
) -> LogsResponse:
    service = get_service(request)
    try:
        logs = await service.get_container_logs(runtime_handle, tail=tail)
    except LivePreviewError as e:
        _raise_http(e)
    return LogsResponse(runtime_handle=runtime_handle, logs=logs)


@router.post("/containers/{runtime_handle}/exec", response_model=ExecResponse)
async def execute_in_container(
    runtime_handle: str, body: ExecRequest, request: Request
) -> ExecResponse:
    service = get_service(request)
    try:
        output = await service.execute_in_container(runtime_handle, body.command)
    except LivePreviewError as e:
        _raise_http(e)
    return ExecResponse(runtime_handle=runtime_handle, command=body.command, output=output)


@router.get("/containers/{runtime_handle}", response_model=ContainerInfoResponse)
async def get_container_info(runtime_handle: str, request: Request) -> ContainerInfoResponse:
    service = get_service(request)
    try:
        info = await service.get_container_info(runtime_handle)
    except LivePreviewError as e:
        _raise_http(e)
    return ContainerInfoResponse(container=info)


@router.post("/containers/{runtime_handle}/errors/detect", response_model=ErrorAnalysisResponse)
async def detect_errors(runtime_handle: str, request: Request) -> ErrorAnalysisResponse:
    """Scan the container's logs now."""
    service = get_service(request)
    try:
        analysis = await service.detect_errors(runtime_handle)
    except LivePreviewError as e:
        _raise_http(e)
    return ErrorAnalysisResponse(runtime_handle=runtime_handle, analysis=analysis.to_dict())


@router.get("/containers/{runtime_handle}/errors", response_model=ErrorAnalysisResponse)
async def get_error_analysis(runtime_handle: str, request: Request) -> ErrorAnalysisResponse:
    service = get_service(request)
    try:
        analysis = await service.get_error_analysis(runtime_handle)
    except LivePreviewError as e:
        _raise_http(e)
    return ErrorAnalysisResponse(runtime_handle=runtime_handle, analysis=analysis.to_dict())
