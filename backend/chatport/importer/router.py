"""Import API routes."""

from fastapi import APIRouter, Depends, Form, HTTPException, Query, UploadFile
from pydantic import ValidationError

from chatport.importer.errors import ExportValidationError, RunFinishedError, RunNotFoundError
from chatport.importer.schemas import (
    ImportConfig,
    ImportPreviewResponse,
    ImportRunResponse,
    ImportStartedResponse,
)
from chatport.importer.service import ImportService

router = APIRouter(prefix="/api/import", tags=["import"])


def get_import_service() -> ImportService:
    """Dependency placeholder, overridden at startup."""
    raise RuntimeError("ImportService not configured")


@router.post("/preview")
async def preview_import(
    file: UploadFile,
    format: str | None = Query(None),
    service: ImportService = Depends(get_import_service),
) -> ImportPreviewResponse:
    """Parse uploaded file and return preview without creating anything."""
    content = await file.read()
    try:
        return await service.preview(content, file.filename, format)
    except ExportValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.post("", status_code=202)
async def start_import(
    file: UploadFile,
    config: str | None = Form(None),
    format: str | None = Query(None),
    service: ImportService = Depends(get_import_service),
) -> ImportStartedResponse:
    """Start importing an uploaded export. Poll GET /api/import/{run_id}."""
    try:
        import_config = ImportConfig.model_validate_json(config) if config else ImportConfig()
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False)) from e

    content = await file.read()
    try:
        return await service.start(content, file.filename, import_config, format_hint=format)
    except ExportValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.get("")
async def list_imports(
    limit: int = Query(50, ge=1, le=500),
    service: ImportService = Depends(get_import_service),
) -> list[ImportRunResponse]:
    return await service.list_runs(limit)


@router.get("/{run_id}")
async def get_import(
    run_id: str,
    service: ImportService = Depends(get_import_service),
) -> ImportRunResponse:
    run = await service.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Import run not found")
    return run


@router.post("/{run_id}/cancel", status_code=202)
async def cancel_import(
    run_id: str,
    service: ImportService = Depends(get_import_service),
) -> dict:
    try:
        await service.cancel(run_id)
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail="Import run not found") from e
    except RunFinishedError as e:
        raise HTTPException(status_code=409, detail="Import run already finished") from e
    return {"run_id": run_id, "cancel_requested": True}
