"""
Packages router
FastAPI routes for generating, validating, exporting and importing .ccz packages
"""
import logging
import shutil
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile
from fastapi.responses import FileResponse

from config import BUILD_DIR, EXPORTS_DIR
from forge.pipeline import ContentGenerator, ForgePipeline
from forge.schemas import PipelineResult
from models import GenerateRequest, ImportInstructions, ImportRequest, RunAccepted, RunStatusResponse
from services import event_service, forge_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["packages"])


def get_pipeline() -> ForgePipeline:
    return ForgePipeline()


def get_generator() -> Optional[ContentGenerator]:
    """None lets the service build the default LLM generator"""
    return None


def get_exports_dir() -> Path:
    return EXPORTS_DIR


def run_generation_task(run_id: str, request: GenerateRequest, pipeline: ForgePipeline, generator) -> None:
    """Background task: full generate/validate loop for one run"""
    event_service.set_status(run_id, event_service.RunStatus.RUNNING)
    if request.maxAttempts:
        pipeline.max_attempts = request.maxAttempts
    try:
        result = forge_service.generate_package(
            request.context,
            progress_callback=event_service.progress_sink(run_id),
            generator=generator,
            pipeline=pipeline,
            app_name=request.appName,
        )
    except Exception as e:
        logger.exception(f"[Packages] Run {run_id} crashed")
        result = PipelineResult(success=False, errors=[str(e)], message=f"Run crashed: {e}")
    event_service.complete_run(run_id, result)


@router.post("/packages/validate", response_model=PipelineResult)
def validate_package(
    file: UploadFile = File(...),
    pipeline: ForgePipeline = Depends(get_pipeline),
):
    """Upload a .ccz and run it through parse / auto-fix / validate / export"""
    filename = Path(file.filename or "upload.ccz").name or "upload.ccz"
    upload_dir = BUILD_DIR / "uploads" / uuid.uuid4().hex
    upload_path = upload_dir / filename
    try:
        try:
            upload_dir.mkdir(parents=True, exist_ok=True)
            with open(upload_path, "wb") as out:
                shutil.copyfileobj(file.file, out)
        except OSError as e:
            raise HTTPException(status_code=500, detail=f"Could not store upload: {e}")

        return forge_service.validate_uploaded_package(upload_path, pipeline=pipeline, discard_source=True)
    finally:
        _remove_upload_dir(upload_dir)


def _remove_upload_dir(upload_dir: Path) -> None:
    try:
        shutil.rmtree(upload_dir)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"[Packages] Could not remove upload dir {upload_dir}: {e}")


@router.post("/packages/generate", response_model=RunAccepted, status_code=202)
async def generate_package(
    request: GenerateRequest,
    background_tasks: BackgroundTasks,
    pipeline: ForgePipeline = Depends(get_pipeline),
    generator=Depends(get_generator),
):
    """Start a generation run in the background"""
    run_id = event_service.create_run("generate")
    background_tasks.add_task(run_generation_task, run_id, request, pipeline, generator)
    return RunAccepted(runId=run_id, status=event_service.RunStatus.QUEUED)


@router.get("/runs/{run_id}", response_model=RunStatusResponse)
async def get_run(run_id: str):
    run = event_service.get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    return RunStatusResponse(
        runId=run["runId"],
        kind=run["kind"],
        status=run["status"],
        events=run["events"],
        result=run["result"],
    )


@router.get("/exports/{filename}")
async def download_export(filename: str, exports_dir: Path = Depends(get_exports_dir)):
    """Download an exported .ccz or .json"""
    if Path(filename).name != filename or filename.startswith("."):
        raise HTTPException(status_code=400, detail="Invalid file name")

    file_path = exports_dir / filename
    if not file_path.is_file():
        raise HTTPException(status_code=404, detail="File not found")

    media_type = "application/json" if file_path.suffix == ".json" else "application/zip"
    return FileResponse(path=file_path, filename=filename, media_type=media_type)


@router.post("/packages/import", response_model=ImportInstructions)
async def import_package(request: ImportRequest, exports_dir: Path = Depends(get_exports_dir)):
    """Prepare the CommCare HQ import hand-off for a JSON file in the exports directory"""
    json_path = Path(request.jsonPath).resolve()
    if json_path.parent != exports_dir.resolve() or json_path.suffix != ".json":
        raise HTTPException(status_code=400, detail="jsonPath must name a .json export in the exports directory")

    try:
        return forge_service.initiate_import(json_path, request.server, request.domain)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
