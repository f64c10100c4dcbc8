from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool

from pdf_parser.parsing import DoclingParsingEngine, ParseJobRecord, ParseJobState, PDFParser

from api.dependencies import (
    build_job_id,
    build_worker,
    build_worker_config,
    get_queue,
    get_repo,
    get_services,
    get_storage,
)

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _job_view(job: ParseJobRecord) -> dict:
    return {
        "id": job.id,
        "file_path": job.file_path,
        "state": job.state,
        "error_message": job.error_message,
        "output_path": job.output_path,
        "started_at": job.started_at,
        "updated_at": job.updated_at,
    }


@router.post("")
def submit_job(
    background_tasks: BackgroundTasks,
    file_path: str = Form(...),
    write_raw_text: bool = Form(False),
    write_fields_types: bool = Form(False),
):
    repo = get_repo()
    job_id = build_job_id(file_path)
    job = ParseJobRecord(
        id=job_id,
        file_path=file_path,
        state=ParseJobState.QUEUED,
        updated_at=datetime.utcnow(),
        config_json={"write_raw_text": write_raw_text, "write_fields_types": write_fields_types},
    )
    repo.save_job(job)

    config = build_worker_config(write_raw_text=write_raw_text, write_fields_types=write_fields_types)
    queue = get_queue()
    if queue is not None:
        queue.enqueue_parse_job(job_id, config)
    else:
        background_tasks.add_task(_run_job, job_id, config)
    return {"job_id": job_id, "state": job.state}


def _run_job(job_id: str, config) -> None:
    build_worker(config).run_job(job_id)


@router.get("/{job_id}")
def get_job(job_id: str):
    job = get_repo().get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return _job_view(job)


@router.get("/{job_id}/output")
def get_job_output(job_id: str):
    job = get_repo().get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    if job.state != ParseJobState.COMPLETED:
        raise HTTPException(status_code=409, detail=f"Job {job_id} is {job.state.value}")
    output = get_storage().read_output(job_id)
    if output is None:
        raise HTTPException(status_code=404, detail=f"Output missing on disk for job {job_id}")
    return output


@router.post("/parse")
async def parse_upload(file: UploadFile = File(...), password: str = Form(None)):
    """Parse an uploaded PDF in-process and return the ``formImage`` payload."""
    if file.content_type not in ("application/pdf", "application/octet-stream"):
        raise HTTPException(status_code=400, detail="Only PDF uploads are supported")
    payload = await file.read()
    if not payload:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    # DocumentConverter setup is blocking
    engine = await run_in_threadpool(DoclingParsingEngine)
    parser = PDFParser(password=password, engine=engine, services=get_services())
    try:
        outcome = await parser.parse_buffer(payload)
    finally:
        parser.destroy()
    if not outcome.ok:
        raise HTTPException(status_code=422, detail=str(outcome.parser_error))
    return outcome.payload
