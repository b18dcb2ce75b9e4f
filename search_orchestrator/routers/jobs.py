from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from search_orchestrator.dependencies import get_broadcaster, get_job_processor, get_job_service
from search_orchestrator.errors import InvalidJobStateError, InvalidSearchConfigError, JobNotFoundError
from search_orchestrator.jobs.processor import JobProcessor
from search_orchestrator.jobs.search_job_service import SearchJobService
from search_orchestrator.models import (
    TERMINAL_STATUSES,
    CreateJobParams,
    CreateJobRequest,
    CreateJobResponse,
    JobStatusResponse,
    SearchJob,
)
from search_orchestrator.services.progress import ProgressBroadcaster

router = APIRouter(prefix='/jobs', tags=['jobs'])

TERMINAL_EVENTS = {'completed', 'failed'}
HEARTBEAT_SECONDS = 15.0


async def _owned_job(job_id: str, user_id: int, service: SearchJobService) -> SearchJob:
    job = await service.get_job(job_id, user_id)
    if job is None:
        raise HTTPException(status_code=404, detail='Job not found')
    return job


@router.post('', response_model=CreateJobResponse, status_code=201)
async def create_job(
    request: CreateJobRequest,
    service: SearchJobService = Depends(get_job_service),
    processor: JobProcessor = Depends(get_job_processor),
) -> CreateJobResponse:
    params = CreateJobParams(**request.model_dump(exclude={'execute_now'}))
    try:
        job_id = await service.create_job(params)
    except InvalidSearchConfigError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    if request.execute_now:
        processor.submit(job_id)

    job = await service.get_job(job_id, request.user_id)
    return CreateJobResponse(job_id=job_id, status=job.status)


@router.get('', response_model=list[JobStatusResponse])
async def list_jobs(
    user_id: int,
    limit: int = Query(default=10, ge=1, le=100),
    service: SearchJobService = Depends(get_job_service),
) -> list[JobStatusResponse]:
    jobs = await service.list_jobs(user_id, limit)
    return [JobStatusResponse.from_job(job) for job in jobs]


@router.get('/{job_id}', response_model=JobStatusResponse)
async def get_job(job_id: str, user_id: int, service: SearchJobService = Depends(get_job_service)) -> JobStatusResponse:
    return JobStatusResponse.from_job(await _owned_job(job_id, user_id, service))


@router.post('/{job_id}/cancel', response_model=JobStatusResponse)
async def cancel_job(job_id: str, user_id: int, service: SearchJobService = Depends(get_job_service)) -> JobStatusResponse:
    await _owned_job(job_id, user_id, service)
    try:
        job = await service.cancel_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return JobStatusResponse.from_job(job)


@router.post('/{job_id}/retry', response_model=JobStatusResponse)
async def retry_job(job_id: str, user_id: int, service: SearchJobService = Depends(get_job_service)) -> JobStatusResponse:
    await _owned_job(job_id, user_id, service)
    try:
        job = await service.retry_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return JobStatusResponse.from_job(job)


@router.get('/{job_id}/events')
async def stream_job_events(
    job_id: str,
    user_id: int,
    service: SearchJobService = Depends(get_job_service),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster),
) -> StreamingResponse:
    job = await _owned_job(job_id, user_id, service)
    return StreamingResponse(
        _event_stream(job, service, broadcaster),
        media_type='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'Connection': 'keep-alive'},
    )


async def _event_stream(job: SearchJob, service: SearchJobService, broadcaster: ProgressBroadcaster) -> AsyncIterator[str]:
    queue = broadcaster.subscribe(job.job_id)
    try:
        # re-read after subscribing so a job that finished in between still ends the stream
        job = await service.get_job(job.job_id, job.user_id) or job
        yield _sse('connected', {'job_id': job.job_id, 'status': job.status.value})
        if job.status in TERMINAL_STATUSES:
            yield _sse(job.status.value, {'job_id': job.job_id, 'result_count': job.result_count, 'error': job.error})
            return

        while True:
            try:
                item = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
            except asyncio.TimeoutError:
                yield ': heartbeat\n\n'
                continue
            yield _sse(item['event'], item['data'])
            if item['event'] in TERMINAL_EVENTS:
                return
    finally:
        broadcaster.unsubscribe(job.job_id, queue)


def _sse(event: str, data: dict) -> str:
    return f'event: {event}\ndata: {json.dumps(data, default=str)}\n\n'
