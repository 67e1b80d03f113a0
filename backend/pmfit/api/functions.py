"""
PM-Fit Backend - Function Invocation API

POST /api/functions/{name}           invoke one upstream function through the queue
POST /api/functions/batch            invoke several, results in request order
POST /api/functions/{name}/prefetch  fire-and-forget cache warm-up
GET  /api/queue/status               queue counters
"""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request, status

from pmfit.api.deps import get_request_queue, limiter
from pmfit.config import generate_error_code, log
from pmfit.models import (
    BatchInvokeRequest,
    BatchInvokeResponse,
    BatchInvokeResult,
    InvokeRequest,
    InvokeResponse,
    QueueStatus,
)
from pmfit.queue import RequestQueue, is_retryable

router = APIRouter(prefix="/api", tags=["functions"])

INVOKE_RATE_LIMIT = "60/minute"
BATCH_RATE_LIMIT = "10/minute"


def _upstream_error(name: str, error: Exception) -> HTTPException:
    """Map a final invocation error to an HTTP error carrying a traceable code.

    Transient failures (exhausted retries) → 502. Permanent failures keep the
    upstream 4xx when there is one, else 400.
    """
    code = generate_error_code()
    log("ERROR", "function invocation failed", function=name, error=str(error), error_code=code)

    status_code = status.HTTP_502_BAD_GATEWAY
    if not is_retryable(error):
        upstream = getattr(error, "status_code", None)
        status_code = upstream if upstream and 400 <= upstream < 500 else status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=status_code, detail={"message": str(error), "error_code": code})


@router.get("/queue/status", response_model=QueueStatus)
async def queue_status(queue: RequestQueue = Depends(get_request_queue)) -> QueueStatus:
    return queue.status()


@router.post("/functions/batch", response_model=BatchInvokeResponse)
@limiter.limit(BATCH_RATE_LIMIT)
async def invoke_batch(
    request: Request,
    body: BatchInvokeRequest,
    queue: RequestQueue = Depends(get_request_queue),
) -> BatchInvokeResponse:
    """
    POST /api/functions/batch

    Every call is queued at once; the queue's concurrency ceiling decides how
    many reach the upstream together. One failed call does not fail the batch.
    """
    futures = [queue.invoke_function(call.name, call.payload) for call in body.calls]
    outcomes = await asyncio.gather(*futures, return_exceptions=True)

    results = []
    for call, outcome in zip(body.calls, outcomes):
        if isinstance(outcome, Exception):
            code = generate_error_code()
            log("WARN", "batch item failed", function=call.name, error=str(outcome), error_code=code)
            results.append(BatchInvokeResult(name=call.name, ok=False, error=str(outcome), error_code=code))
        else:
            results.append(BatchInvokeResult(name=call.name, ok=True, data=outcome))
    return BatchInvokeResponse(results=results)


@router.post("/functions/{name}", response_model=InvokeResponse)
@limiter.limit(INVOKE_RATE_LIMIT)
async def invoke_function(
    request: Request,
    name: str,
    body: InvokeRequest,
    queue: RequestQueue = Depends(get_request_queue),
) -> InvokeResponse:
    """
    POST /api/functions/{name}

    Body: { "payload": {...} }
    Returns: { "name": str, "data": <upstream JSON> }
    """
    try:
        data = await queue.invoke_function(name, body.payload)
    except Exception as e:
        # FunctionCallError, or whatever else the invoker raised after retries
        raise _upstream_error(name, e) from e
    return InvokeResponse(name=name, data=data)


@router.post("/functions/{name}/prefetch", status_code=status.HTTP_202_ACCEPTED)
async def prefetch_function(
    name: str,
    body: InvokeRequest,
    queue: RequestQueue = Depends(get_request_queue),
) -> dict:
    """
    POST /api/functions/{name}/prefetch

    Queues the call at lowest priority and returns immediately. Failures are
    logged, never reported back.
    """
    queue.prefetch_related(name, body.payload)
    return {"name": name, "queued": True}
