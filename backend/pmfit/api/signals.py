"""
PM-Fit Backend - Market Signals API (POST /api/signals)

Extracts keywords from an idea, searches each one through the shared queue,
and returns per-keyword signals. Keywords whose search failed come back as
synthetic signals rather than errors.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from pmfit.api.deps import get_search_service, limiter
from pmfit.config import log
from pmfit.models import SignalsRequest, SignalsResponse
from pmfit.search import SearchService
from pmfit.signals import build_keyword_signals, extract_keywords

router = APIRouter(prefix="/api/signals", tags=["signals"])

SIGNALS_RATE_LIMIT = "20/minute"


@router.post("", response_model=SignalsResponse)
@limiter.limit(SIGNALS_RATE_LIMIT)
async def market_signals(
    request: Request,
    body: SignalsRequest,
    search_service: SearchService = Depends(get_search_service),
) -> SignalsResponse:
    """
    POST /api/signals

    Body: { "idea": str, "keywords": [str] | null }
    Returns: { "idea", "keywords", "signals": [KeywordSignal], "synthetic_count" }
    """
    keywords = [k.strip() for k in body.keywords or [] if k.strip()] or extract_keywords(body.idea)
    if not keywords:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Could not extract any keywords from the idea",
        )

    log("INFO", "signals requested", keywords=",".join(keywords))
    signals = await build_keyword_signals(search_service, keywords)
    synthetic_count = sum(1 for s in signals if s.synthetic)
    return SignalsResponse(idea=body.idea, keywords=keywords, signals=signals, synthetic_count=synthetic_count)
