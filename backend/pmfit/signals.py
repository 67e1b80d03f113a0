"""
PM-Fit Backend - Keyword Market Signals

Turns an idea into a handful of search keywords, runs one queued search per
keyword, and scores each keyword's interest from what came back. A keyword
whose search failed gets a deterministic synthetic signal instead, flagged so
the dashboard can label it.
"""

import hashlib
import re

from pmfit.config import log
from pmfit.models import KeywordSignal
from pmfit.search import SearchResult, SearchService


STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "up", "about", "into", "through", "during", "before",
    "after", "above", "below", "between", "under", "that", "this", "these",
    "those", "will", "would", "could", "should", "may", "might", "must", "can",
    "is", "are", "was", "were", "been", "being", "have", "has", "had", "do",
    "does", "did",
}

MAX_KEYWORDS = 5
RESULTS_PER_KEYWORD = 5


def extract_keywords(idea: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """Pick up to `limit` short search phrases from free-form idea text.

    Domain phrases ("AI ...", "startup ...", "... tools") come first, then
    adjacent word pairs in reading order. Falls back to single words when the
    idea is too short to form pairs.
    """
    lowered = idea.lower()
    tokens = re.sub(r"[^\w\s]", " ", lowered).split()
    words = [w for w in tokens if len(w) > 2 and w not in STOP_WORDS]

    phrases: list[str] = []

    def _add(phrase: str) -> None:
        if phrase and phrase not in phrases and len(phrases) < limit:
            phrases.append(phrase)

    if "ai" in tokens:
        _add("AI " + next((w for w in words if w != "ai"), "tools"))
    if "startup" in words:
        _add("startup " + next((w for w in words if w != "startup"), "tools"))
    if "tool" in words or "tools" in words:
        subject = next((w for w in words if w not in ("tool", "tools")), None)
        if subject:
            _add(f"{subject} tools")

    for first, second in zip(words, words[1:]):
        _add(f"{first} {second}")

    if not phrases:
        for word in words:
            _add(word)
    return phrases


def interest_score(results: list[SearchResult], requested: int = RESULTS_PER_KEYWORD) -> int:
    """0-100 interest from how full the result page was and how rich the snippets are."""
    if not results:
        return 0
    coverage = min(len(results), requested) / requested
    richness = sum(min(len(r.snippet), 200) for r in results) / (200 * len(results))
    return round(100 * (0.7 * coverage + 0.3 * richness))


def synthetic_signal(keyword: str) -> KeywordSignal:
    """Stable placeholder signal: the same keyword always yields the same numbers."""
    seed = int(hashlib.sha256(keyword.encode()).hexdigest()[:8], 16)
    return KeywordSignal(
        keyword=keyword,
        result_count=0,
        interest=40 + seed % 41,
        top_results=[],
        synthetic=True,
    )


async def build_keyword_signals(search_service: SearchService, keywords: list[str]) -> list[KeywordSignal]:
    """Search every keyword through the queue. Failed keywords fall back to synthetic data."""
    found = await search_service.search_keywords(keywords, num_results=RESULTS_PER_KEYWORD)

    signals: list[KeywordSignal] = []
    for keyword in keywords:
        results = found.get(keyword)
        if results is None:
            log("WARN", "keyword search failed, using synthetic signal", keyword=keyword)
            signals.append(synthetic_signal(keyword))
            continue
        signals.append(
            KeywordSignal(
                keyword=keyword,
                result_count=len(results),
                interest=interest_score(results),
                top_results=[{"title": r.title, "url": r.url} for r in results[:3]],
            )
        )
    return signals
