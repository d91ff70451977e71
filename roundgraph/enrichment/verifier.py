"""
Website verification.

A candidate URL is fetched (browser User-Agent, 6s timeout) and handed to a
WebVerificationOracle that decides whether the page belongs to the entity.

- Unreachable pages, HTTP errors and bodies under 100 chars count as
  unavailable and are skipped, never raised.
- Pages whose title + meta description + body text is under 50 chars are
  rejected without asking the oracle (parked domains, JS-only shells).
- Candidates are fetched in parallel batches of 5 and verified one by one,
  stopping at the first match.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from ..analyst.oracle import OracleError, call_structured, create_llm_client
from ..common.http_client import create_fetch_client
from ..common.url_utils import ensure_scheme, get_domain, is_valid_website_url
from ..config.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

MIN_PAGE_CHARS = 100
MIN_CONTENT_CHARS = 50

_WHITESPACE = re.compile(r"\s+")
_STRIP_TAGS = ["nav", "footer", "script", "style", "noscript", "aside"]


@dataclass
class FetchedPage:
    url: str
    html: str


@dataclass
class Rejection:
    url: str
    reason: str


@dataclass
class VerifyOutcome:
    """First verified page (if any) plus every candidate turned down on the way."""
    found: Optional[FetchedPage] = None
    rejections: List[Rejection] = field(default_factory=list)


@dataclass
class PageSummary:
    title: str
    meta_description: str
    body_text: str

    @property
    def content_length(self) -> int:
        return len((self.title + self.meta_description + self.body_text).strip())


class VerificationResult(BaseModel):
    """Oracle verdict on one website."""
    match: bool = Field(description="True only if the website belongs to the named entity")
    reason: str = Field(default="unknown", description="Brief explanation")


class WebVerificationOracle(Protocol):
    async def verify(
        self,
        entity_name: str,
        url: str,
        html: str,
        context: str,
        entity_type: str = "company",
    ) -> VerificationResult:
        ...


# =============================================================================
# HTML
# =============================================================================

def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def _meta_description(soup: BeautifulSoup) -> str:
    tag = soup.find("meta", attrs={"name": "description"}) or soup.find("meta", attrs={"property": "og:description"})
    return _collapse(tag.get("content", "")) if tag else ""


def summarize_page(html: str, body_chars: int = 1500) -> PageSummary:
    """Title, meta description and visible body text of a page."""
    soup = BeautifulSoup(html, "lxml")
    title = _collapse(soup.title.get_text()) if soup.title else ""
    meta = _meta_description(soup)
    for tag in soup(_STRIP_TAGS):
        tag.decompose()
    body = soup.body.get_text(" ") if soup.body else soup.get_text(" ")
    return PageSummary(title=title, meta_description=meta, body_text=_collapse(body)[:body_chars])


def scrape_page_text(html: str, body_chars: int = 2000) -> str:
    """
    Extraction input for an entity's own website: meta description,
    JSON-LD organisation facts, LinkedIn links and the visible body text.
    """
    soup = BeautifulSoup(html, "lxml")
    parts: List[str] = []

    meta = _meta_description(soup)
    if meta:
        parts.append(f"Description: {meta}")

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or "")
        except (TypeError, ValueError):
            continue
        obj = data[0] if isinstance(data, list) and data else data
        if not isinstance(obj, dict):
            continue
        if obj.get("foundingDate"):
            parts.append(f"Founded: {obj['foundingDate']}")
        employees = obj.get("numberOfEmployees")
        if isinstance(employees, dict) and employees.get("value"):
            parts.append(f"Employees: {employees['value']}")
        same_as = obj.get("sameAs") or []
        for link in same_as if isinstance(same_as, list) else [same_as]:
            if isinstance(link, str) and "linkedin.com" in link:
                parts.append(f"LinkedIn: {link}")

    for a in soup.select('a[href*="linkedin.com/company"]'):
        parts.append(f"LinkedIn: {a['href']}")

    for tag in soup(_STRIP_TAGS + ["header"]):
        tag.decompose()
    body = _collapse(soup.body.get_text(" ") if soup.body else soup.get_text(" "))[:body_chars]
    if body:
        parts.append(f"Page content: {body}")

    return "\n\n".join(parts)


def strip_html(html: Optional[str]) -> str:
    """Plain text of an HTML fragment (article bodies)."""
    if not html:
        return ""
    return _collapse(BeautifulSoup(html, "lxml").get_text(" "))


# =============================================================================
# FETCH
# =============================================================================

async def fetch_page(client: httpx.AsyncClient, url: str) -> Optional[FetchedPage]:
    """GET a page; None when unreachable, non-2xx or near-empty."""
    full_url = ensure_scheme(url)
    try:
        response = await client.get(full_url)
    except httpx.HTTPError as e:
        logger.warning(f"Fetch failed for {full_url}: {type(e).__name__}: {e}")
        return None
    if response.status_code >= 400:
        logger.debug(f"Fetch {full_url} returned HTTP {response.status_code}")
        return None
    html = response.text
    if len(html) < MIN_PAGE_CHARS:
        logger.debug(f"Fetch {full_url} returned only {len(html)} chars")
        return None
    return FetchedPage(url=full_url, html=html)


# =============================================================================
# ORACLE
# =============================================================================

VERIFY_SYSTEM_PROMPT = "You verify whether a website belongs to a specific entity."


def build_verification_prompt(entity_name: str, entity_type: str, url: str, page: PageSummary, context: str) -> str:
    type_label = "investment firm / VC" if entity_type == "investor" else "company / startup"
    return f"""Does this website belong to the {type_label} "{entity_name}"?

Website URL: {url}
Page title: {page.title}
Meta description: {page.meta_description}
Page content (excerpt): {page.body_text[:800]}

What we know about "{entity_name}" from news articles:
{context[:600]}

Check:
1. Does the website content describe the SAME entity as in the articles?
2. Does the business/product described on the website match what we know from articles?
3. Is this a real company website (not a parked domain, placeholder, or unrelated site)?"""


class LLMWebVerifier:
    """
    Claude-backed WebVerificationOracle.

    Unavailable or malformed answers count as "no match": a wrong website is
    worse than a missing one.
    """

    def __init__(self, config: Optional[Settings] = None, client=None):
        self.config = config or default_settings
        self.client = client if client is not None else create_llm_client(self.config)

    async def verify(
        self,
        entity_name: str,
        url: str,
        html: str,
        context: str,
        entity_type: str = "company",
    ) -> VerificationResult:
        page = summarize_page(html)
        if page.content_length < MIN_CONTENT_CHARS:
            return VerificationResult(
                match=False,
                reason="Page has almost no content (likely a redirect, parked domain, or JS-only SPA)",
            )

        try:
            result = await call_structured(
                self.client,
                self.config,
                system=VERIFY_SYSTEM_PROMPT,
                messages=[{
                    "role": "user",
                    "content": build_verification_prompt(entity_name, entity_type, url, page, context),
                }],
                response_model=VerificationResult,
                max_tokens=150,
                context=f"verify {get_domain(url)}",
            )
        except OracleError as e:
            logger.warning(f"Verification of {url} unparseable, rejecting: {e}")
            return VerificationResult(match=False, reason="Verification failed (unparseable response)")

        if result is None:
            return VerificationResult(match=False, reason="Verification unavailable")
        return result


async def validate_and_verify(
    candidates: Sequence[str],
    entity_name: str,
    verifier: WebVerificationOracle,
    context: str = "",
    entity_type: str = "company",
    client: Optional[httpx.AsyncClient] = None,
    batch_size: Optional[int] = None,
    timeout: Optional[float] = None,
) -> VerifyOutcome:
    """
    Return the first candidate whose page the verifier accepts.

    Args:
        candidates: URLs in priority order (invalid/social URLs are dropped)
        entity_name: Display name of the entity
        verifier: WebVerificationOracle
        context: What the articles say about the entity
        entity_type: "company" or "investor"
        client: Shared HTTP client (one is created when omitted)
        batch_size: Parallel fetches per batch (default settings.verify_batch_size)
        timeout: Fetch timeout (default settings.verify_fetch_timeout)
    """
    batch_size = batch_size or default_settings.verify_batch_size
    urls = [u for u in candidates if is_valid_website_url(u)]
    outcome = VerifyOutcome()
    if not urls:
        return outcome

    owns_client = client is None
    if owns_client:
        client = create_fetch_client(timeout=timeout or default_settings.verify_fetch_timeout)

    try:
        for i in range(0, len(urls), batch_size):
            batch = urls[i:i + batch_size]
            pages = await asyncio.gather(*(fetch_page(client, url) for url in batch))

            for url, page in zip(batch, pages):
                if page is None:
                    outcome.rejections.append(Rejection(url, "URL unreachable or empty page"))
                    continue
                verdict = await verifier.verify(entity_name, page.url, page.html, context, entity_type=entity_type)
                if verdict.match:
                    logger.info(f"Verified {get_domain(page.url)} for {entity_name!r}")
                    outcome.found = page
                    return outcome
                logger.info(f"Rejected {get_domain(url)} for {entity_name!r}: {verdict.reason}")
                outcome.rejections.append(Rejection(url, verdict.reason))
    finally:
        if owns_client:
            await client.aclose()

    return outcome
