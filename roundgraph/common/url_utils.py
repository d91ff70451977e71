"""
Shared URL validation and sanitization utilities.

Used by the enrichment pipelines (website discovery/verification) and by
the oracle output models so a placeholder like "n/a" never reaches the graph.
"""

import re
from typing import Iterable, Optional
from urllib.parse import urlparse

# Invalid placeholder values that LLMs sometimes generate
INVALID_URL_PLACEHOLDERS = {
    "not mentioned", "not specified", "unknown", "n/a", "none", "",
    "<unknown>", "null", "undefined", "n.a.", "na",
    "not available", "not provided", "tbd", "tba", "pending",
    "no website", "no url", "unavailable", "not found",
}

# Patterns that indicate placeholder text (for substring matching)
PLACEHOLDER_PATTERNS = ["not mentioned", "not specified", "unknown", "n/a", "unavailable"]

# Domains that must never be stored as a company/investor website
NOT_A_WEBSITE_DOMAINS = {
    # Social media
    "linkedin.com", "twitter.com", "x.com", "facebook.com", "instagram.com",
    "youtube.com", "tiktok.com",
    # Content platforms / code hosting
    "github.com", "medium.com", "substack.com",
    # Data providers
    "crunchbase.com", "pitchbook.com", "dealroom.co", "wikipedia.org",
}

# News / aggregator / big-tech domains never treated as an entity's own site
# when mining article bodies for candidate links
NEWS_DOMAINS = {
    "techcrunch.com", "bloomberg.com", "reuters.com", "cnbc.com", "bbc.com",
    "theguardian.com", "nytimes.com", "wsj.com", "ft.com", "forbes.com",
    "venturebeat.com", "wired.com", "arstechnica.com", "theverge.com",
    "sifted.eu", "eu-startups.com", "tech.eu", "handelsblatt.com",
    "gruenderszene.de", "t3n.de", "businessinsider.com", "businessinsider.de",
    "pitchbook.com", "crunchbase.com", "dealroom.co", "cbinsights.com",
    "twitter.com", "x.com", "facebook.com", "instagram.com", "youtube.com",
    "medium.com", "substack.com", "github.com", "wikipedia.org",
    "google.com", "apple.com", "amazon.com", "microsoft.com",
}

# LinkedIn company page URL pattern (require 2+ char slug)
LINKEDIN_COMPANY_PATTERN = re.compile(
    r'^https?://(?:[a-z]{2,3}\.)?(?:www\.)?linkedin\.com/company/[a-zA-Z0-9_%-]{2,}(?:/.*)?(?:\?.*)?$',
    re.IGNORECASE,
)

# Valid URL pattern (basic structure check)
VALID_URL_PATTERN = re.compile(
    r'^https?://[a-zA-Z0-9][a-zA-Z0-9.-]+\.[a-zA-Z]{2,}(?::\d+)?(?:/.*)?$'
)

# href="https://..." attributes and bare URLs in article bodies
_HREF_PATTERN = re.compile(r'href=["\']?(https?://[^"\'\s>]+)', re.IGNORECASE)
_BARE_URL_PATTERN = re.compile(r'(https?://[^\s<"\']+)', re.IGNORECASE)


def ensure_scheme(url: str) -> str:
    """Prefix bare domains ("acme.io", "www.acme.io") with https://."""
    url = url.strip()
    if url.lower().startswith(("http://", "https://")):
        return url
    return "https://" + url


def get_domain(url: Optional[str]) -> str:
    """
    Hostname without a leading "www.", or "" if the URL cannot be parsed.

    Examples:
        >>> get_domain("https://www.acme.io/about")
        'acme.io'
        >>> get_domain("acme.io")
        'acme.io'
    """
    if not url:
        return ""
    try:
        host = urlparse(ensure_scheme(url)).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def _domain_in(domain: str, blocked: Iterable[str]) -> bool:
    return any(domain == b or domain.endswith("." + b) for b in blocked)


def is_valid_website_url(url: Optional[str]) -> bool:
    """
    Check if URL is valid for a company or investor website.

    Rejects placeholders, social media, data providers and anything
    without a parseable domain. Bare domains
    ("acme.io") are accepted.
    """
    if not url:
        return False
    candidate = url.strip()
    if candidate.lower() in INVALID_URL_PLACEHOLDERS:
        return False

    domain = get_domain(candidate)
    if not domain or "." not in domain:
        return False
    if _domain_in(domain, NOT_A_WEBSITE_DOMAINS):
        return False

    return VALID_URL_PATTERN.match(ensure_scheme(candidate)) is not None


def is_valid_linkedin_company(url: Optional[str]) -> bool:
    """
    Check if URL is a valid LinkedIn company page URL.

    Requires:
    - linkedin.com/company/ path
    - Slug at least 2 characters
    """
    if not url:
        return False

    return LINKEDIN_COMPANY_PATTERN.match(url.strip()) is not None


def sanitize_url(url: Optional[str]) -> Optional[str]:
    """
    Sanitize URL - return None if invalid, normalized URL otherwise.

    Normalizations applied:
    - Strip whitespace
    - Add https:// to bare domains and www. prefixes
    - Normalize http:// to https://

    Examples:
        >>> sanitize_url("www.example.com")
        'https://www.example.com'
        >>> sanitize_url("Not mentioned")
    """
    if not url:
        return None
    url = url.strip()
    if url.lower() in INVALID_URL_PLACEHOLDERS:
        return None
    if any(p in url.lower() for p in PLACEHOLDER_PATTERNS):
        return None

    url = ensure_scheme(url)
    if url.lower().startswith("http://"):
        url = "https://" + url[7:]

    return url if VALID_URL_PATTERN.match(url) else None


def extract_candidate_urls(contents: Iterable[tuple[str, Optional[str]]]) -> list[str]:
    """
    Collect outbound links from article bodies as website candidates.

    Args:
        contents: (article_url, article_html) pairs

    Returns:
        De-duplicated URLs in first-seen order, excluding news/social
        domains and the articles' own domains
    """
    pairs = list(contents)
    source_domains = {get_domain(article_url) for article_url, _ in pairs}
    seen: dict[str, None] = {}

    for _, html in pairs:
        if not html:
            continue
        for match in _HREF_PATTERN.finditer(html):
            seen.setdefault(match.group(1).rstrip("'\"> "), None)
        for match in _BARE_URL_PATTERN.finditer(html):
            seen.setdefault(match.group(1).rstrip(".,;:)"), None)

    result = []
    for url in seen:
        domain = get_domain(url)
        if not domain:
            continue
        if _domain_in(domain, NEWS_DOMAINS):
            continue
        if domain in source_domains:
            continue
        result.append(url)
    return result
