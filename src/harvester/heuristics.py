"""
Pure success-candidate and company-name heuristics, one set per source.

Nothing here performs I/O: collectors call these with fields pulled off their
source payloads, and tests call them directly with literal values.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional


# =============================================================================
# Keyword tables
# =============================================================================

HN_STARTUP_KEYWORDS = [
    "startup", "funded", "raised", "series a", "series b", "series c",
    "venture capital", "vc", "seed round", "funding", "investment",
    "unicorn", "ipo", "acquisition", "acquired", "launch", "launching",
    "show hn", "new startup", "my startup", "our startup", "founder",
    "co-founder", "entrepreneur", "bootstrapped", "saas", "mvp",
    "product hunt", "beta launch", "soft launch", "public launch",
]

HN_SUCCESS_KEYWORDS = [
    "raised", "funding", "series", "million", "billion", "acquired",
    "acquisition", "ipo", "unicorn", "growth", "milestone", "success",
    "profitable", "revenue", "users", "customers", "exit",
]

PH_SUCCESS_KEYWORDS = [
    "raised", "funding", "series", "million", "growth", "users",
    "revenue", "milestone", "acquisition", "unicorn", "ipo",
]

GITHUB_SUCCESS_KEYWORDS = [
    "production", "used by", "companies", "enterprise", "scale",
    "millions", "popular", "leading", "industry", "standard",
]

RSS_STARTUP_KEYWORDS = [
    "startup", "entrepreneur", "founder", "co-founder", "tech company",
    "saas", "platform", "app launch", "product launch", "mvp",
    "venture", "innovation", "disrupt", "scale", "growth hack",
]

RSS_SUCCESS_KEYWORDS = [
    "raised", "funding", "million", "billion", "unicorn", "ipo",
    "acquisition", "acquired", "breakthrough", "milestone", "success",
    "profitable", "revenue", "growth", "expansion", "exit",
    "valuation", "series", "round", "investment",
]

FUNDING_NEWS_KEYWORDS = [
    "raised", "raises", "funding", "series a", "series b", "series c", "seed round",
    "venture capital", "investment", "valuation", "million", "billion",
    "unicorn", "ipo", "acquisition", "acquired", "exit",
]

# Engagement floors
HN_SCORE_FLOOR = 100
HN_COMMENTS_FLOOR = 50
PH_VOTES_FLOOR = 100
PH_COMMENTS_FLOOR = 20
GITHUB_STARS_FLOOR = 100
GITHUB_MIN_DESCRIPTION = 20
GITHUB_ACTIVE_DAYS = 30

# Generic words that are never company names
COMMON_WORDS = frozenset({
    "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
    "by", "from", "up", "about", "into", "through", "during", "before",
    "after", "above", "below", "between", "among", "within", "without",
    "this", "that", "these", "those", "is", "are", "was", "were", "be",
    "been", "being", "have", "has", "had", "do", "does", "did", "will",
    "would", "could", "should", "may", "might", "can", "must", "shall",
    "app", "api", "sdk", "tool", "library", "framework", "platform",
    "service", "product", "startup", "company", "inc", "llc", "corp",
    "here", "how", "why", "what", "when", "where", "new", "best", "top",
    "most", "all", "ask hn", "show hn", "tell hn",
})

# GitHub-style usernames that belong to people rather than companies
PERSONAL_ACCOUNT_PATTERNS = [
    re.compile(r"^\w+\d+$"),
    re.compile(r"^(mr|ms|dr)[-_]?\w+", re.IGNORECASE),
    re.compile(r"\d{4}$"),
    re.compile(r"^[a-z]+[_-][a-z]+$"),
    re.compile(r"^[a-z]+\.[a-z]+$"),
    re.compile(r"^[a-z]+\d+[a-z]+\d*$"),
]


def has_keyword(text: Optional[str], keywords: Iterable[str]) -> bool:
    """True if any keyword starts a word in text (case-insensitive)."""
    if not text:
        return False
    lowered = text.lower()
    return any(re.search(r"\b" + re.escape(kw), lowered) for kw in keywords)


def looks_like_personal_account(name: str) -> bool:
    return any(p.search(name) for p in PERSONAL_ACCOUNT_PATTERNS)


def is_plausible_name(name: Optional[str], min_len: int = 2, max_len: int = 50) -> bool:
    """Length within bounds, starts with a letter, not a stoplisted word."""
    if not name:
        return False
    name = name.strip()
    if not (min_len <= len(name) <= max_len):
        return False
    if not name[0].isalpha():
        return False
    return name.lower() not in COMMON_WORDS


# =============================================================================
# Hacker News
# =============================================================================

HN_NAME_PATTERNS = [
    re.compile(r"show hn[:\s]+([^(\[\-–—:,]+)", re.IGNORECASE),
    re.compile(r"^([^(\[\-–—]+?)(?:\s+\(|\s+\[|\s+[-–—])"),
    re.compile(r"([a-z]+(?:\.[a-z]+)*)\s+(?:raised|acquired|launches?)", re.IGNORECASE),
]


def is_hn_startup_related(title: str, text: Optional[str] = None) -> bool:
    return has_keyword(f"{title} {text or ''}", HN_STARTUP_KEYWORDS)


def is_hn_success_candidate(score: int, comments: int, title: str, text: Optional[str] = None) -> bool:
    """High engagement AND a success keyword."""
    engaged = (score or 0) > HN_SCORE_FLOOR or (comments or 0) > HN_COMMENTS_FLOOR
    return engaged and has_keyword(f"{title} {text or ''}", HN_SUCCESS_KEYWORDS)


def extract_hn_company_name(title: str) -> Optional[str]:
    """
    Extract the company from an HN title.

    "Show HN: Acme – we raised $2M seed" -> "Acme"
    "Stripe (YC S09) raises Series H" -> "Stripe"
    """
    if not title:
        return None
    for pattern in HN_NAME_PATTERNS:
        match = pattern.search(title)
        if match:
            name = match.group(1).strip()
            if 2 < len(name) < 50 and name.lower() not in COMMON_WORDS:
                return name
    return None


# =============================================================================
# Product Hunt
# =============================================================================

def is_ph_success_candidate(votes: int, comments: int, tagline: str = "", description: str = "") -> bool:
    """High engagement OR a success keyword in tagline/description."""
    if (votes or 0) > PH_VOTES_FLOOR or (comments or 0) > PH_COMMENTS_FLOOR:
        return True
    return has_keyword(f"{tagline} {description}", PH_SUCCESS_KEYWORDS)


def extract_ph_company_name(name: str) -> Optional[str]:
    """Product Hunt posts are named after the product; keep it when plausible."""
    if not name:
        return None
    # "Acme 2.0" / "Acme for Teams" launches still belong to Acme
    base = re.split(r"\s+(?:\d+(?:\.\d+)*|for\s+\w+)$", name.strip(), maxsplit=1)[0]
    return base if is_plausible_name(base) else None


# =============================================================================
# GitHub
# =============================================================================

_NAME = r"([A-Z][a-zA-Z0-9 &]+?)"
GITHUB_DESCRIPTION_PATTERNS = [
    # Attribution words match any case; the name itself must be capitalized
    re.compile(r"(?i:developed|created|powered)\s+(?i:by)\s+" + _NAME + r"(?:\s+inc|\.|,|$)"),
    re.compile(r"\b(?i:by)\s+" + _NAME + r"(?:\s+inc|\.|,|$)"),
    re.compile(r"\b(?i:from)\s+" + _NAME + r"(?:\s+inc|\.|,|$)"),
    re.compile(_NAME + r"'s\s+(?:platform|tool|service|app)"),
]
GITHUB_TRADEMARK_PATTERNS = [
    re.compile(_NAME + r"\s*™"),
    re.compile(_NAME + r"\s*®"),
    re.compile(_NAME + r"\s*Inc\."),
    re.compile(_NAME + r"\s*LLC"),
    re.compile(_NAME + r"\s*Corp\."),
]


def is_valid_repo_company_name(name: Optional[str]) -> bool:
    return is_plausible_name(name) and not looks_like_personal_account(name.strip())


def is_github_success_candidate(
    stars: int,
    description: Optional[str],
    updated_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> bool:
    """(Many stars OR production keywords) AND real description AND recently active."""
    if not description or len(description) <= GITHUB_MIN_DESCRIPTION:
        return False
    if updated_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    if updated_at < now - timedelta(days=GITHUB_ACTIVE_DAYS):
        return False
    return (stars or 0) > GITHUB_STARS_FLOOR or has_keyword(description, GITHUB_SUCCESS_KEYWORDS)


def extract_github_company_name(description: Optional[str], repo_name: str, owner: str) -> Optional[str]:
    """Description attributions, then trademark markers, then repo name, then a non-personal owner."""
    if description:
        for pattern in GITHUB_DESCRIPTION_PATTERNS + GITHUB_TRADEMARK_PATTERNS:
            match = pattern.search(description)
            if match:
                candidate = match.group(1).strip()
                if is_valid_repo_company_name(candidate):
                    return candidate

    if is_valid_repo_company_name(repo_name):
        return repo_name
    if owner and is_valid_repo_company_name(owner):
        return owner
    return None


# =============================================================================
# RSS / news feeds
# =============================================================================

RSS_NAME_PATTERNS = [
    re.compile(r"([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)\s+(?:raised|raises|announces|launches|acquired)"),
    re.compile(r"^([^:]+):"),
    re.compile(r"([A-Z][a-z]+)\s+CEO"),
    re.compile(r"startup\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)", re.IGNORECASE),
]


def is_rss_startup_related(title: str, description: str = "") -> bool:
    return has_keyword(f"{title} {description}", RSS_STARTUP_KEYWORDS)


def is_rss_success_candidate(title: str, description: str = "") -> bool:
    return has_keyword(f"{title} {description}", RSS_SUCCESS_KEYWORDS)


def is_funding_news(title: str, description: str = "") -> bool:
    return has_keyword(f"{title} {description}", FUNDING_NEWS_KEYWORDS)


def extract_rss_company_name(title: str) -> Optional[str]:
    if not title:
        return None
    for pattern in RSS_NAME_PATTERNS:
        match = pattern.search(title)
        if match:
            name = match.group(1).strip()
            if 2 < len(name) < 50 and name.lower() not in COMMON_WORDS:
                return name
    return None
