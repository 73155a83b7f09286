"""
Story Generator - turns accumulated evidence into publishable narratives.

Uses Instructor + Claude for structured analysis of a startup's evidence, and a
plain text-generation service for funding stories, headlines and tags.

Every entry point returns a result instead of raising:
- Narrative: sanitized output ready to validate and store
- GenerationFailure: the call failed, timed out, was throttled or did not parse

Callers that always need something to store use narrative_or_fallback().
Funding stories never fail once the amount clears the floor: the prose falls
back to a template built from the known facts.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

import httpx
import instructor
from anthropic import APIError, APITimeoutError, AsyncAnthropic, RateLimitError
from instructor.core import InstructorRetryException
from pydantic import ValidationError

from ..common.rate_limiter import RateLimiterRegistry, Throttled
from ..config.settings import settings
from ..harvester.scrapers.funding import extract_amount, extract_valuation, format_amount
from .schemas import SignalReport, StoryAnalysis, StoryType, SuccessSignal

logger = logging.getLogger(__name__)

MAX_TITLE = 200
MAX_SUMMARY = 500
MAX_CONTENT = 5000
MAX_TAGS = 10
MAX_HEADLINE = 99
MAX_SECTION_CHARS = 4000

DEFAULT_TAGS = ["startup", "technology", "innovation"]
DEFAULT_HEADLINE = "Startup Success Story"
UNTITLED_TITLE = "Untitled Story"
LLM_RESOURCE = "llm"

SYSTEM_PROMPT = """You are an expert startup analyst and content writer. Analyze the provided data about a startup and determine if it represents a success story worth featuring.

Be objective. Look for concrete evidence of success: funding rounds, user growth, market traction, product launches, recognition, revenue growth, team expansion.

RULES:
- Only use facts that appear in the supplied data. Never invent numbers, investors or customers.
- If the evidence is thin or promotional, set is_success_story=false and confidence below 0.5.
- title: under 100 characters, focused on the key achievement
- summary: 100-200 words
- content: 500-1500 words
- tags: 5-8 tags (industry, stage, achievement type, tech stack)
- story_type: one of success, funding, milestone, pivot
- key_metrics: funding (USD), user_growth, revenue (USD); null when not stated

Respond with JSON matching:
{"is_success_story": bool, "confidence": 0-1, "title": str, "summary": str, "content": str,
 "tags": [str], "story_type": str, "key_metrics": {"funding": num|null, "user_growth": num|null, "revenue": num|null}}"""

FUNDING_SYSTEM_PROMPT = """You are a startup journalist writing a short funding announcement story.

Use ONLY the facts supplied. Do not invent investors, customers or metrics.

Respond with JSON: {"title": str (under 100 chars), "summary": str (2-3 sentences), "content": str (300-800 words), "tags": [str]}"""

SOURCE_SECTION_TITLES = {
    "product_hunt": "Product Hunt Data",
    "hacker_news": "Hacker News Data",
    "github": "GitHub Data",
    "rss": "RSS/News Data",
    "funding": "Funding News Data",
    "valuation": "Valuation Data",
    "web_scraping": "Scraped Data",
}

SIGNAL_KEYWORDS = {
    "funding": ["raised", "funding", "series a", "series b", "series c", "seed round", "investment", "backed by"],
    "growth": ["growth", "grew", "doubled", "tripled", "revenue", "arr", "profitable"],
    "traction": ["users", "customers", "downloads", "signups", "waitlist", "stars"],
    "recognition": ["award", "winner", "featured", "product of the day", "top 10", "ranked"],
    "expansion": ["hiring", "expands", "expansion", "new office", "launches in", "acquired", "acquisition"],
}


# =============================================================================
# Result types
# =============================================================================

@dataclass
class Narrative:
    """Sanitized generation output."""
    is_success_story: bool
    confidence: float
    title: str
    summary: str
    content: str
    tags: List[str] = field(default_factory=list)
    story_type: StoryType = StoryType.SUCCESS
    key_metrics: Dict[str, Optional[float]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_success_story": self.is_success_story,
            "confidence": self.confidence,
            "title": self.title,
            "summary": self.summary,
            "content": self.content,
            "tags": list(self.tags),
            "story_type": self.story_type.value,
            "key_metrics": dict(self.key_metrics),
        }


@dataclass
class GenerationFailure:
    """Why a generation call produced nothing usable."""
    company_name: str
    reason: str  # timeout / rate_limited / throttled / api_error / parse_error / empty_response / error
    error: Optional[str] = None


GenerationResult = Union[Narrative, GenerationFailure]


def fallback_narrative(company_name: str) -> Narrative:
    """Deterministic placeholder returned when analysis fails."""
    return Narrative(
        is_success_story=False,
        confidence=0.0,
        title=f"Analysis of {company_name}",
        summary="Unable to analyze startup data due to processing error.",
        content="Data analysis failed. Please review manually.",
        tags=["error", "manual-review"],
        story_type=StoryType.SUCCESS,
        key_metrics={"funding": None, "user_growth": None, "revenue": None},
    )


def narrative_or_fallback(result: GenerationResult) -> Narrative:
    if isinstance(result, GenerationFailure):
        return fallback_narrative(result.company_name)
    return result


def sanitize(analysis: StoryAnalysis) -> Narrative:
    """Apply length caps and tag limits to a parsed analysis.

    Confidence clamping and story-type coercion already happened in the
    schema validators.
    """
    return Narrative(
        is_success_story=bool(analysis.is_success_story),
        confidence=analysis.confidence,
        title=(analysis.title or UNTITLED_TITLE)[:MAX_TITLE],
        summary=analysis.summary[:MAX_SUMMARY],
        content=analysis.content[:MAX_CONTENT],
        tags=analysis.tags[:MAX_TAGS],
        story_type=analysis.story_type,
        key_metrics=analysis.key_metrics.model_dump(),
    )


# =============================================================================
# Prompt helpers
# =============================================================================

def _sanitize_prompt_value(value: str, max_length: int = 500) -> str:
    """Sanitize a value for inclusion in a prompt.

    Strips control characters, breaks code fences and section markers, and
    truncates. Evidence comes from scraped pages, so it is untrusted.
    """
    if not value:
        return ""

    # Keep newlines and tabs
    sanitized = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', value)

    sanitized = sanitized.replace('```', '`\u200b`\u200b`')
    sanitized = sanitized.replace('---', '-\u200b-\u200b-')
    sanitized = re.sub(r'(?i)(SYSTEM|USER|ASSISTANT):', '\\1\u200b:', sanitized)
    sanitized = re.sub(r'(?i)<(/?)(instructions|system|prompt)', '<\\1\u200b\\2', sanitized)

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."
    return sanitized


def _source_payload(source: Any) -> Dict[str, Any]:
    return {
        "url": getattr(source, "source_url", None),
        "extracted_at": str(getattr(source, "extracted_at", "") or ""),
        "data": getattr(source, "raw_data", None) or {},
    }


def build_analysis_prompt(startup: Any, sources: Iterable[Any]) -> str:
    """Group evidence by source type into labeled sections, after a keyword signal scan."""
    name = getattr(startup, "name", "Unknown")
    sources = list(sources)
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for source in sources:
        grouped.setdefault(getattr(source, "source_type", "web_scraping"), []).append(_source_payload(source))

    facts = []
    for label, attr in (
        ("Description", "description"),
        ("Website", "website_url"),
        ("Industry", "industry"),
        ("Location", "location"),
        ("Funding amount", "funding_amount"),
        ("Funding stage", "funding_stage"),
        ("Employees", "employee_count"),
    ):
        value = getattr(startup, attr, None)
        if value:
            facts.append(f"{label}: {_sanitize_prompt_value(str(value), 300)}")

    sections = []
    if facts:
        sections.append("Known Facts:\n" + "\n".join(facts))
    report = detect_success_signals(sources)
    if report.signals:
        sections.append(
            f"Detected Signals (overall {report.overall_score:.2f}):\n"
            + "\n".join(f"- {s.type}: {s.description}" for s in report.signals)
        )
    for source_type, payloads in grouped.items():
        title = SOURCE_SECTION_TITLES.get(source_type, f"{source_type} Data")
        body = json.dumps(payloads, indent=2, default=str)
        sections.append(f"{title}:\n{_sanitize_prompt_value(body, MAX_SECTION_CHARS)}")

    return (
        f"Analyze this data about {_sanitize_prompt_value(name, 100)} to determine if it "
        f"represents a startup success story:\n\n"
        + "\n\n".join(sections)
        + "\n\nLook for evidence of:\n"
        "- Funding rounds or investment\n"
        "- User growth or market traction\n"
        "- Product launches or milestones\n"
        "- Recognition or awards\n"
        "- Revenue growth\n"
        "- Team expansion\n"
        "- Market validation\n\n"
        "Determine if this is a genuine success story and create compelling content if it is."
    )


def build_funding_prompt(name: str, amount: int, stage: str, context: Dict[str, Any]) -> str:
    lines = [
        f"Company: {_sanitize_prompt_value(name, 100)}",
        f"Round: {_sanitize_prompt_value(stage.replace('_', ' '), 50)}",
        f"Amount: {format_amount(amount)}",
    ]
    for key, value in sorted(context.items()):
        if value:
            lines.append(f"{key.replace('_', ' ').title()}: {_sanitize_prompt_value(str(value), 300)}")
    return "Write a funding story from these facts:\n\n" + "\n".join(lines)


def parse_json_object(text: str) -> Dict[str, Any]:
    """Extract the first JSON object from model output.

    Raises ValueError when none parses.
    """
    if not text:
        raise ValueError("empty response")
    cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", text.strip())
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in response")
    data = json.loads(cleaned[start:end + 1])
    if not isinstance(data, dict):
        raise ValueError("response is not a JSON object")
    return data


def funding_template(name: str, amount: int, stage: str, context: Dict[str, Any]) -> Dict[str, Any]:
    """Plain prose from known facts, used when the funding prose call fails."""
    pretty = format_amount(amount)
    if stage and stage != "funding":
        round_name = stage.replace("_", " ").title()
        title = f"{name} Raises {pretty} {round_name}"
        summary = f"{name} has raised {pretty} in a {round_name} round."
    else:
        title = f"{name} Raises {pretty} in Funding"
        summary = f"{name} has raised {pretty} in funding."
    description = context.get("description")
    if description:
        summary += f" {str(description)[:300]}"
    paragraphs = [summary]
    if context.get("industry"):
        paragraphs.append(f"The company operates in {context['industry']}.")
    if context.get("location"):
        paragraphs.append(f"{name} is based in {context['location']}.")
    return {
        "title": title,
        "summary": summary,
        "content": "\n\n".join(paragraphs),
        "tags": list(dict.fromkeys(["funding", stage or "funding", "startup"])),
    }


# =============================================================================
# Text generation services
# =============================================================================

class TextGenerationService(Protocol):
    """Black-box text generator: prompts in, text out. May raise."""

    async def generate(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        ...


class AnthropicTextService:
    """TextGenerationService backed by the Anthropic messages API."""

    def __init__(self, client: Optional[AsyncAnthropic] = None, model: Optional[str] = None):
        self.client = client or AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=httpx.Timeout(settings.llm_timeout, connect=settings.llm_connect_timeout),
            max_retries=settings.llm_max_retries,
        )
        self.model = model or settings.llm_model

    async def generate(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        message = await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        usage = getattr(message, "usage", None)
        if usage is not None:
            logger.debug(f"Claude call tokens: in={usage.input_tokens}, out={usage.output_tokens}")
        return "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )


class StructuredGenerator:
    """Instructor wrapper that parses Claude output straight into StoryAnalysis.

    Transient API errors are retried with backoff; validation failures are not.
    Raises the last error when all attempts fail.
    """

    def __init__(self, client: Optional[AsyncAnthropic] = None, model: Optional[str] = None, max_retries: Optional[int] = None):
        anthropic_client = client or AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=httpx.Timeout(settings.llm_timeout, connect=settings.llm_connect_timeout),
        )
        self.client = instructor.from_anthropic(anthropic_client)
        self.model = model or settings.llm_model
        self.max_retries = settings.llm_max_retries if max_retries is None else max_retries

    async def analyze(self, prompt: str) -> StoryAnalysis:
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                response, completion = await self.client.messages.create_with_completion(
                    model=self.model,
                    max_tokens=settings.llm_max_tokens,
                    temperature=settings.llm_temperature,
                    system=SYSTEM_PROMPT,
                    messages=[{"role": "user", "content": prompt}],
                    response_model=StoryAnalysis,
                )
                if completion and hasattr(completion, "usage"):
                    usage = completion.usage
                    logger.debug(f"Claude call tokens: in={usage.input_tokens}, out={usage.output_tokens}")
                return response

            except APITimeoutError as e:
                last_error = e
                backoff = 2 ** attempt
                logger.warning(
                    f"Claude API timeout (attempt {attempt + 1}/{self.max_retries + 1}, backoff={backoff}s)"
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(backoff)

            except RateLimitError as e:
                last_error = e
                backoff = 10 * (attempt + 1)
                logger.warning(
                    f"Claude API rate limit (attempt {attempt + 1}/{self.max_retries + 1}, backoff={backoff}s): {e}"
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(backoff)

            except APIError as e:
                last_error = e
                logger.error(f"Claude API error (attempt {attempt + 1}/{self.max_retries + 1}): {e}")
                status = getattr(e, "status_code", None) or 0
                if attempt < self.max_retries and status >= 500:
                    await asyncio.sleep(2 ** attempt)
                    continue
                break

        assert last_error is not None
        raise last_error


# =============================================================================
# Content generator
# =============================================================================

class ContentGenerator:
    """
    Produces narratives for the story and funding-story stages.

    Usage:
        generator = ContentGenerator.from_settings(rate_limiter)
        result = await generator.analyze_startup(startup, sources)
        narrative = narrative_or_fallback(result)
    """

    def __init__(
        self,
        text_service: TextGenerationService,
        structured: Optional[StructuredGenerator] = None,
        rate_limiter: Optional[RateLimiterRegistry] = None,
        funding_floor: Optional[int] = None,
        funding_confidence: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.text_service = text_service
        self.structured = structured
        self.rate_limiter = rate_limiter
        self.funding_floor = settings.funding_story_floor if funding_floor is None else funding_floor
        self.funding_confidence = (
            settings.funding_story_confidence if funding_confidence is None else funding_confidence
        )
        # Outer guard; the SDK timeout covers a single request, not its retries
        self.timeout = timeout or settings.llm_timeout * (settings.llm_max_retries + 1)

    @classmethod
    def from_settings(cls, rate_limiter: Optional[RateLimiterRegistry] = None) -> "ContentGenerator":
        return cls(
            text_service=AnthropicTextService(),
            structured=StructuredGenerator(),
            rate_limiter=rate_limiter,
        )

    def _throttled(self, company_name: str) -> Optional[GenerationFailure]:
        if self.rate_limiter is None:
            return None
        outcome = self.rate_limiter.acquire(LLM_RESOURCE, "content_generator")
        if isinstance(outcome, Throttled):
            logger.warning(f"LLM throttled for {company_name}, retry after {outcome.retry_after:.0f}s")
            return GenerationFailure(company_name, "throttled", f"retry after {outcome.retry_after:.0f}s")
        return None

    async def _generate_text(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        return await asyncio.wait_for(
            self.text_service.generate(system, user, temperature, max_tokens),
            timeout=self.timeout,
        )

    async def analyze_startup(self, startup: Any, sources: List[Any]) -> GenerationResult:
        """Analyze a startup's evidence; never raises."""
        name = getattr(startup, "name", None) or "Unknown"
        throttled = self._throttled(name)
        if throttled:
            return throttled

        prompt = build_analysis_prompt(startup, sources)
        try:
            if self.structured is not None:
                analysis = await asyncio.wait_for(self.structured.analyze(prompt), timeout=self.timeout)
            else:
                text = await self._generate_text(
                    SYSTEM_PROMPT, prompt, settings.llm_temperature, settings.llm_max_tokens
                )
                analysis = StoryAnalysis.model_validate(parse_json_object(text))
        except asyncio.TimeoutError:
            logger.warning(f"Story analysis timed out for {name}")
            return GenerationFailure(name, "timeout")
        except InstructorRetryException as e:
            logger.error(f"Instructor validation failed for {name}: {e}")
            return GenerationFailure(name, "parse_error", str(e))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Failed to parse analysis for {name}: {e}")
            return GenerationFailure(name, "parse_error", str(e))
        except RateLimitError as e:
            return GenerationFailure(name, "rate_limited", str(e))
        except APIError as e:
            logger.error(f"Claude API error analyzing {name}: {e}")
            return GenerationFailure(name, "api_error", str(e))
        except Exception as e:
            logger.error(f"Unexpected error analyzing {name}: {type(e).__name__}: {e}")
            return GenerationFailure(name, "error", f"{type(e).__name__}: {e}")

        narrative = sanitize(analysis)
        narrative.key_metrics = merge_key_metrics(narrative.key_metrics, narrative.content)
        logger.info(
            f"Analyzed {name}: success={narrative.is_success_story} "
            f"confidence={narrative.confidence:.2f} type={narrative.story_type.value}"
        )
        return narrative

    async def generate_funding_story(
        self,
        name: str,
        amount: Optional[int],
        stage: Optional[str],
        context: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        """
        Funding narrative for a known round.

        Below the floor the result is a non-story with empty prose. At or above
        the floor the facts alone make it a story: the LLM only writes the
        prose, and a template stands in when that call fails.
        """
        amount = int(amount or 0)
        stage = stage or "funding"
        context = context or {}

        if amount < self.funding_floor:
            logger.debug(f"Funding story skipped for {name}: {amount} below floor {self.funding_floor}")
            return Narrative(
                is_success_story=False,
                confidence=0.0,
                title="",
                summary="",
                content="",
                tags=[],
                story_type=StoryType.FUNDING,
                key_metrics={"funding": float(amount) if amount else None, "user_growth": None, "revenue": None},
            )

        prose: Optional[Dict[str, Any]] = None
        if not self._throttled(name):
            try:
                text = await self._generate_text(
                    FUNDING_SYSTEM_PROMPT,
                    build_funding_prompt(name, amount, stage, context),
                    settings.llm_temperature,
                    settings.llm_max_tokens,
                )
                prose = parse_json_object(text)
            except asyncio.TimeoutError:
                logger.warning(f"Funding story prose timed out for {name}, using template")
            except ValueError as e:
                logger.warning(f"Funding story prose unparseable for {name}: {e}, using template")
            except Exception as e:
                logger.warning(f"Funding story prose failed for {name}: {type(e).__name__}: {e}, using template")

        if not prose or not prose.get("title") or not prose.get("content"):
            prose = funding_template(name, amount, stage, context)

        analysis = StoryAnalysis.model_validate({
            "is_success_story": True,
            "confidence": self.funding_confidence,
            "title": prose.get("title"),
            "summary": prose.get("summary"),
            "content": prose.get("content"),
            "tags": prose.get("tags") or ["funding", stage, "startup"],
            "story_type": StoryType.FUNDING,
            "key_metrics": {"funding": amount},
        })
        return sanitize(analysis)

    async def generate_tags(self, content: str, title: str) -> List[str]:
        """5-8 tags for a story; DEFAULT_TAGS when the call fails."""
        try:
            text = await self._generate_text(
                "Generate 5-8 relevant tags for this startup story. Return a JSON array of strings. "
                "Focus on industry, stage, achievement type, and tech stack.",
                f"Title: {_sanitize_prompt_value(title, 200)}\n\nContent: {_sanitize_prompt_value(content, 3000)}",
                0.3,
                200,
            )
            match = re.search(r"\[.*\]", text or "", re.DOTALL)
            tags = json.loads(match.group(0)) if match else []
            cleaned = [str(t).strip().lower() for t in tags if str(t).strip()]
            return cleaned[:MAX_TAGS] or list(DEFAULT_TAGS)
        except Exception as e:
            logger.warning(f"Error generating tags: {e}")
            return list(DEFAULT_TAGS)

    async def generate_headline(self, summary: str, key_metrics: Optional[Dict[str, Any]] = None) -> str:
        """Headline under 100 characters; DEFAULT_HEADLINE when the call fails."""
        try:
            text = await self._generate_text(
                "Create a compelling headline for this startup success story. Keep it under 100 "
                "characters and focus on the key achievement. Reply with the headline only.",
                f"Summary: {_sanitize_prompt_value(summary, 1000)}\n"
                f"Key Metrics: {json.dumps(key_metrics or {}, default=str)}",
                0.8,
                100,
            )
        except Exception as e:
            logger.warning(f"Error generating headline: {e}")
            return DEFAULT_HEADLINE
        lines = (text or "").strip().splitlines()
        headline = lines[0].strip().strip('"').strip() if lines else ""
        return headline[:MAX_HEADLINE] or DEFAULT_HEADLINE

    async def complete_narrative(self, narrative: Narrative) -> Narrative:
        """
        Fill the gaps of a narrative about to be published.

        Missing tags come from generate_tags and an untitled story gets a
        headline from generate_headline. Both fall back to their defaults, and
        a throttled LLM skips straight to them.
        """
        if narrative.tags and narrative.title != UNTITLED_TITLE:
            return narrative
        if self._throttled(narrative.title):
            narrative.tags = narrative.tags or list(DEFAULT_TAGS)
            if narrative.title == UNTITLED_TITLE:
                narrative.title = DEFAULT_HEADLINE
            return narrative

        if not narrative.tags:
            narrative.tags = await self.generate_tags(narrative.content, narrative.title)
        if narrative.title == UNTITLED_TITLE:
            narrative.title = await self.generate_headline(narrative.summary, narrative.key_metrics)
        return narrative


# =============================================================================
# Pure helpers
# =============================================================================

EMPLOYEE_PATTERN = re.compile(r"(\d[\d,]*)\s+(?:employees|staff|people on the team)", re.IGNORECASE)
USERS_PATTERN = re.compile(r"(\d[\d,.]*)\s*(k|m|million|thousand)?\s+(?:users|customers)", re.IGNORECASE)
REVENUE_PATTERN = re.compile(
    r"\$(\d+(?:\.\d+)?)\s*(k|m|b|million|billion)\b[^.]{0,30}?\b(?:revenue|arr)\b"
    r"|\b(?:revenue|arr)\b[^.$]{0,30}\$(\d+(?:\.\d+)?)\s*(k|m|b|million|billion)\b",
    re.IGNORECASE,
)
GROWTH_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*%\s+(?:growth|increase|month[- ]over[- ]month|year[- ]over[- ]year)", re.IGNORECASE)

_SCALE = {"k": 1e3, "thousand": 1e3, "m": 1e6, "million": 1e6, "b": 1e9, "billion": 1e9}


def _scaled(number: str, unit: Optional[str]) -> float:
    value = float(number.replace(",", ""))
    return value * _SCALE.get((unit or "").lower(), 1)


def extract_key_metrics(content: str) -> Dict[str, Optional[float]]:
    """Regex pass over story text for funding, valuation, revenue, users and headcount."""
    metrics: Dict[str, Optional[float]] = {
        "funding": None,
        "user_growth": None,
        "revenue": None,
        "employees": None,
        "valuation": None,
    }
    if not content:
        return metrics

    funding = extract_amount(content)
    if funding:
        metrics["funding"] = float(funding)
    valuation = extract_valuation(content)
    if valuation:
        metrics["valuation"] = float(valuation)

    match = REVENUE_PATTERN.search(content)
    if match:
        number, unit = (match.group(1), match.group(2)) if match.group(1) else (match.group(3), match.group(4))
        metrics["revenue"] = _scaled(number, unit)

    match = GROWTH_PATTERN.search(content)
    if match:
        metrics["user_growth"] = float(match.group(1))
    else:
        match = USERS_PATTERN.search(content)
        if match:
            metrics["user_growth"] = _scaled(match.group(1), match.group(2))

    match = EMPLOYEE_PATTERN.search(content)
    if match:
        metrics["employees"] = float(match.group(1).replace(",", ""))

    return metrics


def merge_key_metrics(metrics: Dict[str, Optional[float]], content: str) -> Dict[str, Optional[float]]:
    """Fill metrics the model left empty with figures stated in the story text."""
    merged = dict(metrics)
    for key, value in extract_key_metrics(content).items():
        if value is not None and merged.get(key) is None:
            merged[key] = value
    return merged


def _item_text(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        return json.dumps(item, default=str)
    raw = getattr(item, "raw_data", None)
    if raw is not None:
        return json.dumps(raw, default=str)
    return str(item)


def detect_success_signals(items: Iterable[Any]) -> SignalReport:
    """Keyword scan over evidence for funding, growth, traction, recognition and expansion signals."""
    text = " ".join(_item_text(i) for i in items).lower()
    signals = []
    for signal_type, keywords in SIGNAL_KEYWORDS.items():
        hits = [kw for kw in keywords if re.search(r"\b" + re.escape(kw) + r"\b", text)]
        if not hits:
            continue
        signals.append(SuccessSignal(
            type=signal_type,
            confidence=round(min(1.0, 0.4 + 0.15 * len(hits)), 2),
            description=f"Mentions: {', '.join(hits[:5])}",
        ))
    overall = sum(s.confidence for s in signals) / len(SIGNAL_KEYWORDS) if signals else 0.0
    return SignalReport(signals=signals, overall_score=round(min(overall, 1.0), 2))
