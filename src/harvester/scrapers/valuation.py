"""
Valuation Feed - Current valuations for tracked startups.

Two inputs:
- A curated JSON file (settings.valuation_file) of
  [{"company_name", "current_valuation", "valuation_date", "source", "confidence"}]
- Valuation mentions ("valued at $2B", "$500M valuation") in funding news

Items carry current_valuation/valuation_date lead fields, which the lead
processor treats as authoritative.
"""

import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..base_collector import BaseCollector, CandidateItem, SourceType, dedupe_items
from .funding import FUNDING_FEEDS, FundingCollector, extract_valuation
from ...common.errors import DataQualityError
from ...config.settings import settings

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.5


def load_curated_valuations(path: str) -> List[Dict[str, Any]]:
    """Read the curated valuation table; empty list if missing or malformed."""
    if not path:
        return []
    file = Path(path)
    if not file.exists():
        logger.warning(f"Valuation file not found: {path}")
        return []
    try:
        data = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not read valuation file {path}: {e}")
        return []
    return data if isinstance(data, list) else []


def parse_valuation_entry(entry: Any) -> CandidateItem:
    """
    One curated row as a valuation item.

    Raises DataQualityError for rows without a name, a positive valuation or
    enough confidence. An unparseable valuation_date is dropped, not fatal.
    """
    if not isinstance(entry, dict):
        raise DataQualityError("entry", entry, "not an object")
    name = entry.get("company_name")
    value = entry.get("current_valuation")
    if not name or not isinstance(name, str):
        raise DataQualityError("company_name", name, "missing")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise DataQualityError("current_valuation", value, "not a positive number")
    try:
        confidence = float(entry.get("confidence", 1.0))
    except (TypeError, ValueError):
        raise DataQualityError("confidence", entry.get("confidence"), "not a number")
    if confidence < MIN_CONFIDENCE:
        raise DataQualityError("confidence", confidence, f"below {MIN_CONFIDENCE}")

    valued_on: Optional[date] = None
    if entry.get("valuation_date"):
        try:
            valued_on = date.fromisoformat(entry["valuation_date"])
        except (TypeError, ValueError):
            valued_on = None

    return CandidateItem(
        id=f"curated|{name}|{entry.get('valuation_date', '')}",
        title=f"{name} valued at ${int(value):,}",
        text="",
        url=entry.get("source"),
        engagement_score=0,
        published_at=None,
        source_type=SourceType.VALUATION,
        extra={"company": name},
        lead_fields={"current_valuation": int(value), "valuation_date": valued_on},
        raw=entry,
    )


class ValuationCollector(BaseCollector):
    """Collector for startup valuations."""

    source_type = SourceType.VALUATION

    def __init__(self, valuation_file: Optional[str] = None, funding: Optional[FundingCollector] = None, **kwargs):
        super().__init__(**kwargs)
        self.valuation_file = settings.valuation_file if valuation_file is None else valuation_file
        self.funding = funding

    async def fetch_recent(self, window_days: int) -> List[CandidateItem]:
        items: List[CandidateItem] = []
        for entry in load_curated_valuations(self.valuation_file):
            try:
                items.append(parse_valuation_entry(entry))
            except DataQualityError as e:
                logger.debug(f"Skipping curated valuation: {e}")

        funding = self.funding or FundingCollector(
            feeds=FUNDING_FEEDS, client=self.client, rate_limiter=self.rate_limiter
        )
        for item in await funding.fetch_recent(window_days):
            valuation = item.lead_fields.get("current_valuation") or extract_valuation(item.text)
            if not valuation:
                continue
            valued_on = (item.published_at or datetime.now(timezone.utc)).date()
            items.append(CandidateItem(
                id=f"news|{item.id}",
                title=item.title,
                text=item.text,
                url=item.url,
                engagement_score=0,
                published_at=item.published_at,
                source_type=SourceType.VALUATION,
                extra={"company": item.extra.get("company")},
                lead_fields={"current_valuation": valuation, "valuation_date": valued_on},
                raw=item.raw,
            ))

        unique = dedupe_items(items)
        logger.info(f"Valuations: {len(unique)} found")
        return unique

    def is_success_candidate(self, item: CandidateItem) -> bool:
        return bool(item.lead_fields.get("current_valuation"))

    def extract_company_name(self, item: CandidateItem) -> Optional[str]:
        return item.extra.get("company")
