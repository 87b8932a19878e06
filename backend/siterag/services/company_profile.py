"""Company profile extraction from crawled chunks."""

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ValidationError, field_validator

from siterag.config import Settings, get_settings
from siterag.services.crawler.chunker import split_into_chunks
from siterag.services.crawler.constants import COMPANY_OVERVIEW_SECTION, LEGAL_ENTITY_PATTERN
from siterag.services.crawler.models import ChunkRecord
from siterag.services.llm.orchestrator import LLMOrchestrator
from siterag.services.llm.types import LLMOrchestrationError, LLMRequest, LLMStage

logger = logging.getLogger(__name__)

LEGAL_ENTITY_RE = re.compile(LEGAL_ENTITY_PATTERN, re.IGNORECASE)
COMPANY_PATH_TOKENS = ("/about", "/company", "/corporate", "/profile", "/overview", "/outline")
MAX_OVERVIEW_CHUNKS = 3


class CompanyProfile(BaseModel):
    company_name: Optional[str] = None
    company_name_en: Optional[str] = None
    representative: Optional[str] = None
    established: Optional[str] = None
    capital: Optional[str] = None
    employees: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    business_hours: Optional[str] = None
    holidays: Optional[str] = None
    mission: Optional[str] = None
    vision: Optional[str] = None
    services: List[str] = []
    products: List[str] = []
    strengths: List[str] = []
    pricing: Optional[str] = None
    faq: List[str] = []

    @field_validator(
        "company_name", "company_name_en", "representative", "established", "capital",
        "employees", "address", "phone", "email", "business_hours", "holidays",
        "mission", "vision", "pricing",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(item) for item in value if item)
        text = str(value).strip()
        if not text or text.lower() in {"null", "none", "n/a", "unknown"}:
            return None
        return text

    @field_validator("services", "products", "strengths", "faq", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if isinstance(value, dict):
            value = [f"{key}: {item}" for key, item in value.items()]
        if isinstance(value, bool):
            return []
        if not isinstance(value, (list, tuple)):
            value = [value]
        items: List[str] = []
        for item in value:
            if isinstance(item, dict):
                question = item.get("question") or item.get("q")
                answer = item.get("answer") or item.get("a")
                text = f"Q: {question} A: {answer}" if question and answer else json.dumps(item, ensure_ascii=False)
            else:
                text = str(item or "").strip()
            if text and text not in items:
                items.append(text)
        return items

    def is_empty(self) -> bool:
        return not any(self.model_dump().values())

    def to_dict(self) -> Dict[str, Any]:
        """Non-empty fields only."""
        return {key: value for key, value in self.model_dump().items() if value}


PROFILE_FIELD_LABELS = [
    ("company_name", "Company name"),
    ("company_name_en", "Company name (English)"),
    ("representative", "Representative"),
    ("established", "Established"),
    ("capital", "Capital"),
    ("employees", "Employees"),
    ("address", "Address"),
    ("phone", "Phone"),
    ("email", "Email"),
    ("business_hours", "Business hours"),
    ("holidays", "Holidays"),
    ("mission", "Mission"),
    ("vision", "Vision"),
    ("services", "Services"),
    ("products", "Products"),
    ("strengths", "Strengths"),
    ("pricing", "Pricing"),
    ("faq", "FAQ"),
]

PROFILE_SYSTEM_PROMPT = (
    "You extract company facts from website text. Use only facts stated literally in the text. "
    "Never guess, infer or translate values. Use null for anything not stated. "
    "Respond with a single JSON object and nothing else."
)

PROFILE_SCHEMA = {
    "company_name": "string|null",
    "company_name_en": "string|null",
    "representative": "string|null",
    "established": "string|null",
    "capital": "string|null",
    "employees": "string|null",
    "address": "string|null",
    "phone": "string|null",
    "email": "string|null",
    "business_hours": "string|null",
    "holidays": "string|null",
    "mission": "string|null",
    "vision": "string|null",
    "services": ["string"],
    "products": ["string"],
    "strengths": ["string"],
    "pricing": "string|null",
    "faq": ["string"],
}


def rank_profile_chunks(chunks: Sequence[ChunkRecord]) -> List[ChunkRecord]:
    """Legal-entity mentions first, then company-info URLs, then the rest."""
    def _rank(chunk: ChunkRecord) -> int:
        if LEGAL_ENTITY_RE.search(chunk.text):
            return 0
        if any(token in chunk.url.lower() for token in COMPANY_PATH_TOKENS):
            return 1
        return 2

    return sorted(chunks, key=_rank)


def parse_profile_json(text: str) -> CompanyProfile:
    """Parse the first {...} span of a model reply; empty profile on any failure."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return CompanyProfile()
    try:
        payload = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        logger.warning("Company profile reply was not valid JSON")
        return CompanyProfile()
    if not isinstance(payload, dict):
        return CompanyProfile()
    try:
        return CompanyProfile.model_validate(payload)
    except (ValidationError, TypeError) as exc:
        logger.warning("Company profile failed validation: %s", exc)
        return CompanyProfile()


class CompanyProfileExtractor:
    def __init__(
        self,
        orchestrator: Optional[LLMOrchestrator] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.orchestrator = orchestrator or LLMOrchestrator()

    def build_context(self, chunks: Sequence[ChunkRecord]) -> str:
        parts: List[str] = []
        total = 0
        for chunk in rank_profile_chunks(chunks)[: self.settings.profile_max_chunks]:
            block = f"[{chunk.url}]\n{chunk.text}"
            if total + len(block) > self.settings.profile_max_chars:
                remaining = self.settings.profile_max_chars - total
                if remaining > 0:
                    parts.append(block[:remaining])
                break
            parts.append(block)
            total += len(block) + 2
        return "\n\n".join(parts)

    async def extract_profile(self, chunks: Sequence[ChunkRecord]) -> CompanyProfile:
        """Structured company facts from the chunks, or an empty profile."""
        if not chunks:
            return CompanyProfile()
        context = self.build_context(chunks)
        if not context.strip():
            return CompanyProfile()

        prompt = (
            "Extract the company information from the website text below.\n"
            f"Return JSON matching this schema:\n{json.dumps(PROFILE_SCHEMA, ensure_ascii=False)}\n\n"
            f"Website text:\n{context}"
        )
        request = LLMRequest(
            stage=LLMStage.profile_extraction,
            prompt=prompt,
            system_prompt=PROFILE_SYSTEM_PROMPT,
            temperature=0,
            timeout_seconds=self.settings.stage_timeout_seconds,
            expect_json=True,
        )
        try:
            response = await asyncio.to_thread(self.orchestrator.run_stage, request)
        except LLMOrchestrationError as exc:
            logger.warning("Company profile extraction failed: %s", exc)
            return CompanyProfile()
        return parse_profile_json(response.text)


def render_profile_lines(profile: CompanyProfile) -> List[str]:
    data = profile.model_dump()
    lines: List[str] = []
    for key, label in PROFILE_FIELD_LABELS:
        value = data.get(key)
        if not value:
            continue
        if isinstance(value, list):
            lines.append(f"{label}: {', '.join(value)}")
        else:
            lines.append(f"{label}: {value}")
    return lines


def build_overview_chunks(
    profile: CompanyProfile,
    company_id: str,
    agent_id: str,
    url: str,
    title: str = "",
    max_size: int = 600,
) -> List[ChunkRecord]:
    """Render the profile as up to three "Company overview" chunk records."""
    lines = render_profile_lines(profile)
    if not lines:
        return []
    body = "\n".join([f"【{COMPANY_OVERVIEW_SECTION}】"] + lines)
    records: List[ChunkRecord] = []
    for part in split_into_chunks(body, max_size)[:MAX_OVERVIEW_CHUNKS]:
        # a single oversized line still has to fit the bound
        text = part[:max_size]
        records.append(ChunkRecord(
            company_id=company_id,
            agent_id=agent_id,
            url=url,
            title=title or profile.company_name or url,
            section_title=COMPANY_OVERVIEW_SECTION,
            text=text,
        ))
    return records
