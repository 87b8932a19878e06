"""Question answering over retrieved knowledge."""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from siterag.config import Settings, get_settings
from siterag.errors import AnswerSynthesisError
from siterag.services.llm.orchestrator import LLMOrchestrator
from siterag.services.llm.types import LLMOrchestrationError, LLMRequest, LLMStage
from siterag.services.retrieval import RetrievalEngine, SearchResult

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "ja"
MAX_RELATED_LINKS = 3
LINK_SNIPPET_CHARS = 300

NO_INFO_MESSAGES = {
    "ja": "申し訳ございません。お探しの情報が見つかりませんでした。別のご質問をお試しください。",
    "en": "I apologize, but I couldn't find the information you're looking for. Please try a different question.",
    "zh": "抱歉，我找不到您要查找的信息。请尝试其他问题。",
}

DEFAULT_LINK_DESCRIPTIONS = {
    "ja": "ページの詳細情報",
    "en": "Page details",
    "zh": "页面详细信息",
}

SYSTEM_PROMPTS = {
    "ja": """あなたは当社のチーフスタッフオフィサー（最高総務責任者）です。
お客様からのお問い合わせに、プロフェッショナルかつ親身に対応してください。

■回答スタイル
- 敬語を使いつつも、堅すぎない自然な日本語で
- お客様のニーズを汲み取った提案型の回答
- 300文字以内で簡潔に、要点を押さえて

■回答の流れ
1. まず結論や要点を1〜2文で
2. 補足があれば簡潔に（箇条書き可）
3. 必要に応じて「他にご質問があればお気軽にどうぞ」等のフォロー

■禁止事項
- URLやリンクを回答に含めること
- 「提供された情報によると」等のAI的な表現
- 長すぎる回答""",
    "en": """You are our Chief Staff Officer. Please respond to customer inquiries professionally and warmly.

■ Response Style
- Professional but friendly English
- Provide solution-oriented responses
- Keep responses concise, within 300 characters

■ Response Flow
1. Start with the main point in 1-2 sentences
2. Add brief supplements if needed (bullet points OK)
3. Follow up with "Feel free to ask if you have any other questions" as needed

■ Prohibited
- Including URLs or links in responses
- AI-like expressions such as "according to the provided information"
- Overly long responses

IMPORTANT: You MUST respond ENTIRELY in English.""",
    "zh": """您是我们的首席行政官。请专业且热情地回复客户咨询。

■ 回答风格
- 专业但友好的中文
- 提供面向解决方案的回答
- 保持简洁，300字以内

■ 回答流程
1. 首先用1-2句话说明要点
2. 如有需要，简要补充（可用要点）
3. 必要时跟进"如有其他问题，请随时询问"

■ 禁止事项
- 在回答中包含URL或链接
- "根据提供的信息"等AI式表达
- 过长的回答

重要：您必须完全用中文回复。""",
}

USER_PROMPTS = {
    "ja": "[サイトから抽出した情報]\n{context}\n\n[お客様からの質問]\n{question}\n\n上記の情報を元に、プロの接客AIとして質問に回答してください。",
    "en": "[Information extracted from the site]\n{context}\n\n[Customer's question]\n{question}\n\nBased on the above information, please answer the question as a professional customer service AI. Remember to respond ONLY in English.",
    "zh": "[从网站提取的信息]\n{context}\n\n[客户的问题]\n{question}\n\n根据上述信息，作为专业的客户服务AI回答问题。请务必只用中文回复。",
}

LINK_SUMMARY_SYSTEM_PROMPT = (
    "You summarize web pages. For each URL, describe in one short line (at most 25 characters in "
    "Japanese or 60 in English) what the page offers. No numbering or prefixes. "
    "Write the descriptions in the language code given by the user. Respond with JSON only."
)


@dataclass
class RelatedLink:
    url: str
    title: str
    description: str


@dataclass
class Answer:
    reply: str
    found: bool
    source_chunks: List[SearchResult] = field(default_factory=list)
    related_links: List[RelatedLink] = field(default_factory=list)


def resolve_language(language: Optional[str]) -> str:
    code = (language or DEFAULT_LANGUAGE).strip().lower()[:2]
    return code if code in NO_INFO_MESSAGES else DEFAULT_LANGUAGE


def no_info_reply(language: Optional[str]) -> str:
    return NO_INFO_MESSAGES[resolve_language(language)]


def build_context(results: List[SearchResult]) -> str:
    return "\n\n".join(
        f"【Info {index}】{result.title}\n{result.text}"
        for index, result in enumerate(results, start=1)
    )


def pick_link_sources(results: List[SearchResult]) -> List[SearchResult]:
    """First MAX_RELATED_LINKS distinct crawled URLs, in ranking order."""
    seen = set()
    picked: List[SearchResult] = []
    for result in results:
        if result.is_custom_knowledge or not result.url or result.url in seen:
            continue
        seen.add(result.url)
        picked.append(result)
        if len(picked) >= MAX_RELATED_LINKS:
            break
    return picked


def parse_summaries(text: str) -> List[str]:
    match = re.search(r"\{[\s\S]*\}", text or "")
    if not match:
        return []
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError:
        return []
    summaries = payload.get("summaries") if isinstance(payload, dict) else None
    if not isinstance(summaries, list):
        return []
    return [str(item).strip() for item in summaries]


class AnswerService:
    def __init__(
        self,
        retrieval: RetrievalEngine,
        orchestrator: Optional[LLMOrchestrator] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.retrieval = retrieval
        self.orchestrator = orchestrator or LLMOrchestrator()

    async def _run_stage(self, request: LLMRequest) -> str:
        response = await asyncio.to_thread(self.orchestrator.run_stage, request)
        return response.text

    async def related_links(self, results: List[SearchResult], language: str) -> List[RelatedLink]:
        sources = pick_link_sources(results)
        if not sources:
            return []
        default_description = DEFAULT_LINK_DESCRIPTIONS[language]
        listing = "\n\n".join(
            f"【URL{index}】{source.title or source.url}\n{source.text[:LINK_SNIPPET_CHARS]}"
            for index, source in enumerate(sources, start=1)
        )
        prompt = (
            f"Language: {language}\n"
            f"Summarize each URL below in one line:\n\n{listing}\n\n"
            'Answer format (JSON only): {"summaries": ["description 1", "description 2", "description 3"]}'
        )
        summaries: List[str] = []
        try:
            text = await self._run_stage(LLMRequest(
                stage=LLMStage.link_summary,
                prompt=prompt,
                system_prompt=LINK_SUMMARY_SYSTEM_PROMPT,
                temperature=0.3,
                max_tokens=200,
                timeout_seconds=self.settings.stage_timeout_seconds,
                expect_json=True,
            ))
            summaries = parse_summaries(text)
        except LLMOrchestrationError as exc:
            logger.warning("Related link summaries failed: %s", exc)

        links: List[RelatedLink] = []
        for index, source in enumerate(sources):
            description = summaries[index] if index < len(summaries) and summaries[index] else default_description
            links.append(RelatedLink(url=source.url, title=source.title or source.url, description=description))
        return links

    async def answer(self, company_id: str, question: str, language: str = DEFAULT_LANGUAGE) -> Answer:
        """
        Answer a visitor question from the company's indexed knowledge.

        Returns the localized no-information reply when nothing clears the
        relevance threshold.

        Raises:
            AnswerSynthesisError: every answer model route failed
        """
        language = resolve_language(language)
        results = await self.retrieval.search(company_id, question)
        relevant = [result for result in results if result.score >= self.settings.min_relevance_score]
        logger.info(
            "Retrieved %d results (%d above %.2f) for company %s",
            len(results),
            len(relevant),
            self.settings.min_relevance_score,
            company_id,
        )
        if not relevant:
            return Answer(reply=NO_INFO_MESSAGES[language], found=False)

        links = await self.related_links(relevant, language)
        prompt = USER_PROMPTS[language].format(context=build_context(relevant), question=question)
        try:
            reply = await self._run_stage(LLMRequest(
                stage=LLMStage.answer_synthesis,
                prompt=prompt,
                system_prompt=SYSTEM_PROMPTS[language],
                temperature=0.4,
                max_tokens=500,
                timeout_seconds=self.settings.stage_timeout_seconds,
            ))
        except LLMOrchestrationError as exc:
            raise AnswerSynthesisError(f"Answer synthesis failed: {exc}") from exc

        return Answer(reply=reply, found=True, source_chunks=relevant, related_links=links)

