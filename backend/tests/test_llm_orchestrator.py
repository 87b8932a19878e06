from siterag.services.llm.orchestrator import LLMOrchestrator
from siterag.services.llm.types import (
    LLMOrchestrationError,
    LLMProviderError,
    LLMRequest,
    LLMStage,
)


class _FakeProvider:
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    def generate(
        self,
        *,
        model: str,
        prompt: str,
        timeout_seconds: int,
        system_prompt: str = "",
        temperature=None,
        max_tokens=None,
        expect_json: bool = False,
    ):
        self.calls.append(
            {
                "model": model,
                "system_prompt": system_prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if not self._responses:
            return ""
        nxt = self._responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return str(nxt)


def _orchestrator(monkeypatch, routes, providers):
    orchestrator = LLMOrchestrator()
    monkeypatch.setattr(orchestrator._settings, "stage_retry_backoff_seconds", 0)
    monkeypatch.setattr(orchestrator._settings, "stage_retry_max_attempts", 2)
    monkeypatch.setattr(orchestrator, "_routes_for_stage", lambda _stage: routes)
    monkeypatch.setattr(orchestrator, "_provider", lambda name: providers[name])
    return orchestrator


def test_orchestrator_falls_back_to_next_provider(monkeypatch):
    providers = {
        "openai": _FakeProvider([LLMProviderError("schema invalid", retryable=False)]),
        "anthropic": _FakeProvider(['{"company_name": "Acme Inc."}']),
    }
    orchestrator = _orchestrator(
        monkeypatch,
        [("openai", "gpt-4o-mini"), ("anthropic", "claude-3-5-haiku-latest")],
        providers,
    )

    response = orchestrator.run_stage(
        LLMRequest(
            stage=LLMStage.profile_extraction,
            prompt="Return JSON.",
            system_prompt="Only literal facts.",
            temperature=0,
            timeout_seconds=30,
            expect_json=True,
        )
    )
    assert response.provider == "anthropic"
    assert response.model == "claude-3-5-haiku-latest"
    assert len(response.attempts) == 2
    assert response.attempts[0].provider == "openai"
    assert response.attempts[1].provider == "anthropic"


def test_orchestrator_forwards_sampling_parameters(monkeypatch):
    provider = _FakeProvider(["Hello"])
    orchestrator = _orchestrator(monkeypatch, [("openai", "gpt-4o-mini")], {"openai": provider})

    orchestrator.run_stage(
        LLMRequest(
            stage=LLMStage.answer_synthesis,
            prompt="Question",
            system_prompt="You are a helpful assistant.",
            temperature=0.4,
            max_tokens=500,
        )
    )
    assert provider.calls == [
        {
            "model": "gpt-4o-mini",
            "system_prompt": "You are a helpful assistant.",
            "temperature": 0.4,
            "max_tokens": 500,
        }
    ]


def test_orchestrator_retries_retryable_provider_errors(monkeypatch):
    provider = _FakeProvider(
        [
            LLMProviderError("timeout", retryable=True),
            "Pricing page with plan details.",
        ]
    )
    orchestrator = _orchestrator(monkeypatch, [("gemini", "gemini-2.0-flash")], {"gemini": provider})

    response = orchestrator.run_stage(
        LLMRequest(
            stage=LLMStage.link_summary,
            prompt="Summarize.",
            timeout_seconds=20,
        )
    )
    assert response.provider == "gemini"
    assert len(response.attempts) == 2
    assert response.attempts[0].status == "retryable_error"
    assert response.attempts[1].status == "success"


def test_orchestrator_raises_when_all_routes_fail(monkeypatch):
    orchestrator = _orchestrator(
        monkeypatch,
        [("openai", "gpt-4o-mini")],
        {"openai": _FakeProvider([LLMProviderError("schema invalid", retryable=False)])},
    )

    try:
        orchestrator.run_stage(
            LLMRequest(
                stage=LLMStage.answer_synthesis,
                prompt="Answer.",
                timeout_seconds=20,
            )
        )
    except LLMOrchestrationError as exc:
        assert exc.attempts
        assert exc.attempts[0].status == "terminal_error"
    else:  # pragma: no cover - defensive
        raise AssertionError("Expected LLMOrchestrationError")
