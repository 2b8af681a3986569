"""
LLM client and LLM-backed provider tests, using httpx.MockTransport.
"""

import json

import httpx
import pytest
from pydantic import ValidationError as PydanticValidationError

from concept_tournament.core.errors import ProviderError
from concept_tournament.schemas.idea_schemas import GenerationContext, GoalWeight, IdeaDraft
from concept_tournament.schemas.review_schemas import ReviewResult
from concept_tournament.services.expert_reviewer import LLMExpertReviewer, parse_review
from concept_tournament.services.idea_generator import (
    LLMIdeaGenerator,
    build_challenger_prompt,
    improvement_focus,
    parse_idea_draft,
)
from concept_tournament.services.llm_service import (
    API_TYPE_OPENAI,
    API_TYPE_OPENWEBUI,
    LLMClient,
    parse_json_object,
)


def completion(content, status_code=200):
    return httpx.Response(status_code, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


def make_client(handler, api_type=API_TYPE_OPENAI, api_key="sk-test"):
    return LLMClient(
        base_url="https://llm.example.com",
        api_type=api_type,
        model="test-model",
        api_key=api_key,
        timeout=5,
        transport=httpx.MockTransport(handler)
    )


def context(**overrides):
    payload = {
        "drug_name": "Dapagliflozin",
        "indication": "HFpEF",
        "strategic_goals": [GoalWeight(goal="expand_label", weight=1.0)],
        "geography": ["DE"],
        "study_phase": "III",
        "lane_id": 0,
        "round": 0,
    }
    payload.update(overrides)
    return GenerationContext(**payload)


class TestApiUrl:
    @pytest.mark.parametrize("base_url, expected", [
        ("https://api.openai.com", "https://api.openai.com/v1/chat/completions"),
        ("https://api.openai.com/v1", "https://api.openai.com/v1/chat/completions"),
        ("https://api.openai.com/v1/chat/completions/", "https://api.openai.com/v1/chat/completions"),
    ])
    def test_openai(self, base_url, expected):
        client = LLMClient(base_url=base_url, api_type=API_TYPE_OPENAI)
        assert client._build_complete_api_url() == expected

    @pytest.mark.parametrize("base_url, expected", [
        ("http://webui:8080", "http://webui:8080/api/chat/completions"),
        ("http://webui:8080/api", "http://webui:8080/api/chat/completions"),
    ])
    def test_openwebui(self, base_url, expected):
        client = LLMClient(base_url=base_url, api_type=API_TYPE_OPENWEBUI)
        assert client._build_complete_api_url() == expected


class TestParseJsonObject:
    def test_plain(self):
        assert parse_json_object('{"score": 4}') == {"score": 4}

    def test_code_fence(self):
        assert parse_json_object('```json\n{"score": 4}\n```') == {"score": 4}

    def test_wrapped_in_prose(self):
        assert parse_json_object('Here you go: {"score": 4} hope it helps') == {"score": 4}

    def test_not_json(self):
        with pytest.raises(ProviderError):
            parse_json_object("I cannot review this concept.")

    def test_not_an_object(self):
        with pytest.raises(ProviderError):
            parse_json_object("[1, 2, 3]")


class TestChat:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return completion('{"ok": true}')

        result = await make_client(handler).chat_json("system", "user", temperature=0.2)

        assert result == {"ok": True}
        assert seen["url"] == "https://llm.example.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "test-model"
        assert seen["body"]["temperature"] == 0.2
        assert seen["body"]["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_openwebui_without_key(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return completion("hello")

        client = make_client(handler, api_type=API_TYPE_OPENWEBUI, api_key="")
        assert await client.chat("system", "user") == "hello"
        assert seen["auth"] is None
        assert "response_format" not in seen["body"]

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        client = make_client(lambda request: httpx.Response(503, text="overloaded"))
        with pytest.raises(ProviderError) as exc:
            await client.chat("system", "user")
        assert exc.value.retryable is True

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable(self):
        client = make_client(lambda request: httpx.Response(429, text="slow down"))
        with pytest.raises(ProviderError) as exc:
            await client.chat("system", "user")
        assert exc.value.retryable is True

    @pytest.mark.asyncio
    async def test_client_error_is_not_retryable(self):
        client = make_client(lambda request: httpx.Response(401, text="bad key"))
        with pytest.raises(ProviderError) as exc:
            await client.chat("system", "user")
        assert exc.value.retryable is False

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderError):
            await make_client(handler).chat("system", "user")

    @pytest.mark.asyncio
    async def test_empty_reply(self):
        with pytest.raises(ProviderError):
            await make_client(lambda request: completion("  ")).chat("system", "user")


class TestLLMIdeaGenerator:
    @pytest.mark.asyncio
    async def test_seed_draft(self):
        reply = {
            "title": "SGLT2 inhibition in HFpEF with CKD",
            "pico": {"population": "HFpEF with eGFR 25-60", "intervention": "dapagliflozin",
                     "comparator": "placebo", "outcomes": "CV death or HF hospitalisation"},
            "feasibility_data": {"estimated_cost": 4200000, "timeline_months": 30},
        }
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return completion(json.dumps(reply))

        generator = LLMIdeaGenerator(make_client(handler), temperature=1.0)
        draft = await generator.generate(context())

        assert draft.title == reply["title"]
        assert draft.study_phase == "III"
        assert draft.feasibility_data.timeline_months == 30
        assert "Dapagliflozin" in seen["body"]["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_invalid_reply_is_provider_error(self):
        generator = LLMIdeaGenerator(make_client(lambda request: completion('{"title": ""}')))
        with pytest.raises(ProviderError):
            await generator.generate(context())

    def test_challenger_inherits_missing_fields(self):
        champion = IdeaDraft(title="Champion", comparator_drugs=["placebo"], target_subpopulation="eGFR < 60")
        draft = parse_idea_draft(
            {"title": "Improved", "improvement_rationale": "shorter follow-up"},
            context(round=1, seed_idea=champion)
        )
        assert draft.title == "Improved"
        assert draft.comparator_drugs == ["placebo"]
        assert draft.target_subpopulation == "eGFR < 60"

    def test_challenger_prompt_includes_feedback(self):
        reviews = [
            ReviewResult(reviewer_id="OPS", score=2.0, weaknesses=["slow recruitment"],
                         additional_metrics={"recruitment_feasibility": 1.5, "site_burden": 2.0, "comment": "n/a"}),
            ReviewResult(reviewer_id="REG", score=3.5, strengths=["clear label path"],
                         additional_metrics={"regulatory_clarity": 4.0}),
        ]
        prompt = build_challenger_prompt(context(round=2, seed_idea=IdeaDraft(title="Champion"), seed_reviews=reviews))
        assert "slow recruitment" in prompt
        assert "clear label path" in prompt
        assert "recruitment feasibility" in prompt
        assert "round 2 challenger" in prompt


class TestImprovementFocus:
    def test_lowest_numeric_metrics_first(self):
        reviews = [
            ReviewResult(reviewer_id="A", score=3.0, additional_metrics={"x": 4.0, "y": 1.0, "flag": True}),
            ReviewResult(reviewer_id="B", score=3.0, additional_metrics={"x": 2.0, "z": 2.5, "note": "text"}),
        ]
        assert improvement_focus(reviews, limit=2) == ["y", "z"]


class TestLLMExpertReviewer:
    @pytest.mark.asyncio
    async def test_review_extras_become_metrics(self):
        reply = {"score": 3.7, "strengths": ["pragmatic"], "weaknesses": "costly", "cost_risk": 2.0}
        reviewer = LLMExpertReviewer(make_client(lambda request: completion(json.dumps(reply))))
        result = await reviewer.review(IdeaDraft(title="Concept"), "HEOR")

        assert result.reviewer_id == "HEOR"
        assert result.score == 3.7
        assert result.weaknesses == ["costly"]
        assert result.additional_metrics == {"cost_risk": 2.0}

    @pytest.mark.asyncio
    async def test_unknown_reviewer_not_retryable(self):
        reviewer = LLMExpertReviewer(make_client(lambda request: completion("{}")))
        with pytest.raises(ProviderError) as exc:
            await reviewer.review(IdeaDraft(title="Concept"), "ASTRO")
        assert exc.value.retryable is False

    def test_missing_score(self):
        with pytest.raises(ProviderError):
            parse_review({"strengths": []}, "CLIN")

    def test_non_numeric_score(self):
        with pytest.raises(ProviderError):
            parse_review({"score": "excellent"}, "CLIN")

    @pytest.mark.parametrize("score", ["NaN", float("nan"), float("inf"), "-Infinity"])
    def test_non_finite_score(self, score):
        with pytest.raises(ProviderError) as exc:
            parse_review({"score": score}, "CLIN")
        assert exc.value.retryable is True

    def test_non_finite_metrics_dropped(self):
        result = parse_review({"score": 3.0, "site_burden": float("nan"), "cost_risk": 2.0}, "OPS")
        assert result.additional_metrics == {"cost_risk": 2.0}


class TestReviewResult:
    @pytest.mark.parametrize("score", [float("nan"), float("inf")])
    def test_rejects_non_finite_score(self, score):
        with pytest.raises(PydanticValidationError):
            ReviewResult(reviewer_id="CLIN", score=score)
