"""
Expert review providers
"""

import json
import logging
import math
import zlib
from typing import Any, Dict, Optional

from concept_tournament.core.config import settings
from concept_tournament.core.errors import ProviderError
from concept_tournament.schemas.idea_schemas import IdeaDraft
from concept_tournament.schemas.review_schemas import ReviewResult
from concept_tournament.services.llm_service import LLMClient

logger = logging.getLogger(__name__)

REVIEWER_ROLES = {
    "CLIN": "Clinical expert. Judge the medical rationale, endpoints and patient benefit.",
    "STAT": "Biostatistician. Judge sample size, power, randomisation and analysis plan.",
    "SAF": "Drug safety physician. Judge the safety monitoring and risk to participants.",
    "REG": "Regulatory affairs expert. Judge acceptability to EMA/FDA and label impact.",
    "HEOR": "Health economist. Judge payer relevance, cost-effectiveness and market access evidence.",
    "OPS": "Clinical operations lead. Judge recruitment, site burden, budget and timeline.",
    "PADV": "Patient advocate. Judge patient burden, relevance of outcomes and diversity.",
    "ETH": "Ethicist. Judge consent, equipoise and vulnerable populations.",
    "COMM": "Commercial strategist. Judge market potential and competitive positioning.",
    "SUC": "Portfolio analyst. Estimate the probability of technical and regulatory success.",
}

# Keys the scoring path reads; anything else in a reply is kept as display metrics
_CORE_KEYS = {"score", "strengths", "weaknesses", "reviewer_id", "dimensions"}


class ExpertReviewer:
    """Scores one idea from one reviewer's perspective. Calls may be retried."""

    async def review(self, idea: IdeaDraft, reviewer_id: str) -> ReviewResult:
        raise NotImplementedError


def _string_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value]
    raise ProviderError(f"expected a list of strings, got {type(value).__name__}")


def parse_review(data: Dict[str, Any], reviewer_id: str) -> ReviewResult:
    """Split a reviewer reply into the scored fields and free-form metrics"""
    if "score" not in data:
        raise ProviderError(f"{reviewer_id} review has no score")
    try:
        score = float(data["score"])
    except (TypeError, ValueError):
        raise ProviderError(f"{reviewer_id} review score is not a number: {data['score']!r}")
    if not math.isfinite(score):
        raise ProviderError(f"{reviewer_id} review score is not finite: {data['score']!r}")

    metrics = {
        k: v for k, v in data.items()
        if k not in _CORE_KEYS and not (isinstance(v, float) and not math.isfinite(v))
    }
    return ReviewResult(
        reviewer_id=reviewer_id,
        score=score,
        strengths=_string_list(data.get("strengths")),
        weaknesses=_string_list(data.get("weaknesses")),
        additional_metrics=metrics
    )


class LLMExpertReviewer(ExpertReviewer):
    """Panel reviewer backed by an OpenAI-compatible model"""

    def __init__(self, client: Optional[LLMClient] = None, temperature: Optional[float] = None):
        self.client = client or LLMClient()
        self.temperature = settings.REVIEWER_TEMPERATURE if temperature is None else temperature

    def _system_prompt(self, reviewer_id: str) -> str:
        role = REVIEWER_ROLES.get(reviewer_id)
        if role is None:
            raise ProviderError(f"unknown reviewer {reviewer_id}", retryable=False)
        return (
            f"You are reviewer {reviewer_id} on a clinical study concept panel. {role}\n"
            f"Score the concept from 0 (unacceptable) to {settings.SCORE_SCALE_MAX:g} (excellent). "
            "Reply with one JSON object containing \"score\", \"strengths\" (list), "
            "\"weaknesses\" (list) and any numeric sub-ratings relevant to your role, "
            "e.g. \"recruitment_feasibility\": 3.5."
        )

    async def review(self, idea: IdeaDraft, reviewer_id: str) -> ReviewResult:
        user_prompt = f"# Study concept\n{json.dumps(idea.model_dump(), indent=2)}"
        data = await self.client.chat_json(
            self._system_prompt(reviewer_id), user_prompt, temperature=self.temperature
        )
        result = parse_review(data, reviewer_id)
        logger.debug(f"{reviewer_id} scored '{idea.title}' at {result.score}")
        return result


class HeuristicReviewer(ExpertReviewer):
    """Deterministic offline reviewer: cheaper, faster, lower-risk concepts score higher"""

    async def review(self, idea: IdeaDraft, reviewer_id: str) -> ReviewResult:
        data = idea.feasibility_data
        score = 2.5
        strengths, weaknesses = [], []

        if data.estimated_cost is not None:
            if data.estimated_cost <= 2000000:
                score += 0.5
                strengths.append("Budget within typical sponsor range")
            elif data.estimated_cost > 5000000:
                score -= 0.5
                weaknesses.append("High total cost")
        if data.timeline_months is not None:
            if data.timeline_months <= 24:
                score += 0.4
                strengths.append("Readout within two years")
            else:
                weaknesses.append("Long timeline to readout")
        if data.completion_risk is not None:
            score += 0.8 * (0.5 - data.completion_risk)
        if idea.key_improvements:
            score += 0.1 * min(len(idea.key_improvements), 3)

        # Stable per-reviewer spread so the panel does not agree exactly
        jitter = (zlib.crc32(f"{reviewer_id}:{idea.title}".encode()) % 21 - 10) / 40.0
        score = min(max(score + jitter, 0.0), settings.SCORE_SCALE_MAX)

        return ReviewResult(
            reviewer_id=reviewer_id,
            score=round(score, 3),
            strengths=strengths,
            weaknesses=weaknesses,
            additional_metrics={"heuristic": True, "completion_risk": data.completion_risk}
        )
