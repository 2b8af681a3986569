"""
Idea generation providers
"""

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from concept_tournament.core.config import settings
from concept_tournament.core.errors import ProviderError
from concept_tournament.schemas.idea_schemas import (
    FeasibilityEstimate,
    GenerationContext,
    IdeaDraft,
    PicoFramework,
    SwotAnalysis,
)
from concept_tournament.schemas.review_schemas import ReviewResult
from concept_tournament.services.llm_service import LLMClient

logger = logging.getLogger(__name__)


class IdeaGenerator:
    """Produces one study concept per call. Calls may be retried."""

    async def generate(self, context: GenerationContext) -> IdeaDraft:
        raise NotImplementedError


def improvement_focus(reviews: List[ReviewResult], limit: int = 3) -> List[str]:
    """Lowest-scoring numeric reviewer metrics, the biggest improvement opportunities"""
    collected: Dict[str, List[float]] = {}
    for review in reviews:
        for key, value in review.additional_metrics.items():
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                collected.setdefault(key, []).append(float(value))
    averages = sorted(
        ((sum(values) / len(values), key) for key, values in collected.items())
    )
    return [key for _, key in averages[:limit]]


IDEA_JSON_FORMAT = """{
  "title": "Descriptive study title",
  "study_phase": "I | II | III | IV",
  "target_subpopulation": "...",
  "comparator_drugs": ["..."],
  "knowledge_gap_addressed": "...",
  "innovation_justification": "...",
  "improvement_rationale": "Why this version beats its parent (challengers only)",
  "key_improvements": ["..."],
  "pico": {"population": "...", "intervention": "...", "comparator": "...", "outcomes": "..."},
  "swot": {"strengths": ["..."], "weaknesses": ["..."], "opportunities": ["..."], "threats": ["..."]},
  "feasibility_data": {"estimated_cost": 2500000, "timeline_months": 22, "projected_roi": 2.8,
                       "recruitment_rate": 0.8, "completion_risk": 0.25},
  "evidence_sources": [{"title": "...", "authors": "...", "publication": "...", "year": 2023, "citation": "..."}]
}"""


class LLMIdeaGenerator(IdeaGenerator):
    """Seeds and challengers drafted by an OpenAI-compatible model"""

    SEED_SYSTEM_PROMPT = (
        "You are a clinical development strategist. Draft one distinct, realistic "
        "clinical study concept for the brief you are given. Reply with a single JSON object."
    )
    CHALLENGER_SYSTEM_PROMPT = (
        "You are a clinical study concept improver. Analyse the reviewer feedback on the "
        "current champion concept and produce an improved version that fixes its weaknesses "
        "while keeping its strengths. Make substantive changes, not cosmetic ones. "
        "Reply with a single JSON object."
    )

    def __init__(self, client: Optional[LLMClient] = None, temperature: Optional[float] = None):
        self.client = client or LLMClient()
        self.temperature = settings.GENERATOR_TEMPERATURE if temperature is None else temperature

    async def generate(self, context: GenerationContext) -> IdeaDraft:
        if context.seed_idea is None:
            system_prompt, user_prompt = self.SEED_SYSTEM_PROMPT, build_seed_prompt(context)
        else:
            system_prompt, user_prompt = self.CHALLENGER_SYSTEM_PROMPT, build_challenger_prompt(context)
        data = await self.client.chat_json(system_prompt, user_prompt, temperature=self.temperature)
        draft = parse_idea_draft(data, context)
        logger.debug(f"Lane {context.lane_id} round {context.round}: drafted '{draft.title}'")
        return draft


def _brief(context: GenerationContext) -> str:
    goals = ", ".join(f"{g.goal} (weight {g.weight:.2f})" for g in context.strategic_goals)
    lines = [
        f"- Drug: {context.drug_name}",
        f"- Indication: {context.indication}",
        f"- Strategic goals: {goals}",
        f"- Geography: {', '.join(context.geography)}",
        f"- Preferred study phase: {context.study_phase}",
    ]
    if context.budget_ceiling_eur:
        lines.append(f"- Budget ceiling: EUR {context.budget_ceiling_eur:,}")
    if context.timeline_ceiling_months:
        lines.append(f"- Timeline ceiling: {context.timeline_ceiling_months} months")
    if context.additional_context:
        lines.append(f"- Additional context: {context.additional_context}")
    return "\n".join(lines)


def build_seed_prompt(context: GenerationContext) -> str:
    return (
        f"# Brief\n{_brief(context)}\n\n"
        f"This is concept lane {context.lane_id + 1}; take an angle that a different lane would not.\n\n"
        f"Return JSON in this format:\n{IDEA_JSON_FORMAT}"
    )


def build_challenger_prompt(context: GenerationContext) -> str:
    champion = context.seed_idea
    feedback = []
    for review in context.seed_reviews:
        strengths = "\n".join(f"  - {s}" for s in review.strengths) or "  - none given"
        weaknesses = "\n".join(f"  - {w}" for w in review.weaknesses) or "  - none given"
        feedback.append(
            f"## {review.reviewer_id} (score {review.score:.2f})\n"
            f"Strengths:\n{strengths}\nWeaknesses:\n{weaknesses}"
        )
    focus = improvement_focus(context.seed_reviews)
    focus_text = ""
    if focus:
        focus_text = "\n# Primary improvement areas\n" + "\n".join(
            f"- {area.replace('_', ' ')}" for area in focus
        ) + "\n"

    return (
        f"# Brief\n{_brief(context)}\n\n"
        f"# Current champion (round {context.round - 1})\n"
        f"{json.dumps(champion.model_dump(), indent=2)}\n\n"
        f"# Reviewer feedback\n{chr(10).join(feedback) or 'No reviews available.'}\n"
        f"{focus_text}\n"
        f"Create the round {context.round} challenger. Return JSON in this format:\n{IDEA_JSON_FORMAT}"
    )


def parse_idea_draft(data: Dict[str, Any], context: GenerationContext) -> IdeaDraft:
    """Validate a model reply, filling gaps from the champion it was derived from"""
    payload = dict(data)
    payload.setdefault("study_phase", context.study_phase if context.study_phase != "any" else None)
    champion = context.seed_idea
    if champion is not None:
        for key, value in champion.model_dump().items():
            if payload.get(key) in (None, "", [], {}):
                payload[key] = value
    try:
        return IdeaDraft.model_validate(payload)
    except PydanticValidationError as e:
        raise ProviderError(f"generated idea does not match the schema: {e.errors()[:3]}")


class HeuristicIdeaGenerator(IdeaGenerator):
    """Deterministic offline generator used when no LLM is configured"""

    FOCUS = {
        "expand_label": "label expansion into a new line of therapy",
        "defend_market_share": "head-to-head comparison against standard of care",
        "accelerate_uptake": "pragmatic real-world effectiveness",
        "facilitate_market_access": "health-economic outcomes for payers",
        "generate_real_world_evidence": "registry-based effectiveness",
        "optimise_dosing": "dose optimisation and formulation switch",
        "validate_biomarker": "biomarker-enriched responder analysis",
        "manage_safety_risk": "post-authorisation safety",
        "extend_lifecycle_combinations": "combination regimen",
        "secure_initial_approval": "pivotal registration",
        "demonstrate_poc": "proof of concept",
        "other": "exploratory design",
    }

    async def generate(self, context: GenerationContext) -> IdeaDraft:
        goals = [g.goal for g in context.strategic_goals] or ["other"]
        goal = goals[context.lane_id % len(goals)]
        focus = self.FOCUS.get(goal, self.FOCUS["other"])
        phase = context.study_phase if context.study_phase != "any" else ("III" if context.lane_id % 2 else "II")

        # Each round trims cost, duration and risk a little
        step = context.round
        cost = max(500000.0, 3000000.0 - 150000.0 * step - 50000.0 * context.lane_id)
        timeline = max(9.0, 30.0 - 2.0 * step)
        risk = max(0.05, 0.35 - 0.04 * step)

        title = f"Phase {phase} {focus} study of {context.drug_name} in {context.indication}"
        improvements = []
        rationale = None
        if context.seed_idea is not None:
            title = f"{title} (iteration {context.round})"
            rationale = "Tightened eligibility and streamlined visit schedule to cut cost and duration."
            improvements = ["Narrower eligibility criteria", "Fewer on-site visits"]

        return IdeaDraft(
            title=title,
            study_phase=phase,
            target_subpopulation=f"Adults with {context.indication}",
            comparator_drugs=["standard of care"],
            knowledge_gap_addressed=f"Evidence gap for {context.drug_name} around {focus}",
            innovation_justification=f"Targets {goal.replace('_', ' ')} in {', '.join(context.geography)}",
            improvement_rationale=rationale,
            key_improvements=improvements,
            pico=PicoFramework(
                population=f"Adults with {context.indication}",
                intervention=context.drug_name,
                comparator="Standard of care",
                outcomes="Primary efficacy endpoint at 12 months"
            ),
            swot=SwotAnalysis(
                strengths=[f"Addresses {focus}"],
                weaknesses=["Single-sponsor design"],
                opportunities=["Payer evidence generation"],
                threats=["Competing trials in the same population"]
            ),
            feasibility_data=FeasibilityEstimate(
                estimated_cost=cost,
                timeline_months=timeline,
                projected_roi=round(1.5 + 0.2 * step, 2),
                recruitment_rate=round(0.6 + 0.05 * step, 2),
                completion_risk=round(risk, 2)
            )
        )
