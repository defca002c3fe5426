"""
Flow metrics: roll a barrier list up into whole-flow statistics

Everything here is a pure function of the barrier list.
"""
from statistics import mean
from typing import List

from ..common.models import (
    Barrier,
    BarrierType,
    BarrierStage,
    ComplexityLevel,
    FlowStep,
    FlowMetrics,
    StepType,
    STAGE_ORDER,
)

EMPTY_STEP_PROBABILITY = 0.95
MIN_STEP_PROBABILITY = 0.6
MAX_STEP_PROBABILITY = 0.95
COMPLEXITY_PENALTY = 0.1
MANUAL_INTERRUPTION_LIMIT = 3
CAPTCHA_PREP_THRESHOLD = 0.5

STAGE_NAMES = {
    BarrierStage.INITIAL: "Initial Access",
    BarrierStage.ACCOUNT_SETUP: "Account Setup",
    BarrierStage.REGISTRATION: "Registration Form",
    BarrierStage.PAYMENT: "Payment Processing",
    BarrierStage.CONFIRMATION: "Confirmation",
}

COMPLEXITY_WEIGHTS = {
    ComplexityLevel.LOW: 1,
    ComplexityLevel.MEDIUM: 2,
    ComplexityLevel.HIGH: 3,
    ComplexityLevel.EXPERT: 4,
}

HARD_LEVELS = {ComplexityLevel.HIGH, ComplexityLevel.EXPERT}


def step_success_probability(barriers: List[Barrier]) -> float:
    if not barriers:
        return EMPTY_STEP_PROBABILITY

    avg_confidence = mean(b.confidence for b in barriers)
    penalty = COMPLEXITY_PENALTY * sum(1 for b in barriers if b.complexity_level in HARD_LEVELS)
    return max(MIN_STEP_PROBABILITY, min(MAX_STEP_PROBABILITY, avg_confidence - penalty))


def map_registration_flow(barriers: List[Barrier]) -> List[FlowStep]:
    """Group barriers into steps by stage; the registration step always exists"""
    flow = []
    for index, stage in enumerate(STAGE_ORDER):
        stage_barriers = [b for b in barriers if b.stage == stage]
        if not stage_barriers and stage != BarrierStage.REGISTRATION:
            continue

        needs_human = any(b.human_intervention_required for b in stage_barriers)
        flow.append(FlowStep(
            step_number=index + 1,
            step_name=STAGE_NAMES[stage],
            stage=stage,
            step_type=StepType.HUMAN_ASSISTED if needs_human else StepType.AUTOMATED,
            barriers_in_step=stage_barriers,
            automation_possible=not needs_human,
            parent_assistance_likely=needs_human,
            estimated_duration_minutes=max(1, sum(b.estimated_time_minutes for b in stage_barriers)),
            success_probability=step_success_probability(stage_barriers),
        ))
    return flow


def complexity_score(barriers: List[Barrier]) -> int:
    return sum(COMPLEXITY_WEIGHTS[b.complexity_level] for b in barriers)


def complexity_bucket(score: int) -> str:
    if score <= 3:
        return "simple"
    if score <= 8:
        return "moderate"
    if score <= 15:
        return "complex"
    return "expert"


def count_interruptions(barriers: List[Barrier]) -> int:
    return sum(1 for b in barriers if b.is_interruption)


def parent_preparation(barriers: List[Barrier]) -> List[str]:
    """Things a parent should have ready, deduplicated in first-seen order"""
    hints = []
    for b in barriers:
        if b.type == BarrierType.DOCUMENT_UPLOAD:
            hints.append(f"Prepare {', '.join(b.required_fields)}")
    hints.extend("Have payment method ready" for b in barriers if b.type == BarrierType.PAYMENT)
    hints.extend(
        "Be available for CAPTCHA solving"
        for b in barriers if b.captcha_likelihood > CAPTCHA_PREP_THRESHOLD
    )
    hints.extend(
        "Choose username and strong password"
        for b in barriers if b.type == BarrierType.ACCOUNT_CREATION
    )
    return list(dict.fromkeys(hints))


def aggregate(barriers: List[Barrier]) -> FlowMetrics:
    flow = map_registration_flow(barriers)
    interruptions = count_interruptions(barriers)

    return FlowMetrics(
        total_barriers=len(barriers),
        registration_flow=flow,
        estimated_interruptions=interruptions,
        total_estimated_time=sum(step.estimated_duration_minutes for step in flow),
        overall_complexity=complexity_bucket(complexity_score(barriers)),
        success_probability=mean(step.success_probability for step in flow),
        recommended_strategy=(
            "manual_registration" if interruptions > MANUAL_INTERRUPTION_LIMIT
            else "assisted_automation"
        ),
        parent_preparation_needed=parent_preparation(barriers),
    )
