from __future__ import annotations
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field, ValidationError

from fittrack.agent.llm import extract_json_object, get_llm, is_configured, message_text, tool_calls_of

logger = logging.getLogger(__name__)

Level = Literal["beginner", "intermediate", "advanced"]
Goal = Literal["muscle", "fatloss", "performance"]
Equipment = Literal["bodyweight", "dumbbells", "gym"]


class PlanRequest(BaseModel):
    age: int = Field(..., ge=10, le=100)
    gender: str
    height: float = Field(..., gt=0, description="cm")
    weight: float = Field(..., gt=0, description="kg")
    level: Level
    goal: Goal
    frequency: int = Field(..., ge=1, le=7, description="training days per week")
    equipment: Equipment


class PlanExercise(BaseModel):
    name: str = Field(..., min_length=1)
    sets: int = Field(..., ge=1)
    reps: str = Field(..., min_length=1, description='e.g. "8-10" or "45-60s"')
    rest: Optional[int] = Field(None, ge=0, description="seconds")


class PlanDay(BaseModel):
    day: str = Field(..., min_length=1)
    focus: str = Field(..., min_length=1)
    exercises: List[PlanExercise] = Field(..., min_length=1)


class TrainingPlan(BaseModel):
    """A weekly training plan with one entry per training day."""
    days: List[PlanDay] = Field(..., min_length=1)
    notes: Optional[str] = None


SYSTEM = (
    "You are a professional strength coach writing individual training plans. "
    "Beginners get simpler exercises and less volume (2-3 sets, 12-15 reps, 90-120s rest); "
    "intermediate 3-4 sets, 8-12 reps, 60-90s rest; advanced 4-5 sets, 6-12 reps, 45-75s rest. "
    "Only use exercises possible with the available equipment. The goal must show in the plan "
    "(more volume for muscle, more intervals for fat loss). Every exercise needs sets and reps. "
    "Return the plan with the TrainingPlan tool, or as a bare JSON object."
)

_TEMPLATES: Dict[str, List[Dict[str, Any]]] = {
    "gym": [
        {"name": "Back squat", "sets": 4, "reps": "8-10", "rest": 90},
        {"name": "Bench press", "sets": 4, "reps": "8-10", "rest": 90},
        {"name": "Deadlift", "sets": 3, "reps": "6-8", "rest": 120},
        {"name": "Pull-ups", "sets": 3, "reps": "8-12", "rest": 90},
        {"name": "Cable row", "sets": 3, "reps": "10-12", "rest": 60},
        {"name": "Plank", "sets": 3, "reps": "45-60s", "rest": 60},
    ],
    "dumbbells": [
        {"name": "Goblet squat", "sets": 4, "reps": "10-12", "rest": 75},
        {"name": "Dumbbell bench press", "sets": 4, "reps": "8-10", "rest": 90},
        {"name": "One-arm row", "sets": 3, "reps": "10-12", "rest": 60},
        {"name": "Romanian deadlift", "sets": 3, "reps": "10-12", "rest": 75},
        {"name": "Shoulder press", "sets": 3, "reps": "8-10", "rest": 75},
        {"name": "Plank", "sets": 3, "reps": "45-60s", "rest": 60},
    ],
    "bodyweight": [
        {"name": "Squats", "sets": 3, "reps": "12-15", "rest": 60},
        {"name": "Push-ups", "sets": 3, "reps": "10-15", "rest": 60},
        {"name": "Hip thrust", "sets": 4, "reps": "12-15", "rest": 60},
        {"name": "Lunges", "sets": 3, "reps": "10-12", "rest": 60},
        {"name": "Plank", "sets": 3, "reps": "30-45s", "rest": 45},
        {"name": "Mountain climbers", "sets": 3, "reps": "20-30", "rest": 45},
    ],
}

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
EXERCISES_PER_DAY = {"beginner": 3, "intermediate": 4, "advanced": 5}


def _focus(goal: str, idx: int) -> str:
    if goal == "fatloss":
        return "Full body" if idx % 2 == 0 else "HIIT/Metcon"
    if goal == "performance":
        return ("Strength", "Explosive", "Technique")[idx % 3]
    return "Full body" if idx % 2 == 0 else "Strength/Core"


def generate_fallback_plan(req: PlanRequest) -> TrainingPlan:
    """Rule-based plan used whenever the model is unavailable or its answer is unusable."""
    exercises = []
    for ex in _TEMPLATES.get(req.equipment, _TEMPLATES["bodyweight"]):
        ex = dict(ex)
        if req.level == "beginner":
            ex["sets"] = max(2, ex["sets"] - 1)
            ex["rest"] = min(120, ex["rest"] + 30)
        elif req.level == "advanced":
            ex["sets"] = min(5, ex["sets"] + 1)
            ex["rest"] = max(45, ex["rest"] - 15)
        exercises.append(PlanExercise(**ex))

    per_day = EXERCISES_PER_DAY.get(req.level, 3)
    n_days = max(2, min(6, req.frequency))
    days = [
        PlanDay(day=WEEKDAYS[i], focus=_focus(req.goal, i), exercises=exercises[:per_day])
        for i in range(n_days)
    ]
    return TrainingPlan(days=days)


def _prompt(req: PlanRequest) -> str:
    return (
        f"Athlete: {req.age} years, {req.gender}, {req.height} cm, {req.weight} kg.\n"
        f"Level: {req.level}. Goal: {req.goal}. Equipment: {req.equipment}.\n"
        f"Write a plan with EXACTLY {req.frequency} training days."
    )


def _parse_reply(res: Any) -> TrainingPlan:
    for tc in tool_calls_of(res):
        name = tc.get("name") or (tc.get("function") or {}).get("name")
        if name != TrainingPlan.__name__:
            continue
        args = tc.get("args")
        if args is None:
            # raw OpenAI format keeps arguments as a JSON string
            args = json.loads((tc.get("function") or {}).get("arguments") or "{}")
        return TrainingPlan.model_validate(args)

    obj = extract_json_object(message_text(res))
    if obj is None:
        raise ValueError("no plan in model reply")
    return TrainingPlan.model_validate(obj)


def generate_plan(req: PlanRequest, llm=None) -> Dict[str, Any]:
    """Ask the model for a plan; fall back to the rule-based plan on any failure.

    Always returns {"success", "plan", "ai_generated", "fallback", "generated_at", "metadata"}.
    """
    plan: Optional[TrainingPlan] = None
    if llm is None and not is_configured():
        logger.info("OPENAI_API_KEY is not set, using the rule-based plan")
    else:
        try:
            model = (llm or get_llm(temperature=0.7)).bind_tools([TrainingPlan])
            res = model.invoke([SystemMessage(content=SYSTEM), HumanMessage(content=_prompt(req))])
            plan = _parse_reply(res)
        except (ValidationError, ValueError) as e:
            logger.warning("training plan reply rejected: %s", e)
        except Exception as e:
            # auth or network
            logger.error("training plan LLM call failed: %r", e)

    ai = plan is not None
    if plan is None:
        plan = generate_fallback_plan(req)
    else:
        logger.info("generated training plan with %d days", len(plan.days))

    return {
        "success": True,
        "plan": plan.model_dump(exclude_none=True),
        "ai_generated": ai,
        "fallback": not ai,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "metadata": req.model_dump(),
    }
