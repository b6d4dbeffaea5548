import json

import pytest
from langchain_core.messages import AIMessage

from fittrack.agent.food import (
    CONFIDENCE_THRESHOLD,
    FoodScanError,
    gate_confidence,
    parse_data_url,
    scan_food,
)
from fittrack.agent.llm import extract_json_object
from fittrack.agent.plan import PlanRequest, TrainingPlan, generate_fallback_plan, generate_plan

from conftest import FakeLLM

IMAGE = "data:image/png;base64,iVBORw0KGgo="

PLAN = {
    "days": [
        {"day": "Monday", "focus": "Full body", "exercises": [
            {"name": "Squats", "sets": 3, "reps": "12-15", "rest": 60},
        ]},
        {"day": "Thursday", "focus": "Strength", "exercises": [
            {"name": "Push-ups", "sets": 3, "reps": "8-12"},
        ]},
    ],
    "notes": "Add a rep each week.",
}


def request(**kw):
    base = dict(age=30, gender="female", height=170, weight=65, level="intermediate",
                goal="muscle", frequency=2, equipment="bodyweight")
    base.update(kw)
    return PlanRequest(**base)


def test_extract_json_object_variants():
    assert extract_json_object('{"a": 1}') == {"a": 1}
    assert extract_json_object('here:\n```json\n{"a": 2}\n```\nbye') == {"a": 2}
    assert extract_json_object('The answer is {"a": 3} ok') == {"a": 3}
    assert extract_json_object("no json here") is None
    assert extract_json_object("[1, 2]") is None
    assert extract_json_object("") is None


def test_plan_from_tool_call():
    reply = AIMessage(content="", tool_calls=[{"name": "TrainingPlan", "args": PLAN, "id": "call_1"}])
    llm = FakeLLM(reply)
    out = generate_plan(request(), llm=llm)
    assert llm.tools == [TrainingPlan]
    assert out["ai_generated"] and not out["fallback"]
    assert [d["day"] for d in out["plan"]["days"]] == ["Monday", "Thursday"]
    assert out["plan"]["notes"] == "Add a rep each week."
    assert out["metadata"]["goal"] == "muscle"


def test_plan_from_fenced_json_text():
    llm = FakeLLM(AIMessage(content="Sure!\n```json\n" + json.dumps(PLAN) + "\n```"))
    out = generate_plan(request(), llm=llm)
    assert out["ai_generated"]
    assert len(out["plan"]["days"]) == 2


def test_invalid_plan_falls_back():
    bad = {"days": [{"day": "Monday", "focus": "x", "exercises": [{"name": "Squats", "sets": 0, "reps": "5"}]}]}
    out = generate_plan(request(), llm=FakeLLM(AIMessage(content=json.dumps(bad))))
    assert out["fallback"] and not out["ai_generated"]
    assert out["success"]


def test_llm_failure_falls_back():
    out = generate_plan(request(frequency=4), llm=FakeLLM(error=RuntimeError("network down")))
    assert out["fallback"]
    assert [d["day"] for d in out["plan"]["days"]] == ["Monday", "Tuesday", "Wednesday", "Thursday"]


def test_fallback_day_count_is_clamped():
    assert len(generate_fallback_plan(request(frequency=1)).days) == 2
    assert len(generate_fallback_plan(request(frequency=7)).days) == 6


def test_fallback_level_adjustments():
    beginner = generate_fallback_plan(request(level="beginner", equipment="gym"))
    ex = beginner.days[0].exercises
    assert len(ex) == 3
    assert (ex[0].name, ex[0].sets, ex[0].rest) == ("Back squat", 3, 120)
    assert ex[2].rest == 120  # deadlift 120 + 30 capped

    advanced = generate_fallback_plan(request(level="advanced", equipment="dumbbells"))
    ex = advanced.days[0].exercises
    assert len(ex) == 5
    assert (ex[0].name, ex[0].sets, ex[0].rest) == ("Goblet squat", 5, 60)
    assert ex[1].sets == 5  # 4 + 1 capped at 5


def test_fallback_focus_by_goal():
    def focus(goal):
        return [d.focus for d in generate_fallback_plan(request(goal=goal, frequency=4)).days]

    assert focus("fatloss") == ["Full body", "HIIT/Metcon", "Full body", "HIIT/Metcon"]
    assert focus("performance") == ["Strength", "Explosive", "Technique", "Strength"]
    assert focus("muscle") == ["Full body", "Strength/Core", "Full body", "Strength/Core"]


def test_plan_request_validation():
    with pytest.raises(ValueError):
        request(frequency=8)
    with pytest.raises(ValueError):
        request(equipment="kettlebells")


def test_parse_data_url():
    assert parse_data_url(IMAGE) == ("image/png", "iVBORw0KGgo=")
    for bad in ("", "not-a-data-url", "data:image/png,abc"):
        with pytest.raises(FoodScanError) as exc:
            parse_data_url(bad)
        assert exc.value.status_code == 400


def test_gate_confidence_low_confidence_is_uncertain():
    res = gate_confidence({"detected": True, "label": "Pizza", "confidence": CONFIDENCE_THRESHOLD - 1})
    assert not res.detected and res.low_confidence
    assert res.message.startswith("Uncertain")


def test_gate_confidence_fills_defaults():
    res = gate_confidence({"detected": True, "calories": 512.6, "protein": None})
    assert res.detected
    assert res.label == "Unknown food"
    assert res.items == ["Unknown food"]
    assert res.calories == 513 and res.protein == 0 and res.fat == 0
    assert res.confidence == 70


def test_gate_confidence_not_detected_message():
    assert gate_confidence({"detected": False, "reasoning": "Only a cat"}).message == "Only a cat"
    assert gate_confidence({"detected": False}).message == "No food detected"


def test_scan_food_sends_image_and_parses_reply():
    reply = AIMessage(content='```json\n{"detected": true, "items": ["rice", "chicken"], '
                              '"label": "Chicken rice", "confidence": 88.4, "calories": 650, '
                              '"protein": 40, "carbs": 70, "fat": 18, "reasoning": "plate"}\n```')
    llm = FakeLLM(reply)
    res = scan_food(IMAGE, llm=llm)
    assert res.detected and res.label == "Chicken rice"
    assert res.confidence == 88
    parts = llm.calls[0][0].content
    assert parts[1]["image_url"]["url"] == IMAGE


def test_scan_food_errors():
    with pytest.raises(FoodScanError) as exc:
        scan_food(IMAGE, llm=FakeLLM(AIMessage(content="I cannot tell")))
    assert exc.value.status_code == 500
    with pytest.raises(FoodScanError) as exc:
        scan_food(IMAGE, llm=FakeLLM(error=RuntimeError("quota")))
    assert exc.value.status_code == 500


def test_scan_food_unconfigured(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(FoodScanError) as exc:
        scan_food(IMAGE)
    assert exc.value.status_code == 500


def test_plan_without_key_skips_the_model(monkeypatch):
    from fittrack.agent import plan as plan_mod

    calls = []
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr(plan_mod, "get_llm", lambda **kw: calls.append(kw))
    out = generate_plan(request())
    assert out["fallback"] and not out["ai_generated"]
    assert len(out["plan"]["days"]) == 2
    assert calls == []
