from __future__ import annotations
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from langchain_core.messages import HumanMessage
from pydantic import BaseModel

from fittrack.agent.llm import VISION_MODEL, extract_json_object, get_llm, is_configured, message_text

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 60
DEFAULT_CONFIDENCE = 70
UNKNOWN_FOOD_LABEL = "Unknown food"

_DATA_URL = re.compile(r"^data:([\w.+-]+/[\w.+-]+)?;base64,(.+)$", re.DOTALL)

PROMPT = (
    "Analyse this image and identify all foods. Answer with JSON in the form "
    '{"detected": true/false, "items": ["item1", "item2"], "label": "main dish name", '
    '"confidence": 0-100, "calories": number, "protein": number, "carbs": number, '
    '"fat": number, "reasoning": "short explanation"}. If no food is visible set detected '
    "to false and put a helpful note in reasoning. Estimate realistic values for a typical "
    "portion. Reply with the JSON object ONLY, no extra text or markdown."
)


class FoodScanError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class FoodScanRequest(BaseModel):
    image: str


class FoodScanResult(BaseModel):
    detected: bool = False
    items: List[str] = []
    label: Optional[str] = None
    confidence: Optional[int] = None
    calories: Optional[int] = None
    protein: Optional[int] = None
    carbs: Optional[int] = None
    fat: Optional[int] = None
    reasoning: Optional[str] = None
    message: Optional[str] = None
    low_confidence: bool = False


def parse_data_url(image: str) -> Tuple[str, str]:
    """Split a data URL into (mime type, base64 payload)."""
    if not image or not isinstance(image, str):
        raise FoodScanError(400, "Missing image data")
    m = _DATA_URL.match(image.strip())
    if not m:
        raise FoodScanError(400, "Invalid image format, expected a base64 data URL")
    return m.group(1) or "image/jpeg", m.group(2)


def _round(v: Any, default: float = 0) -> int:
    try:
        return int(round(float(v))) if v not in (None, "") else int(round(default))
    except (TypeError, ValueError):
        return int(round(default))


def gate_confidence(raw: Dict[str, Any]) -> FoodScanResult:
    result = dict(raw)
    conf = result.get("confidence")
    detected = bool(result.get("detected"))
    if detected and isinstance(conf, (int, float)) and conf < CONFIDENCE_THRESHOLD:
        logger.info("low confidence (%s%%), marking as uncertain", conf)
        detected = False
        result["message"] = "Uncertain, please confirm or use a clearer photo"
        result["low_confidence"] = True
    elif not detected and not result.get("message"):
        result["message"] = result.get("reasoning") or "No food detected"

    result["detected"] = detected
    if detected:
        label = result.get("label") or UNKNOWN_FOOD_LABEL
        result["label"] = label
        result["items"] = [str(i) for i in (result.get("items") or [label])]
        for k in ("calories", "protein", "carbs", "fat"):
            result[k] = _round(result.get(k))
        result["confidence"] = _round(conf, DEFAULT_CONFIDENCE)
    else:
        result["items"] = [str(i) for i in (result.get("items") or [])]
        for k in ("confidence", "calories", "protein", "carbs", "fat"):
            if result.get(k) is not None:
                result[k] = _round(result[k])

    fields = FoodScanResult.model_fields
    return FoodScanResult(**{k: v for k, v in result.items() if k in fields})


def scan_food(image: str, llm=None) -> FoodScanResult:
    mime, data = parse_data_url(image)
    if llm is None:
        if not is_configured():
            raise FoodScanError(500, "Food scan provider is not configured")
        llm = get_llm(model=VISION_MODEL, temperature=0.4)

    logger.info("processing food scan, mime=%s size=%d bytes", mime, len(data))
    msg = HumanMessage(content=[
        {"type": "text", "text": PROMPT},
        {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{data}"}},
    ])
    try:
        res = llm.invoke([msg])
    except Exception as e:
        logger.error("food scan provider call failed: %r", e)
        raise FoodScanError(500, "Image recognition failed") from e

    obj = extract_json_object(message_text(res))
    if obj is None:
        logger.error("could not parse food scan reply: %.200s", message_text(res))
        raise FoodScanError(500, "Could not parse provider response")

    result = gate_confidence(obj)
    logger.info("food scan: detected=%s label=%s confidence=%s",
                result.detected, result.label, result.confidence)
    return result
