"""Turn a free-text preference description into per-metric weights."""
from __future__ import annotations

import logging
import math
import os
from typing import Any, Dict

from routegen.llm import StructuredInferenceClient
from routegen.schemas import WEIGHT_ORDER, PreferenceVector
from routegen.tools.text import cap_words

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("ROUTEGEN_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

WEIGHT_MIN = 0.1
WEIGHT_MAX = 0.9
WEIGHT_DEFAULT = 0.5

WEIGHTS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        name: {"type": "number", "minimum": WEIGHT_MIN, "maximum": WEIGHT_MAX}
        for name in WEIGHT_ORDER
    },
    "required": list(WEIGHT_ORDER),
}

WEIGHTS_SYSTEM = f"""Output ONLY JSON matching the schema.

Task:
Given the user's prompt describing preferences, assign EACH metric a numeric score in the closed interval [{WEIGHT_MIN}, {WEIGHT_MAX}].
Return exactly these 8 fields (no extras, none missing):
{", ".join(WEIGHT_ORDER)}

Guidelines:
- Base scores on the user's text (best guess).
- Use {WEIGHT_DEFAULT} when unclear.
- No commentary outside the JSON output.
"""


def repair_weight(value: Any) -> float:
    """Coerce a model-provided weight onto [0.1, 0.9].

    Tolerates alternate encodings: ``"75%"`` means 0.75, integers 1..10 are
    tenths and anything else above 1 is read as a percentage. Missing or
    non-numeric input counts as 0.5.
    """
    if value is None or isinstance(value, bool):
        return WEIGHT_DEFAULT

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("%"):
            try:
                n = float(text[:-1]) / 100
            except ValueError:
                return WEIGHT_DEFAULT
            return _clamp(n)
        try:
            value = float(text)
        except ValueError:
            return WEIGHT_DEFAULT

    try:
        n = float(value)
    except (TypeError, ValueError):
        return WEIGHT_DEFAULT
    if not math.isfinite(n):
        n = WEIGHT_DEFAULT

    if 1 <= n <= 10 and n.is_integer():
        n = n / 10
    elif n > 1:
        n = n / 100
    return _clamp(n)


def _clamp(n: float) -> float:
    return round(min(WEIGHT_MAX, max(WEIGHT_MIN, n)), 3)


async def find_weights(text: str | None, inference: StructuredInferenceClient) -> PreferenceVector:
    """Ask the model for per-metric weights; never raises.

    Any failure (transport error, exhausted retries, unusable output) yields
    the neutral all-0.5 vector.
    """
    prompt = cap_words(text)
    try:
        payload = await inference.invoke(
            WEIGHTS_SYSTEM,
            prompt,
            WEIGHTS_SCHEMA,
            name="emit_weights",
            temperature=0.3,
            max_tokens=128,
        )
    except Exception:
        logger.warning("Preference weighting failed; using neutral weights", exc_info=True)
        return PreferenceVector.neutral()

    weights = {name: repair_weight(payload.get(name)) for name in WEIGHT_ORDER}
    logger.info(
        "Preference weights: %s",
        ", ".join(f"{name}={weights[name]}" for name in WEIGHT_ORDER),
    )
    return PreferenceVector(**weights)
