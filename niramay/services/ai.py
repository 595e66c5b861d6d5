"""
Waste image classification with Gemini.

The model only classifies priority and describes the waste; eco-points are
never taken from the model but derived from the fixed priority mapping.
Any failure (no key, network error, unparseable answer) degrades to the
default medium-priority analysis instead of propagating.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

import google.generativeai as genai

from niramay.core.config import settings
from niramay.schemas.schemas import (
    AIAnalysis,
    ClassificationResult,
    DEFAULT_PRIORITY,
    ECO_POINTS_BY_PRIORITY,
    Priority,
    eco_points_for_priority,
)

logger = logging.getLogger(__name__)

ANALYZABLE_TYPES = {"image/jpeg", "image/png", "image/webp"}

if settings.GEMINI_API_KEY:
    genai.configure(api_key=settings.GEMINI_API_KEY)

PROMPT_TEMPLATE = """Analyze this waste/garbage image and provide an assessment for a civic waste management system in India.

Context:
- Location: {address} ({lat}, {lng})
- Description: {description}

Return JSON only, with this structure:
{{
  "priority_level": "low|medium|high|urgent",
  "analysis": {{
    "waste_type": "description of waste type",
    "severity": "assessment of severity",
    "environmental_impact": "potential environmental impact",
    "cleanup_difficulty": "estimated cleanup difficulty",
    "reasoning": "explanation for priority assignment"
  }}
}}

Priority guidelines:
- LOW: minor litter, small amounts of dry waste, easily cleanable
- MEDIUM: moderate accumulation, mixed waste, standard cleanup effort
- HIGH: large piles, hazardous materials, blocked pathways
- URGENT: health hazards, toxic waste, near water bodies/schools/hospitals

Do NOT include eco_points; points are assigned from the priority level.
Consider the Indian context: monsoon impact, urban density, public health."""


def default_classification(reason: str = "AI analysis unavailable, using default medium priority assessment") -> ClassificationResult:
    return ClassificationResult(
        priority_level=Priority(DEFAULT_PRIORITY),
        eco_points=ECO_POINTS_BY_PRIORITY[DEFAULT_PRIORITY],
        analysis=AIAnalysis(reasoning=reason),
        fallback=True,
    )


def validate_image_for_analysis(file_bytes: bytes, content_type: Optional[str]) -> bool:
    """Gemini inline images: JPEG/PNG/WEBP up to MAX_AI_IMAGE_BYTES."""
    return content_type in ANALYZABLE_TYPES and 0 < len(file_bytes) <= settings.MAX_AI_IMAGE_BYTES


def _extract_json(text: str) -> Dict[str, Any]:
    match = re.search(r"\{[\s\S]*\}", text or "")
    if not match:
        raise ValueError("No valid JSON found in AI response")
    return json.loads(match.group(0))


def parse_classification(text: str) -> ClassificationResult:
    """Turns the model's free text into a validated classification."""
    data = _extract_json(text)

    raw_priority = str(data.get("priority_level") or "").strip().lower()
    priority = raw_priority if raw_priority in ECO_POINTS_BY_PRIORITY else DEFAULT_PRIORITY
    if priority != raw_priority:
        logger.warning("AI returned unknown priority %r; using %s", raw_priority, priority)

    analysis = data.get("analysis") or {}
    defaults = AIAnalysis()
    return ClassificationResult(
        priority_level=Priority(priority),
        eco_points=eco_points_for_priority(priority),
        analysis=AIAnalysis(
            waste_type=analysis.get("waste_type") or defaults.waste_type,
            severity=analysis.get("severity") or defaults.severity,
            environmental_impact=analysis.get("environmental_impact") or defaults.environmental_impact,
            cleanup_difficulty=analysis.get("cleanup_difficulty") or defaults.cleanup_difficulty,
            reasoning=analysis.get("reasoning") or defaults.reasoning,
        ),
    )


def _generate(prompt: str, image_bytes: bytes, mime_type: str) -> str:
    model = genai.GenerativeModel(settings.GEMINI_MODEL)
    response = model.generate_content([prompt, {"mime_type": mime_type, "data": image_bytes}])
    return response.text


def classify_waste_image(
    image_bytes: bytes,
    mime_type: Optional[str],
    lat: float,
    lng: float,
    address: Optional[str] = None,
    description: Optional[str] = None,
) -> ClassificationResult:
    if not settings.GEMINI_API_KEY:
        return default_classification()
    if not validate_image_for_analysis(image_bytes, mime_type):
        logger.info("Image not eligible for AI analysis (type=%s, %d bytes)", mime_type, len(image_bytes))
        return default_classification()

    prompt = PROMPT_TEMPLATE.format(
        address=address or "Unknown address",
        lat=lat,
        lng=lng,
        description=description or "No additional description provided",
    )
    try:
        result = parse_classification(_generate(prompt, image_bytes, str(mime_type)))
    except Exception:
        logger.exception("Error analyzing waste report with AI")
        return default_classification()

    logger.info("AI Analysis: priority=%s, points=%s", result.priority_level.value, result.eco_points)
    return result
