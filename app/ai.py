"""Generative helpers backed by the Gemini REST API.

Two services are exposed: a status suggestion for a form subsection and a
progress summary image for the shared daily report.  Both raise
:class:`AIServiceError` on any failure so callers can degrade gracefully.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Iterable, Sequence

import requests

from app.constants import AI_SECTIONS, APP_NAME
from app.records import record_sort_key

DEFAULT_API_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_TEXT_MODEL = "gemini-2.0-flash"
DEFAULT_IMAGE_MODEL = "gemini-2.0-flash-exp"
DEFAULT_TIMEOUT_SECONDS = 30


class AIServiceError(Exception):
    """Raised when a generative request cannot produce a usable answer."""


@dataclass(frozen=True)
class StatusSuggestion:
    suggested_status: str
    confidence_level: float
    rationale: str


@dataclass(frozen=True)
class ProgressImage:
    image_data_uri: str
    image_prompt: str


def historical_data_for_ai(records: Iterable[dict], part_name: str) -> str:
    """Serialise the part's history, oldest first and without ids, as JSON."""

    history = []
    for record in sorted(
        (r for r in records if r.get("part_name") == part_name), key=record_sort_key
    ):
        history.append(
            {
                key: value
                for key, value in record.items()
                if key not in ("id", "created_at", "updated_at")
            }
        )
    return json.dumps(history)


def build_status_prompt(part_name: str, section: str, subsection: str, historical_data: str) -> str:
    return (
        "You are an AI assistant designed to analyze historical inspection data "
        "and suggest the most probable inspection status.\n\n"
        f"Part Name: {part_name}\n"
        f"Section: {section}\n"
        f"Subsection: {subsection}\n"
        f"Historical Data: {historical_data}\n\n"
        "Based on the historical data provided, suggest the most probable inspection "
        "status, along with a confidence level (0 to 1) and a brief rationale.\n"
        'Respond with JSON only, using the keys "suggestedStatus", '
        '"confidenceLevel" and "rationale".'
    )


def build_image_prompt(parts_progress: Sequence[dict], report_date: str) -> str:
    prompt = (
        f"Create a visually appealing summary image for a {APP_NAME} daily inspection "
        f"report dated {report_date}. The image should represent overall progress. "
        "Include distinct sections or visual cues for the following parts: "
    )
    for part in parts_progress:
        target = int(part.get("target") or 0)
        ok = int(part.get("ok") or 0)
        percent = int(ok / target * 100 + 0.5) if target > 0 else 0
        prompt += f"{part.get('name')} (Target: {target}, OK: {ok}, {percent}% complete). "
    prompt += (
        "Use a clean, professional style suitable for a manufacturing report. Use green "
        "indicators for good progress (e.g., >80% of target met), yellow for moderate "
        "(e.g., 50-80%), and red for behind (<50%). The image should be clear and easy "
        "to understand at a glance. Focus on a graphical representation like status "
        "bars or iconic progress indicators rather than detailed text numbers within "
        "the image itself, but ensure part names are subtly identifiable if possible."
    )
    return prompt


def _extract_json(text: str) -> dict:
    match = re.search(r"\{.*\}", text or "", re.DOTALL)
    if not match:
        raise AIServiceError("Model response did not contain JSON.")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise AIServiceError(f"Model returned malformed JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise AIServiceError("Model returned an unexpected JSON payload.")
    return data


def _candidate_parts(payload: dict) -> list[dict]:
    try:
        return payload["candidates"][0]["content"]["parts"] or []
    except (KeyError, IndexError, TypeError) as exc:
        raise AIServiceError("Model response had no candidates.") from exc


class GeminiClient:
    """Thin ``requests`` wrapper around ``models/<model>:generateContent``."""

    def __init__(
        self,
        api_key: str | None,
        *,
        text_model: str = DEFAULT_TEXT_MODEL,
        image_model: str = DEFAULT_IMAGE_MODEL,
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.text_model = text_model
        self.image_model = image_model
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _generate(self, model: str, body: dict) -> dict:
        if not self.api_key:
            raise AIServiceError("GEMINI_API_KEY is not configured.")
        url = f"{self.api_url}/models/{model}:generateContent"
        try:
            response = requests.post(
                url,
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise AIServiceError(f"Request to {model} failed: {exc}") from exc
        if response.status_code != 200:
            snippet = response.text[:200] if response.text else ""
            raise AIServiceError(f"{model} returned HTTP {response.status_code}: {snippet}")
        try:
            return response.json()
        except ValueError as exc:
            raise AIServiceError(f"{model} returned a non-JSON body.") from exc

    def suggest_inspection_status(
        self,
        part_name: str,
        section: str,
        subsection: str,
        historical_data: str,
    ) -> StatusSuggestion:
        if subsection not in AI_SECTIONS.get(section, []):
            raise ValueError(f"Unknown subsection {subsection!r} for section {section!r}.")

        body = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": build_status_prompt(part_name, section, subsection, historical_data)}
                    ],
                }
            ],
            "generationConfig": {"responseMimeType": "application/json"},
        }
        payload = self._generate(self.text_model, body)
        text = "".join(part.get("text", "") for part in _candidate_parts(payload))
        data = _extract_json(text)

        status = data.get("suggestedStatus") or data.get("suggested_status")
        if not status:
            raise AIServiceError("Model response did not include a suggested status.")
        try:
            confidence = float(data.get("confidenceLevel", data.get("confidence_level", 0)))
        except (TypeError, ValueError):
            confidence = 0.0
        return StatusSuggestion(
            suggested_status=str(status),
            confidence_level=min(max(confidence, 0.0), 1.0),
            rationale=str(data.get("rationale") or ""),
        )

    def generate_progress_report_image(
        self, parts_progress: Sequence[dict], report_date: str
    ) -> ProgressImage:
        prompt = build_image_prompt(parts_progress, report_date)
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
        }
        payload = self._generate(self.image_model, body)
        for part in _candidate_parts(payload):
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                return ProgressImage(
                    image_data_uri=f"data:{mime};base64,{inline['data']}",
                    image_prompt=prompt,
                )
        raise AIServiceError("Image generation failed or returned no media.")
