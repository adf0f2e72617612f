import json
from typing import Optional

from flask import current_app


class GeminiCallFailed(RuntimeError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def is_configured() -> bool:
    return bool(current_app.config.get("GEMINI_API_KEY", "").strip())


def extract_response_text(response) -> str:
    # Prefer direct text field if present.
    text = (getattr(response, "text", "") or "").strip()
    if text:
        return text
    # Fallback: join candidate parts.
    candidates = getattr(response, "candidates", None) or []
    parts = []
    for candidate in candidates:
        content = getattr(candidate, "content", None)
        candidate_parts = getattr(content, "parts", None) or []
        for part in candidate_parts:
            value = getattr(part, "text", "") or ""
            if value:
                parts.append(value.strip())
    return "\n".join(parts).strip()


def parse_json_object(text: str) -> Optional[dict]:
    """Pull the outermost JSON object out of model output, None if unparseable."""
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        return None
    try:
        parsed = json.loads(text[start:end])
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def generate_json_text(system_prompt: str, user_prompt: str, temperature: float = 0.7) -> str:
    """Ask Gemini for a JSON answer and return the raw text.

    Transport and API failures are raised as GeminiCallFailed carrying the
    HTTP status when the SDK exposes one.
    """
    api_key = current_app.config.get("GEMINI_API_KEY", "").strip()
    model = current_app.config.get("GEMINI_MODEL", "gemini-2.5-flash")

    from google import genai
    from google.genai import errors

    try:
        client = genai.Client(api_key=api_key)
        response = client.models.generate_content(
            model=model,
            contents=user_prompt,
            config={
                "system_instruction": system_prompt,
                "temperature": temperature,
                "response_mime_type": "application/json",
            },
        )
    except errors.APIError as exc:
        raise GeminiCallFailed(str(exc), status=getattr(exc, "code", None)) from exc
    except Exception as exc:
        raise GeminiCallFailed(str(exc)) from exc
    return extract_response_text(response)
