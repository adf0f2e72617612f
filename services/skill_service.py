import re
from typing import Dict, List, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from models import ExtractedSkill, Resume, db
from services import gemini_client


LEVELS = {"beginner", "intermediate", "advanced"}

SKILL_PATTERN = re.compile(
    r"\b(python|javascript|typescript|java|c\+\+|react|angular|vue|node\.js|express|django|flask|"
    r"spring|aws|azure|gcp|docker|kubernetes|git|sql|mongodb|postgresql|mysql|html|css|tailwind|"
    r"graphql|rest|api|machine learning|deep learning|data science|algorithms|data structures)(?![\w+])",
    re.IGNORECASE,
)

SYSTEM_PROMPT = """You are an expert resume analyzer. Extract technical skills from the resume text provided.
For each skill, determine a proficiency level based on context clues:
- "beginner": mentioned briefly, coursework, learning, basic exposure
- "intermediate": work experience, projects, comfortable usage
- "advanced": years of experience, lead roles, expert, architected, designed systems
Return a JSON object with a "skills" array of objects with "name" and "level" properties."""


def keyword_skills(resume_text: str) -> List[Dict]:
    # Fallback extractor: known keywords, first occurrence order.
    seen = []
    for match in SKILL_PATTERN.finditer(resume_text or ""):
        name = match.group(1).lower()
        if name not in seen:
            seen.append(name)
    return [{"name": name[:1].upper() + name[1:], "level": "intermediate"} for name in seen]


def _clean_skills(raw_skills) -> List[Dict]:
    skills = []
    for item in raw_skills if isinstance(raw_skills, list) else []:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        level = str(item.get("level") or "beginner").lower()
        skills.append({"name": name, "level": level if level in LEVELS else "beginner"})
    return skills


def extract_skills(resume_text: str) -> List[Dict]:
    limit = int(current_app.config.get("RESUME_TEXT_LIMIT", 8000))
    text = (resume_text or "")[:limit]
    if not text.strip():
        return []

    if not gemini_client.is_configured():
        current_app.logger.warning("GEMINI_API_KEY is empty. Using keyword skill extraction.")
        return keyword_skills(text)

    try:
        raw = gemini_client.generate_json_text(
            SYSTEM_PROMPT, f"Extract skills from this resume:\n\n{text}", temperature=0.2
        )
    except gemini_client.GeminiCallFailed as exc:
        current_app.logger.warning("Gemini skill extraction failed: %s", exc)
        return keyword_skills(text)

    parsed = gemini_client.parse_json_object(raw)
    if parsed is None:
        current_app.logger.warning("Skill extraction parse failed. Raw text: %s", (raw or "")[:500])
        return keyword_skills(text)
    return _clean_skills(parsed.get("skills"))


def save_resume(user_id: str, file_name: str, raw_text: str) -> Tuple[Resume, List[Dict]]:
    skills = extract_skills(raw_text)
    resume = Resume(user_id=user_id, file_name=file_name, raw_text=raw_text)
    db.session.add(resume)
    db.session.flush()
    for skill in skills:
        db.session.add(
            ExtractedSkill(
                resume_id=resume.id,
                user_id=user_id,
                skill_name=skill["name"],
                proficiency_level=skill["level"],
            )
        )
    db.session.commit()
    return resume, skills


def load_candidate_context(user_id: str) -> Tuple[str, List[Dict]]:
    """Latest resume text and all extracted skills; empty when the store fails."""
    try:
        resume = (
            Resume.query.filter_by(user_id=user_id)
            .order_by(Resume.uploaded_at.desc())
            .first()
        )
        rows = ExtractedSkill.query.filter_by(user_id=user_id).all()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("Could not load resume context for %s: %s", user_id, exc)
        return "", []
    skills = [{"name": row.skill_name, "level": row.proficiency_level} for row in rows]
    return (resume.raw_text or "") if resume else "", skills
