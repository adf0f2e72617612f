import time
from typing import Dict, List, Optional

from flask import current_app

from core.answers import AnswerKind, QUESTION_TYPE_KINDS
from services import gemini_client
from services.errors import GeneratorUnavailable


PLACEHOLDER_OPTIONS = ["Option A", "Option B", "Option C", "Option D"]

LEVEL_DIFFICULTY = {
    "beginner": "easy",
    "intermediate": "medium",
    "advanced": "hard",
}

DIFFICULTIES = {"easy", "medium", "hard"}


def difficulty_for_level(level: Optional[str]) -> str:
    return LEVEL_DIFFICULTY.get((level or "").lower(), "medium")


def question_count(interview_type: str) -> int:
    return 6 if interview_type == "combined" else 4


def _skill_name(skill: dict) -> str:
    return skill.get("name") or skill.get("skill_name") or ""


def _skill_level(skill: dict) -> str:
    return skill.get("level") or skill.get("proficiency_level") or ""


def _fallback_coding(language: str) -> List[Dict]:
    return [
        {
            "question_type": "coding",
            "skill_name": language,
            "difficulty": "medium",
            "question_text": (
                "**Two Sum Problem**\n\nGiven an array of integers and a target value, return indices "
                "of the two numbers that add up to the target.\n\n"
                f"**Example ({language}):**\n```\nInput: nums = [2, 7, 11, 15], target = 9\n"
                "Output: [0, 1]\nExplanation: nums[0] + nums[1] = 2 + 7 = 9\n```"
            ),
            "expected_answer": "Use a hash map to store seen values and their indices for O(n) time complexity.",
        },
        {
            "question_type": "coding",
            "skill_name": language,
            "difficulty": "easy",
            "question_text": (
                "**Valid Palindrome**\n\nWrite a function that returns true if a string reads the same "
                "forwards and backwards, considering only alphanumeric characters and ignoring case."
            ),
            "expected_answer": "Two pointers from both ends skipping non-alphanumeric characters, O(n) time, O(1) space.",
        },
        {
            "question_type": "coding",
            "skill_name": language,
            "difficulty": "hard",
            "question_text": (
                "**Merge Intervals**\n\nGiven a list of intervals, merge all overlapping intervals and "
                "return the resulting list sorted by start."
            ),
            "expected_answer": "Sort by start, then sweep and extend the last merged interval when overlapping. O(n log n).",
        },
    ]


def _fallback_aptitude() -> List[Dict]:
    return [
        {
            "question_type": "logical",
            "difficulty": "medium",
            "question_text": "**Pattern Recognition**\n\nWhat comes next in the sequence: 2, 6, 12, 20, 30, ?",
            "options": ["40", "42", "44", "48"],
            "expected_answer": "42",
        },
        {
            "question_type": "verbal",
            "difficulty": "medium",
            "question_text": '**Synonym Selection**\n\nChoose the word most similar in meaning to "EPHEMERAL":',
            "options": ["Permanent", "Transient", "Eternal", "Stable"],
            "expected_answer": "Transient",
        },
        {
            "question_type": "aptitude",
            "difficulty": "easy",
            "question_text": "**Basic Calculation**\n\nIf a train travels 120 km in 2 hours, what is its average speed?",
            "options": ["50 km/h", "60 km/h", "70 km/h", "80 km/h"],
            "expected_answer": "60 km/h",
        },
        {
            "question_type": "logical",
            "difficulty": "hard",
            "question_text": (
                "**Logical Deduction**\n\nAll roses are flowers. Some flowers fade quickly. "
                "Which statement must be true?"
            ),
            "options": [
                "All roses fade quickly",
                "Some roses may fade quickly",
                "No roses fade quickly",
                "All flowers are roses",
            ],
            "expected_answer": "Some roses may fade quickly",
        },
    ]


def _fallback_hr() -> List[Dict]:
    return [
        {
            "question_type": "hr",
            "difficulty": "medium",
            "question_text": (
                "**Tell me about a time when you had to deal with a difficult team member. "
                "How did you handle the situation?**"
            ),
            "expected_answer": (
                "A good answer should: 1) Describe the specific situation clearly, 2) Explain the actions "
                "taken to address the conflict, 3) Focus on communication and understanding, 4) Describe "
                "the positive outcome or lessons learned."
            ),
        },
        {
            "question_type": "hr",
            "difficulty": "easy",
            "question_text": "**Why are you interested in this position and our company?**",
            "expected_answer": (
                "A good answer should: 1) Show research about the company, 2) Connect personal skills and "
                "goals to the role, 3) Demonstrate genuine enthusiasm, 4) Be specific rather than generic."
            ),
        },
        {
            "question_type": "hr",
            "difficulty": "hard",
            "question_text": (
                "**Describe a situation where you had to make a difficult decision with incomplete "
                "information. What was your approach?**"
            ),
            "expected_answer": (
                "A good answer should: 1) Explain the context and stakes involved, 2) Describe the "
                "decision-making framework used, 3) Show how risks were assessed, 4) Explain the outcome "
                "and what was learned."
            ),
        },
        {
            "question_type": "hr",
            "difficulty": "medium",
            "question_text": "**Tell me about a project you led that failed. What did you learn from it?**",
            "expected_answer": (
                "A good answer should: 1) Take ownership of the failure, 2) Analyze what went wrong "
                "objectively, 3) Show self-awareness and growth mindset, 4) Describe specific changes made "
                "afterwards."
            ),
        },
    ]


def fallback_questions(interview_type: str, language: str = "javascript") -> List[Dict]:
    # Local fallback when the model is unavailable or returns garbage.
    if interview_type == "hr":
        return _fallback_hr()
    if interview_type == "aptitude":
        return _fallback_aptitude()
    if interview_type == "combined":
        return _fallback_coding(language) + _fallback_aptitude()[:3]
    return _fallback_coding(language)


def normalize_question(raw: dict, interview_type: str, default_difficulty: str) -> Optional[Dict]:
    """Coerce one upstream question into the consumed record shape."""
    if not isinstance(raw, dict):
        return None
    text = str(raw.get("question_text") or "").strip()
    if not text:
        return None

    question_type = str(raw.get("question_type") or "").strip().lower()
    if question_type not in QUESTION_TYPE_KINDS:
        question_type = "hr" if interview_type == "hr" else "aptitude"

    difficulty = str(raw.get("difficulty") or "").strip().lower()
    if difficulty not in DIFFICULTIES:
        difficulty = default_difficulty

    question = {
        "question_type": question_type,
        "skill_name": raw.get("skill_name"),
        "difficulty": difficulty,
        "question_text": text,
        "expected_answer": raw.get("expected_answer"),
    }
    if QUESTION_TYPE_KINDS[question_type] is AnswerKind.MULTIPLE_CHOICE:
        options = raw.get("options")
        if not isinstance(options, list) or len(options) != 4:
            current_app.logger.warning(
                "Question missing proper options, using defaults: %s", text[:50]
            )
            options = list(PLACEHOLDER_OPTIONS)
        question["options"] = [str(option) for option in options]
    return question


def _build_system_prompt(interview_type: str, skills: List[dict], difficulty: str, language: str,
                         resume_text: str) -> str:
    count = question_count(interview_type)
    prompt = ""
    if interview_type in ("coding", "combined"):
        coding_count = 3 if interview_type == "combined" else count
        if difficulty != "adaptive":
            difficulty_rule = f"All questions should be {difficulty} difficulty."
        else:
            lines = [f"- {_skill_name(s)}: {difficulty_for_level(_skill_level(s))} difficulty" for s in skills]
            difficulty_rule = "Match difficulty to skill levels:\n" + "\n".join(lines)
        prompt += f"""
You are an expert technical interviewer generating {language.upper()} coding interview questions.
Generate {coding_count} unique, scenario-based coding questions in {language}.
{difficulty_rule}
Each question has: question_type "coding", skill_name "{language}", difficulty (easy|medium|hard),
question_text (markdown with a real-world context, examples and constraints) and
expected_answer (brief description of the optimal approach).
"""
    if interview_type in ("aptitude", "combined"):
        aptitude_count = 3 if interview_type == "combined" else count
        difficulty_rule = (
            f"All questions should be {difficulty} difficulty." if difficulty != "adaptive"
            else "Use medium difficulty by default."
        )
        prompt += f"""
Generate {aptitude_count} aptitude/reasoning questions covering logical reasoning, verbal ability and
quantitative aptitude. {difficulty_rule}
Each question has: question_type (aptitude|logical|verbal), difficulty, question_text (without options),
options (EXACTLY 4 strings) and expected_answer (the exact text of the correct option).
"""
    if interview_type == "hr":
        prompt = f"""
You are an expert HR interviewer. Generate {count} behavioral and situational interview questions covering
leadership, teamwork, problem-solving, communication, conflict resolution, motivation and adaptability.
Each question has: question_type "hr", difficulty (easy|medium|hard), question_text and expected_answer
(key points a good answer should include).
"""
        if skills:
            prompt += "Candidate skills: " + ", ".join(_skill_name(s) for s in skills if _skill_name(s)) + "\n"
        if resume_text:
            prompt += f"Tailor questions to this resume:\n{resume_text[:4000]}\n"
    prompt += '\nReturn only valid JSON with a "questions" array.'
    return prompt.strip()


def generate_questions(interview_type: str, skills: Optional[List[dict]] = None, interview_id: str = "",
                       difficulty: Optional[str] = None, language: Optional[str] = None,
                       resume_text: Optional[str] = None) -> List[Dict]:
    """Ordered question records for a new interview.

    Raises GeneratorUnavailable when the model cannot be reached; malformed
    output or a missing API key yields the built-in default set.
    """
    skills = skills or []
    language = language or "javascript"
    difficulty = (difficulty or "adaptive").lower()
    default_difficulty = difficulty if difficulty in DIFFICULTIES else "medium"

    if not gemini_client.is_configured():
        current_app.logger.warning("GEMINI_API_KEY is empty. Using fallback questions.")
        return fallback_questions(interview_type, language)

    system_prompt = _build_system_prompt(interview_type, skills, difficulty, language, resume_text or "")
    user_prompt = (
        f"Generate interview questions now. Interview ID: {interview_id}. "
        f"Timestamp: {int(time.time() * 1000)} (use this to ensure uniqueness)"
    )
    try:
        text = gemini_client.generate_json_text(system_prompt, user_prompt)
    except gemini_client.GeminiCallFailed as exc:
        if exc.status == 429:
            raise GeneratorUnavailable("Rate limit exceeded. Please try again later.") from exc
        current_app.logger.exception("Gemini question generation failed: %s", exc)
        raise GeneratorUnavailable("Failed to generate questions. Please try again.") from exc

    payload = gemini_client.parse_json_object(text)
    raw_questions = payload.get("questions") if payload else None
    if not isinstance(raw_questions, list):
        current_app.logger.warning("Gemini response parse failed. Raw text: %s", (text or "")[:500])
        return fallback_questions(interview_type, language)

    questions = []
    for raw in raw_questions:
        question = normalize_question(raw, interview_type, default_difficulty)
        if question is not None:
            questions.append(question)
    if not questions:
        current_app.logger.warning("Gemini returned no usable questions. Using fallback questions.")
        return fallback_questions(interview_type, language)
    return questions
