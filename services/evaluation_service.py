import math
from typing import Callable, Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from core.answers import AnswerKind, kind_for
from ml.text_utils import answer_similarity, same_option
from models import InterviewQuestion, db
from services import gemini_client
from services.errors import EvaluatorUnavailable


POINTS_FOR_DIFFICULTY = {
    "easy": 10,
    "medium": 20,
    "hard": 30,
}
DEFAULT_POINTS = 20
NO_QUESTIONS = "no_questions"
DEFAULT_FEEDBACK = "Thank you for completing the interview. Keep practicing to improve your skills!"

Grader = Callable[[Dict], Dict]


def max_points_for(difficulty: Optional[str]) -> int:
    return POINTS_FOR_DIFFICULTY.get((difficulty or "").lower(), DEFAULT_POINTS)


def award_points(percent, max_points: int) -> int:
    # Half-up rounding of the percentage share of the question's points.
    try:
        percent = float(percent)
    except (TypeError, ValueError):
        percent = 0.0
    percent = max(0.0, min(100.0, percent))
    return int(math.floor(percent / 100.0 * max_points + 0.5))


def _overall_feedback(percent: float) -> str:
    if percent >= 80:
        return "Excellent overall performance. Your answers were clear, relevant, and well-structured."
    if percent >= 65:
        return "Good overall performance. Add more concrete examples and measurable outcomes."
    if percent >= 50:
        return "Average overall performance. Improve depth, structure, and role-specific clarity."
    return "Needs improvement overall. Focus on structure, relevance, and specific examples in each answer."


def offline_grade(question: Dict) -> Dict:
    """Grade without the model: option match or similarity to the expected answer."""
    kind = kind_for(question.get("question_type", "hr"))
    expected = question.get("expected_answer") or ""

    if kind is AnswerKind.MULTIPLE_CHOICE:
        answer = question.get("user_answer") or ""
        correct = bool(answer) and same_option(answer, expected)
        feedback = (
            "Correct answer." if correct
            else f"Incorrect. The expected answer is: {expected}" if expected
            else "No answer submitted."
        )
        return {"score": 100 if correct else 0, "is_correct": correct, "feedback": feedback}

    answer = question.get("user_code") if kind is AnswerKind.CODING else question.get("user_answer")
    answer = answer or ""
    if not answer.strip():
        return {"score": 0, "is_correct": False, "feedback": "No answer submitted."}

    similarity = answer_similarity(expected, answer) if expected else 0.5
    score = int(round(similarity * 100))
    if score >= 60:
        feedback = "Strong and well-structured answer."
    elif score >= 35:
        feedback = "Correct idea but could be more detailed."
    else:
        feedback = "Your answer does not sufficiently match the expected response."
    return {"score": score, "is_correct": score >= 60, "feedback": feedback}


def _grade_prompt(question: Dict) -> str:
    if kind_for(question.get("question_type", "hr")) is AnswerKind.CODING:
        return f"""Evaluate this coding solution:

Question: {question.get("question_text", "")}

User's Code:
```
{question.get("user_code") or "No code submitted"}
```

Expected Approach: {question.get("expected_answer") or "Not specified"}

Evaluate correctness, code quality, time/space complexity and edge case handling.
Return JSON with: score (0-100), is_correct (boolean), feedback (markdown)."""
    options = f"Options: {question['options']}\n" if question.get("options") else ""
    return f"""Evaluate this answer:

Question: {question.get("question_text", "")}
{options}
User's Answer: {question.get("user_answer") or "No answer submitted"}
Expected Answer: {question.get("expected_answer") or "Not specified"}

Return JSON with: score (100 if correct, 0 if wrong; partial credit allowed for open answers),
is_correct (boolean), feedback (brief explanation and the right approach)."""


def gemini_grade(question: Dict) -> Dict:
    """Grade with Gemini; falls back to the offline grader on bad output."""
    try:
        text = gemini_client.generate_json_text(
            "You are a fair and constructive technical interviewer. Return only valid JSON.",
            _grade_prompt(question),
            temperature=0.2,
        )
    except gemini_client.GeminiCallFailed as exc:
        if exc.status == 429:
            raise EvaluatorUnavailable("Rate limit exceeded. Please try again later.") from exc
        current_app.logger.warning("Gemini evaluation failed, grading offline: %s", exc)
        return offline_grade(question)

    parsed = gemini_client.parse_json_object(text)
    if not parsed or "score" not in parsed:
        current_app.logger.warning("Gemini evaluation parse failed. Raw text: %s", (text or "")[:500])
        return offline_grade(question)
    return {
        "score": parsed.get("score", 0),
        "is_correct": bool(parsed.get("is_correct", False)),
        "feedback": str(parsed.get("feedback") or "Evaluation not available"),
    }


def default_grader() -> Grader:
    return gemini_grade if gemini_client.is_configured() else offline_grade


def _load_questions(interview_id: str, questions_data: Optional[List[Dict]]) -> List[Dict]:
    # Supplied in-memory answers win over rows that may be stale or missing.
    if questions_data:
        return [dict(q) for q in questions_data]
    try:
        rows = (
            InterviewQuestion.query.filter_by(interview_id=interview_id)
            .order_by(InterviewQuestion.position)
            .all()
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise EvaluatorUnavailable("Could not load interview questions.") from exc
    return [
        {
            "id": row.id,
            "question_type": row.question_type,
            "difficulty": row.difficulty,
            "question_text": row.question_text,
            "expected_answer": row.expected_answer or "",
            "options": row.options,
            "user_answer": row.user_answer or "",
            "user_code": row.user_code or "",
        }
        for row in rows
    ]


def _write_back(results: List[Dict]) -> None:
    stored = [r for r in results if r.get("id")]
    if not stored:
        return
    try:
        for result in stored:
            InterviewQuestion.query.filter_by(id=result["id"]).update(
                {
                    "is_correct": result["is_correct"],
                    "score": result["score"],
                    "ai_feedback": result["ai_feedback"],
                }
            )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("Could not store per-question evaluation: %s", exc)


def _overall_text(results: List[Dict], total_score: int, max_score: int) -> str:
    percent = (total_score / max_score * 100.0) if max_score else 0.0
    if not gemini_client.is_configured():
        return f"{_overall_feedback(percent)} {DEFAULT_FEEDBACK}"

    lines = "\n".join(
        f"- {r['question_type']} ({r['difficulty']}): {'Correct' if r['is_correct'] else 'Incorrect'}"
        for r in results
    )
    prompt = f"""Based on these interview results:
Total Score: {total_score}/{max_score} ({round(percent)}%)

Question Performance:
{lines}

Provide a brief, encouraging overall feedback (3-4 sentences) covering what went well, key areas to
improve and specific study recommendations. Return JSON with a "feedback" string field."""
    try:
        text = gemini_client.generate_json_text(
            "You are an encouraging interview coach. Return only valid JSON.", prompt
        )
    except gemini_client.GeminiCallFailed as exc:
        current_app.logger.warning("Overall feedback generation failed: %s", exc)
        return DEFAULT_FEEDBACK
    parsed = gemini_client.parse_json_object(text)
    return str(parsed.get("feedback")) if parsed and parsed.get("feedback") else DEFAULT_FEEDBACK


def evaluate_interview(interview_id: str, questions_data: Optional[List[Dict]] = None,
                       grader: Optional[Grader] = None) -> Dict:
    """Score every question of an interview.

    Returns ``{"totalScore", "maxScore", "feedback", "questions"}`` or
    ``{"error": "no_questions"}`` when nothing can be graded.
    """
    questions = _load_questions(interview_id, questions_data)
    if not questions:
        current_app.logger.warning("No questions to evaluate for interview %s", interview_id)
        return {"error": NO_QUESTIONS}

    grade = grader or default_grader()
    results = []
    total_score = 0
    max_score = 0
    for question in questions:
        max_points = max_points_for(question.get("difficulty"))
        evaluation = grade(question) or {}
        score = award_points(evaluation.get("score", 0), max_points)
        total_score += score
        max_score += max_points
        results.append(
            {
                "id": question.get("id"),
                "question_type": question.get("question_type"),
                "difficulty": question.get("difficulty"),
                "score": score,
                "max_points": max_points,
                "is_correct": bool(evaluation.get("is_correct", False)),
                "ai_feedback": evaluation.get("feedback") or "Evaluation not available",
            }
        )

    _write_back(results)
    current_app.logger.info("Interview %s evaluated: %s/%s", interview_id, total_score, max_score)
    return {
        "totalScore": total_score,
        "maxScore": max_score,
        "feedback": _overall_text(results, total_score, max_score),
        "questions": results,
    }
