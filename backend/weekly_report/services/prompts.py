"""
Prompt builders for the three AI artifacts, plus the canned payloads used
when no model call is needed.
"""

import json
from typing import Dict, List, Optional

from ..config.settings import settings
from ..models import ClassSession, ClassStatistics, IndividualAnalysis, OverallAnalysis, StudentRecord

# High-school math (common course) outline used when no textbook text was uploaded
CURRICULUM_OUTLINE = """01 평면좌표: 두 점 사이의 거리, 선분의 내분점과 외분점, 삼각형의 무게중심
02 직선의 방정식: 직선의 방정식, 두 직선의 교점을 지나는 직선, 두 직선의 위치 관계, 점과 직선 사이의 거리
03 원의 방정식: 원의 방정식, 원과 직선의 위치 관계, 원의 접선, 두 원의 교점을 지나는 직선과 원
04 도형의 이동: 평행이동, 대칭이동
05 집합의 뜻과 포함 관계
06 집합의 연산
07 명제: 명제와 조건, 명제의 증명, 절대부등식
08 함수: 함수, 여러 가지 함수, 합성함수, 역함수
09 유리함수
10 무리함수"""

# Difficulty labels
EASY, MEDIUM, HARD, UNKNOWN = "쉬움", "보통", "어려움", "정보 없음"

_PROMPT_FIRST_YEAR_HARD_FROM = 18
_PROMPT_FIRST_YEAR_MEDIUM_FROM = 9
_PROMPT_UPPER_YEAR_HARD = frozenset({14, 15, 17, 18, 19, 21})
_PROMPT_UPPER_YEAR_MEDIUM = frozenset({6, 7, 8, 9, 10, 11, 12, 13, 16, 20})


def prompt_difficulty(question_number: int, class_name: Optional[str]) -> str:
    """Difficulty label attached to incorrect questions in the individual prompt."""
    if not class_name:
        return UNKNOWN
    if "고1" in class_name:
        if question_number >= _PROMPT_FIRST_YEAR_HARD_FROM:
            return HARD
        if question_number >= _PROMPT_FIRST_YEAR_MEDIUM_FROM:
            return MEDIUM
        return EASY
    if question_number in _PROMPT_UPPER_YEAR_HARD:
        return HARD
    if question_number in _PROMPT_UPPER_YEAR_MEDIUM:
        return MEDIUM
    return EASY


def low_rate_questions(stats: ClassStatistics, threshold: int = settings.LOW_RATE_THRESHOLD) -> List[Dict[str, int]]:
    """Questions answered correctly by at most ``threshold`` %, worst first."""
    found = [
        {"question_number": number, "answer_rate": rate, "error_rate": 100 - rate}
        for number, rate in stats.numbered_rates()
        if rate <= threshold
    ]
    return sorted(found, key=lambda q: (-q["error_rate"], q["question_number"]))


# ============ CANNED PAYLOADS ============

def no_issues_overall() -> OverallAnalysis:
    return OverallAnalysis(
        summary=(
            "반 전체가 고르게 높은 성취도를 보였습니다. 정답률 40% 이하로 떨어진 문항이 없어 "
            "시험 범위의 핵심 개념이 대체로 잘 정착된 것으로 보입니다."
        ),
        common_weaknesses=(
            "반 전체에 공통으로 드러난 약점은 없습니다. 학생별 오답을 확인해 개별적으로 보완하는 것이 효과적입니다."
        ),
        recommendations=(
            "현재 진도와 복습 방식을 유지하면서 심화 문항과 새로운 유형의 문제로 응용력을 넓혀 주세요."
        ),
        question_analysis=[],
    )


def perfect_score_analysis(score: Optional[int], class_average: int) -> IndividualAnalysis:
    return IndividualAnalysis(
        strengths=(
            f"총점 {score}점으로 모든 문항을 맞혔습니다. 반 평균 {class_average}점을 크게 웃도는 결과로, "
            "고난도 문항까지 실수 없이 해결해 시험 범위의 개념을 빈틈없이 이해하고 있음을 보여줍니다."
        ),
        weaknesses="이번 시험에서 드러난 약점은 없습니다.",
        recommendations=(
            "지금의 학습 흐름을 유지하면서 심화 문제와 경시 유형 문제로 문제 해결력을 한 단계 더 끌어올리는 것을 권합니다."
        ),
        incorrect_analysis=[],
    )


# ============ PROMPTS ============

UNIT_MAP_PROMPT = """You are analyzing a Korean high-school math exam.
Below is the full text of the exam paper and the table of contents of the textbook it follows.
For every question listed here: {question_list}, identify the most specific core math concept it tests
(for example '두 점 사이의 거리', '선분의 내분점', '합성함수', '역함수'). Write every label in Korean.

**Exam text (from PDF):**
{exam_text}

**Textbook table of contents:**
{outline}

Return ONLY a JSON object mapping each question number (as a string) to its concept label, no other text:
{{
  "1": "두 점 사이의 거리",
  "2": "선분의 내분점",
  "...": "..."
}}"""

OVERALL_PROMPT = """You are a data-driven education consultant. Below are one class's math test results and the exam text.
Analyze how the class is doing and give the teacher concrete feedback. Write everything in Korean, in a professional and clear tone.

**Class data:**
- Class average score: {class_average}
- Number of questions: {question_count}

**Exam text (from PDF):**
{exam_text}

**Low-performing questions (answer rate {threshold}% or below, worst first):**
{low_rate_json}

**Return ONLY this JSON object, no other text:**
{{
  "summary": "Overall assessment of achievement and learning trends",
  "common_weaknesses": "2-3 concepts or problem types the class commonly struggles with",
  "recommendations": "2-3 concrete teaching activities for the next lesson",
  "question_analysis": [
    {{
      "question_number": 18,
      "unit": "Most specific concept the question tests",
      "analysis_point": "Why the error rate is high, briefly",
      "solution": "One sentence on the concept or strategy to emphasize"
    }}
  ]
}}
Include one question_analysis entry for every low-performing question listed above."""

INDIVIDUAL_PROMPT = """Below are one student's math test result and the exam text. Analyze the overall strengths,
weaknesses and study recommendations, and analyze each question answered incorrectly. Write everything in Korean,
in a professional and encouraging tone. Do not use the word '학생' or any name; omit the subject.

**Result:**
- Score: {score}
- Class average: {class_average}

**Exam text (from PDF):**
{exam_text}

**Incorrect questions (with difficulty and concept label):**
{incorrect_json}

**Return ONLY this JSON object, no other text:**
{{
  "strengths": "Strengths, comparing the score with the class average",
  "weaknesses": "Common pattern behind the incorrect questions",
  "recommendations": "2-3 concrete, actionable study plans",
  "incorrect_analysis": [
    {{
      "question_number": 12,
      "unit": "Most specific concept the question tests",
      "analysis_point": "Key cause of the mistake, in a few keywords",
      "solution": "One-sentence remedy"
    }}
  ]
}}"""


def build_unit_map_prompt(session: ClassSession) -> str:
    outline = CURRICULUM_OUTLINE
    if session.reference_text and session.reference_text.strip():
        outline = session.reference_text[: settings.REFERENCE_TEXT_BUDGET]
    return UNIT_MAP_PROMPT.format(
        question_list=", ".join(str(number) for number, _ in session.student_data.numbered_rates()),
        exam_text=session.exam_text[: settings.UNIT_MAP_TEXT_BUDGET],
        outline=outline,
    )


def build_overall_prompt(session: ClassSession, low_rate: List[Dict[str, int]]) -> str:
    stats = session.student_data
    return OVERALL_PROMPT.format(
        class_average=stats.class_average,
        question_count=stats.question_count,
        exam_text=session.exam_text[: settings.ANALYSIS_TEXT_BUDGET],
        threshold=settings.LOW_RATE_THRESHOLD,
        low_rate_json=json.dumps(
            [{"question_number": q["question_number"], "error_rate": q["error_rate"]} for q in low_rate],
            ensure_ascii=False,
            indent=2,
        ),
    )


def build_individual_prompt(
    student: StudentRecord,
    session: ClassSession,
    class_name: str,
    unit_map: Dict[int, str],
) -> str:
    incorrect = [
        {
            "question_number": q,
            "difficulty": prompt_difficulty(q, class_name),
            "unit": unit_map.get(q, ""),
        }
        for q in student.incorrect_questions
    ]
    return INDIVIDUAL_PROMPT.format(
        score=student.score,
        class_average=session.student_data.class_average,
        exam_text=session.exam_text[: settings.ANALYSIS_TEXT_BUDGET],
        incorrect_json=json.dumps(incorrect, ensure_ascii=False, indent=2),
    )
