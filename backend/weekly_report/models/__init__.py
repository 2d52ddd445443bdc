"""Data models using Pydantic for validation."""

from typing import Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ============ AI ARTIFACTS ============
class QuestionInsight(BaseModel):
    """AI commentary on one question (class-wide or for one student)."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    question_number: int = Field(validation_alias=AliasChoices("question_number", "qNum"))
    unit: str = ""
    analysis_point: str = ""
    solution: str = ""


class OverallAnalysis(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str
    common_weaknesses: str
    recommendations: str
    question_analysis: List[QuestionInsight] = []


class IndividualAnalysis(BaseModel):
    model_config = ConfigDict(extra="ignore")

    strengths: str
    weaknesses: str
    recommendations: str
    incorrect_analysis: List[QuestionInsight] = []


# ============ STATISTICS ============
class AnswerMark(BaseModel):
    question_number: int
    is_correct: bool


class StudentRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    submitted: bool
    score: Optional[int] = None  # None when the student did not sit the test
    answers: List[AnswerMark] = []
    individual_analysis: Optional[IndividualAnalysis] = None

    @property
    def incorrect_questions(self) -> List[int]:
        return [a.question_number for a in self.answers if not a.is_correct]


class ClassStatistics(BaseModel):
    model_config = ConfigDict(extra="ignore")

    students: List[StudentRecord] = []
    class_average: int = 0
    answer_rates: List[int] = []
    question_count: int = 0
    question_numbers: List[int] = []  # header numbers, same order as answer_rates

    def numbered_rates(self) -> List[Tuple[int, int]]:
        """(question number, answer rate) pairs; positional numbers for data saved without question_numbers."""
        numbers = self.question_numbers or list(range(1, len(self.answer_rates) + 1))
        return list(zip(numbers, self.answer_rates))

    @property
    def submitted_students(self) -> List[StudentRecord]:
        return [s for s in self.students if s.submitted]

    def find_student(self, name: str) -> Optional[StudentRecord]:
        for student in self.students:
            if student.name == name:
                return student
        return None


# ============ SESSION / DATASET ============
class ClassSession(BaseModel):
    """One (class, date) exam instance."""
    model_config = ConfigDict(extra="ignore")

    exam_text: str = ""
    student_data: ClassStatistics
    overall_analysis: Optional[OverallAnalysis] = None
    question_unit_map: Optional[Dict[int, str]] = None
    reference_text: Optional[str] = None  # textbook outline uploaded with the batch


class TestDataset(BaseModel):
    """Root aggregate, one per user: class name -> date label -> session."""
    __test__ = False  # keep pytest from collecting this as a test class
    model_config = ConfigDict(extra="ignore")

    classes: Dict[str, Dict[str, ClassSession]] = {}

    def get_session(self, class_name: str, date_label: str) -> Optional[ClassSession]:
        return self.classes.get(class_name, {}).get(date_label)

    def set_session(self, class_name: str, date_label: str, session: ClassSession) -> None:
        self.classes.setdefault(class_name, {})[date_label] = session


__all__ = [
    "QuestionInsight",
    "OverallAnalysis",
    "IndividualAnalysis",
    "AnswerMark",
    "StudentRecord",
    "ClassStatistics",
    "ClassSession",
    "TestDataset",
]
