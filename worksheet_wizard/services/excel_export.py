"""
Excel Export
Writes a finished worksheet to a multi-sheet .xlsx workbook: a Summary sheet
followed by one sheet per non-empty question type.
"""
import io
import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet as Sheet

from worksheet_wizard.models.worksheet import QUESTION_TYPES, Question, QuestionTags, Worksheet

logger = logging.getLogger(__name__)

OPTION_PREFIX = re.compile(r"^[A-F]\.\s*")
UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|]+')

TAG_COLUMNS = ["Learning Objectives", "Bloom Taxonomy", "Difficulty"]
TAG_WIDTHS = [40, 15, 12]
EXPLANATION_COLUMNS = [
    "Learning Objective Explanation",
    "Explanation",
    "Key Concepts",
    "Common Mistakes",
    "Real World Application",
]
EXPLANATION_WIDTHS = [80, 80, 20, 80, 80]

header_font = Font(bold=True)


@dataclass(frozen=True)
class SheetSchema:
    """Column layout of one question type's sheet"""
    sheet_name: str
    columns: List[str]
    widths: List[int]
    option_count: int = 0
    match_columns: bool = False
    explanations: bool = False


def _simple_schema(sheet_name: str) -> SheetSchema:
    return SheetSchema(
        sheet_name=sheet_name,
        columns=["Question No.", "Question", "Answer"] + TAG_COLUMNS,
        widths=[12, 60, 50] + TAG_WIDTHS,
    )


SHEET_SCHEMAS: Dict[str, SheetSchema] = {
    "mcq_single_answer": SheetSchema(
        sheet_name="MCQ Single Answer",
        columns=["Question No.", "Question", "Option A", "Option B", "Option C", "Option D", "Answer"]
        + TAG_COLUMNS + EXPLANATION_COLUMNS,
        widths=[12, 60, 40, 40, 40, 40, 10] + TAG_WIDTHS + EXPLANATION_WIDTHS,
        option_count=4,
        explanations=True,
    ),
    "mcq_multiple_answer": SheetSchema(
        sheet_name="MCQ Multiple Answer",
        columns=["Question No.", "Question", "Option A", "Option B", "Option C", "Option D",
                 "Option E", "Option F", "Answer"] + TAG_COLUMNS,
        widths=[12, 60, 35, 35, 35, 35, 35, 35, 15] + TAG_WIDTHS,
        option_count=6,
    ),
    "true_false": _simple_schema("True False"),
    "fill_in_the_blanks": _simple_schema("Fill in the Blanks"),
    "very_short_answer": _simple_schema("Very Short Answer"),
    "short_answer": _simple_schema("Short Answer"),
    "long_answer": _simple_schema("Long Answer"),
    "match_the_column": SheetSchema(
        sheet_name="Match the Column",
        columns=["Question No.", "Question", "Column A", "Column B", "Answer"] + TAG_COLUMNS,
        widths=[12, 60, 30, 30, 20] + TAG_WIDTHS,
        match_columns=True,
    ),
}


class QuestionCounter:
    """Question numbering shared by every sheet of one export"""

    def __init__(self, start: int = 1):
        self.value = start

    def next(self) -> int:
        number = self.value
        self.value += 1
        return number


def humanize_type(question_type: str) -> str:
    """mcq_single_answer -> Mcq Single Answer"""
    return " ".join(word[:1].upper() + word[1:] for word in question_type.split("_"))


def strip_option_prefix(option: str) -> str:
    """Drop a leading "A. " style letter label"""
    return OPTION_PREFIX.sub("", option)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(_text(v) for v in value)
    return str(value)


def _json_text(value: Any) -> str:
    # Empty containers are still written as JSON ("[]", "{}")
    if value is None or value == "" or value == 0:
        return ""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _explanation_cells(question: Question) -> List[str]:
    if not question.explanations:
        return [""] * len(EXPLANATION_COLUMNS)

    first = question.explanations[0]
    key_concepts = "".join(f"{concept},\n" for concept in first.key_concepts)
    return [
        _text(first.learning_objective),
        _text(first.explanation),
        key_concepts,
        _text(first.common_mistakes),
        _text(first.real_world_application),
    ]


def build_row(schema: SheetSchema, question: Question, number: int) -> List[Any]:
    row: List[Any] = [number, question.question or ""]

    if schema.option_count:
        options = question.options or []
        for i in range(schema.option_count):
            option = options[i] if i < len(options) else None
            row.append(strip_option_prefix(option) if option else "")
    elif schema.match_columns:
        row.append(_json_text(question.columnA))
        row.append(_json_text(question.columnB))

    row.append(_text(question.answer))

    tags = question.tags or QuestionTags()
    row.extend([_text(tags.learning_objectives), _text(tags.bloom), _text(tags.difficulty)])

    # Explanation data may exist for any type; only schemas that declare the
    # columns receive it.
    if schema.explanations:
        row.extend(_explanation_cells(question))

    return row


def _set_widths(sheet: Sheet, widths: List[int]) -> None:
    for index, width in enumerate(widths, start=1):
        sheet.column_dimensions[get_column_letter(index)].width = width


def _write_summary(sheet: Sheet, worksheet: Worksheet) -> None:
    def name_of(item) -> str:
        return (item.name if item else None) or "N/A"

    sheet.append(["Worksheet Information"])
    sheet.append([])
    sheet.append(["Board", name_of(worksheet.board)])
    sheet.append(["Grade", name_of(worksheet.grade)])
    sheet.append(["Subject", name_of(worksheet.subject)])
    sheet.append(["Topic", worksheet.topic or "N/A"])
    sheet.append(["Section", worksheet.section or "N/A"])
    sheet.append(["Total Questions", worksheet.number_of_questions or 0])
    sheet.append(["Status", worksheet.status or "N/A"])
    sheet.append(["Worksheet ID", _text(worksheet.id) or "N/A"])
    sheet.append([])
    sheet.append(["Question Distribution by Type"])
    sheet.append(["Question Type", "Count"])

    for question_type in worksheet.non_empty_types():
        sheet.append([humanize_type(question_type), len(worksheet.questions[question_type])])

    for row in (1, 12, 13):
        for cell in sheet[row]:
            cell.font = header_font

    _set_widths(sheet, [25, 30])


def _write_question_sheet(
    sheet: Sheet,
    schema: SheetSchema,
    questions: List[Question],
    counter: QuestionCounter
) -> None:
    sheet.append(schema.columns)
    for cell in sheet[1]:
        cell.font = header_font

    for question in questions:
        sheet.append(build_row(schema, question, counter.next()))

    _set_widths(sheet, schema.widths)


def build_workbook(
    worksheet: Union[Worksheet, Dict[str, Any]],
    counter: Optional[QuestionCounter] = None
) -> Workbook:
    """
    Build the export workbook

    Args:
        worksheet: Finished worksheet (model or raw API payload)
        counter: Question numbering source; numbering continues across sheets

    Returns:
        Workbook with Summary first, then one sheet per non-empty question
        type in canonical order
    """
    if isinstance(worksheet, dict):
        worksheet = Worksheet.model_validate(worksheet)
    counter = counter or QuestionCounter()

    workbook = Workbook()
    summary = workbook.active
    summary.title = "Summary"
    _write_summary(summary, worksheet)

    for question_type in QUESTION_TYPES:
        questions = worksheet.questions.get(question_type)
        if not questions:
            continue
        schema = SHEET_SCHEMAS[question_type]
        sheet = workbook.create_sheet(title=schema.sheet_name)
        _write_question_sheet(sheet, schema, questions, counter)

    return workbook


def _filename_part(value: Optional[str], fallback: str) -> str:
    return UNSAFE_FILENAME_CHARS.sub("-", value or fallback)


def export_filename(worksheet: Worksheet, now: Optional[datetime] = None) -> str:
    """Worksheet_{subject}_{topic}_{epochMillis}.xlsx"""
    now = now or datetime.now()
    millis = int(now.timestamp() * 1000)
    subject = worksheet.subject.name if worksheet.subject else None
    return (
        f"Worksheet_{_filename_part(subject, 'Unknown')}_"
        f"{_filename_part(worksheet.topic, 'General')}_{millis}.xlsx"
    )


def workbook_bytes(workbook: Workbook) -> bytes:
    """Serialize a workbook into an in-memory .xlsx file"""
    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


def export_worksheet(
    worksheet: Union[Worksheet, Dict[str, Any]],
    directory: str,
    now: Optional[datetime] = None
) -> str:
    """
    Write the worksheet to `directory`

    Returns:
        Path of the written .xlsx file
    """
    if isinstance(worksheet, dict):
        worksheet = Worksheet.model_validate(worksheet)

    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, export_filename(worksheet, now))
    build_workbook(worksheet).save(path)

    logger.info(f"📄 Exported worksheet {worksheet.id} to {path}")
    return path
