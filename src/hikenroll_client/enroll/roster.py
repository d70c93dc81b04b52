"""Roster files: a JSON list of students or a CSV with a header row."""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, List

from loguru import logger
from pydantic import ValidationError

from .models import StudentRecord

CSV_COLUMNS = ("studentName", "className", "photoUrl", "studentId")


def load_roster(path: Path | str) -> List[StudentRecord]:
    """Read students from ``path``; the format follows the file suffix.

    Raises:
        ValueError: Unreadable structure or a row without a student name
    """
    path = Path(path)
    if path.suffix.lower() == ".csv":
        with path.open(newline="", encoding="utf-8-sig") as f:
            rows: List[Any] = list(csv.DictReader(f))
    else:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
        rows = data.get("students", []) if isinstance(data, dict) else data
        if not isinstance(rows, list):
            raise ValueError(f"{path}: expected a list of students")

    students = []
    for index, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            raise ValueError(f"{path}: entry {index} is not an object")
        try:
            students.append(StudentRecord.model_validate({k: v for k, v in row.items() if v not in (None, "")}))
        except ValidationError as e:
            raise ValueError(f"{path}: entry {index} is invalid: {e.errors()[0]['msg']}") from e

    logger.info(f"Loaded {len(students)} students from {path}")
    return students
