"""Conversions between quiz grade labels ('K', '1st', ...) and numbers (0-12)."""
from __future__ import annotations
from typing import Optional

GRADES = ["K", "1st", "2nd", "3rd", "4th", "5th", "6th", "7th", "8th", "9th", "10th", "11th", "12th"]


def grade_to_number(grade: Optional[str]) -> Optional[int]:
	if not grade:
		return None
	try:
		return GRADES.index(grade)
	except ValueError:
		return None


def number_to_grade(number: int) -> str:
	if 0 <= number < len(GRADES):
		return GRADES[number]
	return f"Grade {number}"


def grade_range_label(center: int, spread: int = 1) -> str:
	low = max(0, center - spread)
	high = min(12, center + spread)
	if low == high:
		return number_to_grade(low)
	return f"{number_to_grade(low)}-{number_to_grade(high)} grade"


def school_band(number: int) -> Optional[str]:
	if 0 <= number <= 5:
		return "elementary"
	if 6 <= number <= 8:
		return "middle"
	if 9 <= number <= 12:
		return "high"
	return None
