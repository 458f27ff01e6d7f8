"""
Content section schemas.

Each section declares the data it needs before it can be generated, a prompt
template with ``{{field}}`` placeholders and the top-level keys the model must
return.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from .grades import grade_range_label, grade_to_number, school_band
from .quiz import school_list

SUBJECT_INTERESTS = ("math", "science", "reading", "writing", "history", "languages", "arts", "stem")

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True)
class SectionSchema:
	id: str
	name: str
	description: str
	required_data: Sequence[str]
	optional_data: Sequence[str]
	output_keys: Sequence[str]
	prompt_template: str
	component_type: str = "mixed"
	is_interactive: bool = False


SECTION_SCHEMAS: Dict[str, SectionSchema] = {
	s.id: s
	for s in (
		SectionSchema(
			id="school-performance",
			name="School Performance Metrics",
			description="Academic performance comparisons and growth metrics",
			required_data=("student_grade", "selected_schools", "academic_goals"),
			optional_data=("current_performance", "learning_style", "subjects"),
			output_keys=("title", "subtitle", "introduction", "performance_data", "growth_metrics", "key_insights", "recommendations"),
			prompt_template=(
				"Generate school performance content for a {{student_grade}} grade student.\n"
				"Focus on {{selected_schools}} performance data and {{academic_goals}}.\n"
				"Create compelling performance comparisons and growth projections."
			),
			component_type="chart",
		),
		SectionSchema(
			id="learning-schedule",
			name="Personalized Learning Schedule",
			description="Optimized daily and weekly learning schedules",
			required_data=("student_grade", "subjects", "time_preference"),
			optional_data=("extracurriculars", "learning_pace", "breaks"),
			output_keys=("title", "subtitle", "overview", "daily_schedule", "weekly_highlights", "adaptive_tips", "parent_guidance"),
			prompt_template=(
				"Create a personalized learning schedule for a {{student_grade}} student.\n"
				"Include {{subjects}} with preference for {{time_preference}} learning.\n"
				"Balance academic time with breaks and enrichment activities."
			),
		),
		SectionSchema(
			id="personalized-daily-timeline",
			name="Your Liberated Daily Timeline",
			description="A day in the life with two hours of focused academics",
			required_data=("kids_interests", "student_grade", "user_type"),
			optional_data=("selected_schools", "parent_sub_type", "number_of_kids"),
			output_keys=("title", "subtitle", "timeline", "afternoon_activities", "summary"),
			prompt_template=(
				"Create a personalized daily timeline for a {{student_grade}} student showing two hours of focused "
				"academics in the morning and afternoons built around {{kids_interests}}.\n"
				"The reader is a {{user_type}} audience."
			),
		),
		SectionSchema(
			id="closest-schools",
			name="School Locations Near You",
			description="Campuses close to the family",
			required_data=("user_location", "student_grade"),
			optional_data=("preferred_distance", "school_type", "special_programs"),
			output_keys=("title", "subtitle", "schools", "call_to_action"),
			prompt_template="Generate content about campuses near {{user_location}} for a {{student_grade}} grade student.",
			component_type="list",
		),
		SectionSchema(
			id="ai-experience",
			name="AI-Powered Learning Experience",
			description="A demo lesson adapted to the student",
			required_data=("student_grade", "subject", "learning_goal"),
			optional_data=("current_challenge", "preferred_style", "time_available"),
			output_keys=("title", "introduction", "lesson", "practice_questions", "visual_aid"),
			prompt_template=(
				"Create an AI learning experience demo for {{student_grade}} grade {{subject}}.\n"
				"The learning goal is {{learning_goal}}."
			),
		),
		SectionSchema(
			id="custom-question",
			name="Personalized Q&A",
			description="Answers a parent's own question",
			required_data=("question", "user_context"),
			optional_data=("previous_questions", "specific_concerns"),
			output_keys=("answer", "key_points", "follow_up_questions"),
			prompt_template="Answer this question: \"{{question}}\"\nContext about the family: {{user_context}}",
			component_type="text",
			is_interactive=True,
		),
		SectionSchema(
			id="student-success-stories",
			name="Student Success Stories",
			description="Stories from students with similar interests",
			required_data=("student_grade", "interests"),
			optional_data=("goals", "challenges", "location"),
			output_keys=("title", "stories", "common_themes"),
			prompt_template=(
				"Generate relevant success stories for {{student_grade}} grade students interested in {{interests}}.\n"
				"Feature students in the {{grade_range}} range at the {{school_level}} school level."
			),
		),
		SectionSchema(
			id="cost-value-analysis",
			name="Investment & Value Analysis",
			description="Cost comparison against the current education spend",
			required_data=("family_size", "current_education_cost"),
			optional_data=("financial_goals", "time_horizon", "priorities"),
			output_keys=("title", "cost_breakdown", "value_points", "summary"),
			prompt_template=(
				"Create a value analysis for {{family_size}} children.\n"
				"Current education cost: {{current_education_cost}}."
			),
		),
		SectionSchema(
			id="parent-time-savings",
			name="Parent Time & Lifestyle Benefits",
			description="Time a parent gets back each week",
			required_data=("parent_schedule", "current_challenges"),
			optional_data=("work_schedule", "family_activities", "goals"),
			output_keys=("title", "time_savings", "lifestyle_benefits", "summary"),
			prompt_template="Show how the program solves {{current_challenges}} for parents with a {{parent_schedule}} schedule.",
			component_type="text",
		),
	)
}


def missing_data(section_id: str, data: Dict[str, Any]) -> List[str]:
	schema = SECTION_SCHEMAS[section_id]
	return [key for key in schema.required_data if data.get(key) is None or data.get(key) == []]


def has_required_data(section_id: str, data: Dict[str, Any]) -> bool:
	return not missing_data(section_id, data)


def _format_value(value: Any) -> str:
	if isinstance(value, (list, tuple)):
		parts = []
		for item in value:
			if isinstance(item, dict):
				parts.append(str(item.get("name") or item.get("id") or item))
			else:
				parts.append(str(item))
		return ", ".join(parts)
	return str(value)


def render_prompt(section_id: str, data: Dict[str, Any]) -> str:
	schema = SECTION_SCHEMAS[section_id]

	def _sub(match: re.Match) -> str:
		key = match.group(1)
		if key in data and data[key] is not None:
			return _format_value(data[key])
		return match.group(0)

	prompt = _PLACEHOLDER.sub(_sub, schema.prompt_template)
	return (
		f"{prompt}\n\n"
		f"Return ONLY a JSON object with these top-level keys: {', '.join(schema.output_keys)}. No markdown, no commentary."
	)


def validate_output(section_id: str, output: Any) -> bool:
	schema = SECTION_SCHEMAS.get(section_id)
	if schema is None or not isinstance(output, dict):
		return False
	return all(key in output for key in schema.output_keys)


def map_quiz_to_ai(quiz: Dict[str, Any]) -> Dict[str, Any]:
	"""Map stored quiz answers onto the field names section prompts use.

	Raises ValueError when ``selected_schools`` is not a list of objects.
	"""
	interests = quiz.get("kids_interests") or quiz.get("interests") or []
	schools = school_list(quiz.get("selected_schools"))
	location = quiz.get("user_location") or quiz.get("zip_code")
	if not location and schools and schools[0].get("city"):
		location = f"{schools[0]['city']}, {schools[0].get('state', '')}".strip(", ")
	subjects = quiz.get("subjects") or [i for i in interests if str(i).lower() in SUBJECT_INTERESTS]
	grade = quiz.get("grade") or quiz.get("student_grade")
	grade_number = grade_to_number(grade)
	mapped = dict(quiz)
	mapped.update(
		{
			"student_grade": grade,
			"grade_number": grade_number,
			"grade_range": grade_range_label(grade_number) if grade_number is not None else None,
			"school_level": school_band(grade_number) if grade_number is not None else None,
			"interests": interests,
			"kids_interests": interests,
			"user_location": location,
			"family_size": quiz.get("number_of_kids") or quiz.get("family_size") or 1,
			"subjects": subjects,
			"selected_schools": schools,
		}
	)
	return mapped
