from __future__ import annotations
import re
from typing import Any, Dict, List, Sequence

from pydantic import BaseModel, Field

from .prompts import RESEARCH_TOPICS, extract_json

_MARKDOWN = re.compile(r"(\*\*|__|`+|^#+\s*|^\s*[-*]\s+)", re.MULTILINE)


class KeyPoint(BaseModel):
	label: str
	description: str


class Insight(BaseModel):
	"""Content card returned by the schema tutor and custom questions."""

	header: str
	main_heading: str
	description: str
	key_points: List[KeyPoint] = Field(min_length=3, max_length=3)
	next_options: List[str] = Field(min_length=3, max_length=3)


class Activity(BaseModel):
	activity: str
	description: str
	time_required: str


class DeepDive(BaseModel):
	title: str
	description: str
	progression: str


class TimeComparison(BaseModel):
	traditional: str
	timeback: str


class AfternoonContent(BaseModel):
	main_title: str
	subtitle: str
	secondary_interests_text: str
	specific_activities: List[Activity] = Field(min_length=4, max_length=4)
	passion_project_name: str
	passion_deep_dive: DeepDive
	time_comparison_custom: TimeComparison


class ResearchTopic(BaseModel):
	personalized_explanation: str
	why_it_matters: str
	real_world_example: str


class ResearchExplanations(BaseModel):
	blooms_sigma: ResearchTopic
	zone_proximal_development: ResearchTopic
	cognitive_load_theory: ResearchTopic
	mastery_learning: ResearchTopic
	overall_summary: str


def strip_markdown(value: Any) -> Any:
	"""Remove markdown markers from every string in a JSON value."""
	if isinstance(value, str):
		return _MARKDOWN.sub("", value).strip()
	if isinstance(value, list):
		return [strip_markdown(v) for v in value]
	if isinstance(value, dict):
		return {k: strip_markdown(v) for k, v in value.items()}
	return value


# Parsers raise ValueError (pydantic's ValidationError is one) on bad output

def parse_insight(text: str) -> Dict[str, Any]:
	data = strip_markdown(extract_json(text))
	return Insight.model_validate(data).model_dump()


def parse_afternoon(text: str) -> Dict[str, Any]:
	return AfternoonContent.model_validate(extract_json(text)).model_dump()


def parse_research(text: str) -> Dict[str, Any]:
	return ResearchExplanations.model_validate(extract_json(text)).model_dump()


def parse_question_list(text: str) -> List[str]:
	data = extract_json(text)
	if isinstance(data, dict):
		data = data.get("questions")
	if not isinstance(data, list):
		raise ValueError("expected a JSON array of questions")
	questions = [q.strip() for q in data if isinstance(q, str) and q.strip()]
	if not questions:
		raise ValueError("no questions in response")
	return questions


# ---- static content for when every provider is down ----

CUSTOM_QUESTION_FALLBACK = {
	"header": "Your question",
	"main_heading": "We'll get back to you on this one",
	"description": "We couldn't generate a personalized answer right now. Our team reads every question and the answer will be waiting when you come back.",
	"key_points": [
		{"label": "Two focused hours", "description": "Core academics are covered each morning with an AI tutor."},
		{"label": "Mastery first", "description": "Students move on only after they understand each concept."},
		{"label": "Afternoons for passions", "description": "The rest of the day goes to life skills and interests."},
	],
	"next_options": [
		"How does a typical day look?",
		"What results do students see?",
		"How do I join the waitlist?",
	],
}

PASSION_PROJECT_NAMES = {
	"sports": "Game Day Analytics Lab",
	"art": "Studio Portfolio Project",
	"music": "Original Album Project",
	"science": "Backyard Research Station",
	"coding": "App Builder Challenge",
	"reading": "Young Author Workshop",
	"animals": "Wildlife Field Journal",
	"building": "Maker Engineering Lab",
}


def passion_project_name(interest: str) -> str:
	key = interest.lower()
	for name, project in PASSION_PROJECT_NAMES.items():
		if name in key:
			return project
	return f"{interest.title()} Passion Project"


def fallback_afternoon_content(interests: Sequence[str]) -> Dict[str, Any]:
	primary = interests[0] if interests else "exploring"
	others = ", ".join(interests[1:]) if len(interests) > 1 else "new hobbies"
	return {
		"main_title": f"Afternoons built around {primary}",
		"subtitle": "Core academics wrap up by lunch, which leaves the afternoon for real projects.",
		"secondary_interests_text": f"There is also time to explore {others}.",
		"specific_activities": [
			{"activity": f"{primary.title()} project time", "description": f"Hands-on work on a long-running {primary} project.", "time_required": "90 minutes"},
			{"activity": "Life skills workshop", "description": "Practical skills such as budgeting, cooking or public speaking.", "time_required": "45 minutes"},
			{"activity": "Outdoor time", "description": "Movement, sports and free play outside.", "time_required": "60 minutes"},
			{"activity": "Reflection and sharing", "description": "Showing progress to peers and planning the next step.", "time_required": "20 minutes"},
		],
		"passion_project_name": passion_project_name(primary),
		"passion_deep_dive": {
			"title": passion_project_name(primary),
			"description": f"A year-long project that turns an interest in {primary} into real skills.",
			"progression": "It starts with guided exploration and grows into an independent project shared with the community.",
		},
		"time_comparison_custom": {
			"traditional": "About 1 hour of free time after school and homework",
			"timeback": "About 4 hours every afternoon for passions and life skills",
		},
	}


_RESEARCH_FALLBACK = {
	"blooms_sigma": (
		"Students tutored one-on-one performed two standard deviations better than classroom peers.",
		"An AI tutor makes one-on-one attention available every day.",
		"A struggling reader gets immediate help on the exact sound they missed.",
	),
	"zone_proximal_development": (
		"Children learn fastest on work that is just beyond what they can do alone.",
		"Lessons adapt so your child is never bored and never lost.",
		"A math problem gets slightly harder right after a streak of correct answers.",
	),
	"cognitive_load_theory": (
		"Working memory is limited, so new ideas are introduced in small pieces.",
		"Short focused sessions help ideas stick.",
		"A new science concept is taught with one example before adding a second.",
	),
	"mastery_learning": (
		"Students move on only after they have mastered a concept.",
		"Gaps are closed before they grow into bigger problems.",
		"Fractions are practiced until they are solid before moving on to ratios.",
	),
}


def fallback_research_content(interests: Sequence[str]) -> Dict[str, Any]:
	primary = interests[0] if interests else "their interests"
	content: Dict[str, Any] = {}
	for topic in RESEARCH_TOPICS:
		explanation, why, example = _RESEARCH_FALLBACK[topic]
		content[topic] = {
			"personalized_explanation": explanation,
			"why_it_matters": why,
			"real_world_example": example,
		}
	content["overall_summary"] = (
		f"Together these ideas let your child learn faster and spend more time on {primary}."
	)
	return content
