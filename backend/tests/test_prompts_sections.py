import json

import pytest

from quizfunnel.content_registry import ContentRegistry, ResponseCache, data_fingerprint
from quizfunnel.grades import grade_range_label, grade_to_number, number_to_grade, school_band
from quizfunnel.insights import AfternoonContent, fallback_afternoon_content, parse_insight, parse_question_list
from quizfunnel.prompts import (
	DEFAULT_FOLLOW_UP_QUESTIONS,
	build_copywriting_prompt,
	build_fallback_prompt,
	build_learn_more_system_prompt,
	build_personalized_prompt,
	build_research_prompt,
	build_tutor_prompt,
	clean_question,
	extract_json,
	filter_follow_up_questions,
	is_repeat_question,
	is_similar_question,
)
from quizfunnel.quiz import QuizData, School, is_complete, next_step, quiz_fields, school_list
from quizfunnel.sections import SECTION_SCHEMAS, has_required_data, map_quiz_to_ai, missing_data, render_prompt, validate_output


@pytest.mark.parametrize(
	"text, expected",
	[
		('{"a": 1}', {"a": 1}),
		('Sure!\n```json\n{"a": 2}\n```\nEnjoy', {"a": 2}),
		('Here you go: {"a": {"b": 3}} hope it helps', {"a": {"b": 3}}),
		('Suggestions: ["x", "y", "z"]', ["x", "y", "z"]),
	],
)
def test_extract_json(text, expected):
	assert extract_json(text) == expected


def test_extract_json_rejects_prose():
	with pytest.raises(ValueError):
		extract_json("I cannot help with that.")


def test_fallback_prompt_mentions_interests():
	prompt = build_fallback_prompt("question_fallback", interests=["soccer", "lego"], subject="math", grade_level="4th")
	assert "soccer, lego" in prompt
	assert "4th grader" in prompt


def test_fallback_prompt_unknown_kind():
	with pytest.raises(ValueError):
		build_fallback_prompt("poetry")


def test_chat_suggestions_prompt_includes_context():
	prompt = build_fallback_prompt("chat_suggestions", subject="science", context="volcanoes")
	assert "volcanoes" in prompt
	assert "exactly 3 strings" in prompt


def test_copywriting_prompt_variants():
	assert "high grader" in build_copywriting_prompt("my high grader", kind="grade_level_fix")
	assert "<original_text>\nSome copy\n</original_text>" in build_copywriting_prompt("Some copy")
	assert "Lincoln High" in build_copywriting_prompt("loves robots", kind="interests_personalization", school_name="Lincoln High")


def test_personalized_prompt_keeps_last_four_turns():
	history = [{"role": "user", "content": f"turn {i}"} for i in range(6)]
	prompt = build_personalized_prompt(
		"How much homework?",
		quiz_data={"selected_schools": [{"name": "Oak Elementary"}], "parent_sub_type": "homeschool"},
		conversation_history=history,
	)
	assert "Oak Elementary" in prompt
	assert "turn 1" not in prompt
	assert "turn 2" in prompt and "turn 5" in prompt


def test_section_required_data():
	data = {"student_grade": "5th", "selected_schools": []}
	assert missing_data("school-performance", data) == ["selected_schools", "academic_goals"]
	assert not has_required_data("school-performance", data)
	data.update(selected_schools=[{"name": "Oak"}], academic_goals="reading")
	assert has_required_data("school-performance", data)


def test_render_prompt_fills_placeholders():
	prompt = render_prompt("closest-schools", {"user_location": "Austin, TX", "student_grade": "3rd"})
	assert "Austin, TX" in prompt
	assert "{{" not in prompt
	for key in SECTION_SCHEMAS["closest-schools"].output_keys:
		assert key in prompt


def test_render_prompt_joins_school_names():
	prompt = render_prompt(
		"school-performance",
		{"student_grade": "5th", "selected_schools": [{"name": "Oak"}, {"name": "Elm"}], "academic_goals": "math"},
	)
	assert "Oak, Elm" in prompt


def test_validate_output():
	keys = SECTION_SCHEMAS["custom-question"].output_keys
	assert validate_output("custom-question", {k: "x" for k in keys})
	assert not validate_output("custom-question", {"answer": "x"})
	assert not validate_output("custom-question", ["answer"])
	assert not validate_output("nope", {})


def test_map_quiz_to_ai():
	mapped = map_quiz_to_ai(
		{
			"grade": "7th",
			"kids_interests": ["Math", "soccer", "science"],
			"number_of_kids": 2,
			"selected_schools": [{"id": "1", "name": "Oak", "city": "Austin", "state": "TX", "level": "middle"}],
		}
	)
	assert mapped["student_grade"] == "7th"
	assert mapped["grade_number"] == 7
	assert mapped["interests"] == ["Math", "soccer", "science"]
	assert mapped["subjects"] == ["Math", "science"]
	assert mapped["user_location"] == "Austin, TX"
	assert mapped["family_size"] == 2
	assert mapped["school_level"] == "middle"
	assert mapped["grade_range"] == "6th-8th grade"


def test_grade_helpers():
	assert grade_to_number("K") == 0
	assert grade_to_number("12th") == 12
	assert grade_to_number("13th") is None
	assert number_to_grade(3) == "3rd"
	assert grade_range_label(0) == "K-1st grade"
	assert grade_range_label(5, spread=0) == "5th"
	assert [school_band(n) for n in (0, 5, 6, 8, 9, 12, 13)] == ["elementary", "elementary", "middle", "middle", "high", "high", None]


def test_quiz_step_order_for_parents():
	data = QuizData()
	assert next_step(data) == "user_type"
	data.user_type = "parents"
	assert next_step(data) == "sub_type"
	data.parent_sub_type = "homeschool"
	assert next_step(data) == "school"
	data.selected_schools = [School(id="1", name="Oak", city="Austin", state="TX", level="elementary")]
	assert next_step(data) == "grade"
	data.grade = "3rd"
	assert next_step(data) == "interests"
	data.kids_interests = ["art"]
	assert is_complete(data)


def test_quiz_other_audiences_finish_early():
	assert next_step(QuizData(user_type="developer")) == "complete"
	assert next_step(QuizData(user_type="schools")) == "sub_type"
	assert next_step(QuizData(user_type="schools", school_sub_type="public")) == "complete"
	assert next_step(QuizData(user_type="student")) == "grade"


def test_quiz_fields_skips_empty_answers():
	fields = quiz_fields(QuizData(user_type="parents", kids_interests=["chess"]))
	assert fields == {"user_type": "parents", "kids_interests": ["chess"]}


def test_content_registry_is_per_owner():
	registry = ContentRegistry()
	registry.set("a@example.com", "closest-schools", {"title": "Near you"})
	assert registry.is_generated("a@example.com", "closest-schools")
	assert not registry.is_generated("b@example.com", "closest-schools")
	assert registry.get("a@example.com", "closest-schools")["content"] == {"title": "Near you"}
	registry.clear()
	assert registry.get("a@example.com", "closest-schools") is None


def test_content_registry_misses_on_changed_inputs():
	registry = ContentRegistry()
	before = data_fingerprint({"grade": "3rd", "interests": ["art"]})
	registry.set("a@example.com", "closest-schools", {"title": "Near you"}, before)
	assert registry.is_generated("a@example.com", "closest-schools", data_fingerprint({"interests": ["art"], "grade": "3rd"}))
	assert not registry.is_generated("a@example.com", "closest-schools", data_fingerprint({"grade": "4th", "interests": ["art"]}))
	registry.set("a@example.com", "ai-experience", {})
	registry.set("b@example.com", "ai-experience", {})
	assert registry.forget("a@example.com") == 2
	assert registry.is_generated("b@example.com", "ai-experience")


def test_response_cache_expires():
	now = [1000.0]
	cache = ResponseCache(ttl=60, clock=lambda: now[0])
	cache.set("k", {"v": 1})
	cache.set("long", "kept", ttl=600)
	now[0] += 61
	assert cache.get("k") is None
	assert cache.get("long") == "kept"


@pytest.mark.parametrize("value", [["Oak"], "Oak", {"name": "Oak"}, 7, [{"name": "Oak"}, "Elm"]])
def test_school_list_rejects_bad_shapes(value):
	with pytest.raises(ValueError):
		school_list(value)


def test_school_list_accepts_empty_and_objects():
	assert school_list(None) == []
	assert school_list([]) == []
	assert school_list([{"name": "Oak"}]) == [{"name": "Oak"}]


def test_map_quiz_to_ai_rejects_school_names():
	with pytest.raises(ValueError):
		map_quiz_to_ai({"grade": "5th", "selected_schools": ["Lincoln Elementary"]})
	with pytest.raises(ValueError):
		build_personalized_prompt("Why?", quiz_data={"selected_schools": "Lincoln Elementary"})


@pytest.mark.parametrize(
	"raw, expected",
	[
		('"What makes your child curious?"', "What makes your child curious?"),
		("## What makes your child curious", "What makes your child curious?"),
		("**What makes your child curious.**\nExtra line", "What makes your child curious?"),
		("", ""),
	],
)
def test_clean_question(raw, expected):
	assert clean_question(raw) == expected


def test_is_similar_question_compares_prefixes():
	assert is_similar_question("What does your child enjoy?", ["what does your child dislike?"])
	assert not is_similar_question("When does your child focus?", ["What does your child dislike?"])


def test_follow_up_filter_tops_up_from_defaults():
	kept = filter_follow_up_questions(["How does the program work?"], ["How does the program work?"])
	assert kept == [DEFAULT_FOLLOW_UP_QUESTIONS[1], DEFAULT_FOLLOW_UP_QUESTIONS[2], DEFAULT_FOLLOW_UP_QUESTIONS[0]]


def test_follow_up_repeat_detection():
	assert is_repeat_question("What sports can kids play?", ["Which sports can kids play after lunch?"])
	assert not is_repeat_question("Who teaches art?", ["What sports can kids play?"])


def test_tutor_prompt_modes():
	system, user = build_tutor_prompt("schema", "How are kids graded?", interests=["art"], grade_level="2nd")
	assert "exactly 3 items" in system
	assert "2nd" in user
	system, user = build_tutor_prompt("tutor", "Help", subject="math", context="fractions")
	assert "math tutor" in system
	assert user.endswith("Context: fractions")


def test_learn_more_prompt_mentions_section_and_school():
	prompt = build_learn_more_system_prompt(
		section="closest-schools",
		quiz_data={"selected_schools": [{"name": "Oak"}], "grade": "2nd"},
		section_content="Three campuses nearby",
	)
	assert "program schools near the family" in prompt
	assert "Current school: Oak" in prompt
	assert "Three campuses nearby" in prompt


def test_parse_insight_strips_markdown_and_checks_counts():
	card = {
		"header": "**Hi**",
		"main_heading": "# Title",
		"description": "`plain`",
		"key_points": [{"label": "- one", "description": "d"}] * 3,
		"next_options": ["a", "b", "c"],
	}
	parsed = parse_insight(json.dumps(card))
	assert parsed["header"] == "Hi"
	assert parsed["main_heading"] == "Title"
	assert parsed["description"] == "plain"
	assert parsed["key_points"][0]["label"] == "one"
	card["next_options"] = ["a", "b"]
	with pytest.raises(ValueError):
		parse_insight(json.dumps(card))


def test_parse_question_list():
	assert parse_question_list('{"questions": ["A?", " ", "B?"]}') == ["A?", "B?"]
	with pytest.raises(ValueError):
		parse_question_list('{"question": "A?"}')


def test_fallback_afternoon_content_names_the_project():
	content = fallback_afternoon_content(["Competitive coding", "art"])
	assert content["passion_project_name"] == "App Builder Challenge"
	assert "art" in content["secondary_interests_text"]
	assert AfternoonContent.model_validate(content)
	assert fallback_afternoon_content(["knitting"])["passion_project_name"] == "Knitting Passion Project"


def test_research_prompt_uses_school_level():
	prompt = build_research_prompt(["space"], ["writing"], {"selected_schools": [{"name": "Oak", "level": "middle"}]})
	assert "middle student" in prompt
	for topic in ("blooms_sigma", "mastery_learning", "overall_summary"):
		assert topic in prompt
