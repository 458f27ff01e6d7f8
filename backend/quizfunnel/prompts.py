from __future__ import annotations
import json
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .quiz import school_list

FALLBACK_KINDS = ("question_fallback", "chat_suggestions", "how_we_get_results")
COPYWRITING_KINDS = ("interests_personalization", "grade_level_fix", "credibility_disclaimer", "personalized_copy")

_PLAIN_TEXT_RULE = (
	"CRITICAL: Use only plain text in your response - no special characters, control characters, "
	"or line breaks within JSON string values."
)

_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def extract_json(text: str) -> Any:
	"""Parse the JSON value an LLM returned, tolerating fences and chatter around it."""
	text = (text or "").strip()
	try:
		return json.loads(text)
	except ValueError:
		pass
	block = _CODE_BLOCK.search(text)
	if block:
		try:
			return json.loads(block.group(1))
		except ValueError:
			pass
	for open_ch, close_ch in (("{", "}"), ("[", "]")):
		first = text.find(open_ch)
		last = text.rfind(close_ch)
		if first != -1 and last > first:
			try:
				return json.loads(text[first : last + 1])
			except ValueError:
				continue
	raise ValueError("LLM did not return valid JSON")


def _join(values: Sequence[str]) -> str:
	return ", ".join(str(v) for v in values if v)


def build_fallback_prompt(
	kind: str,
	*,
	interests: Sequence[str] = (),
	subject: str = "general",
	grade_level: str = "6th",
	context: Any = None,
) -> str:
	interest_list = _join(interests) or "learning"
	if kind == "question_fallback":
		return (
			f"You are creating an engaging {subject} question that will make a {grade_level} grader think "
			"\"Whoa, I never thought about that!\"\n\n"
			f"STUDENT INTERESTS: {interest_list}\n\n"
			"Start with \"Have you ever wondered why...\" or \"Have you ever noticed that...\" followed by a real-world "
			"observation that connects to their interests. Then pose a specific question that leads the student to "
			f"discover the underlying {subject} concept without giving the answer away.\n"
			"Tone: conversational and excited, like a friend sharing something cool.\n\n"
			"Return JSON in this exact format (no extra text):\n"
			"{\n"
			"  \"question\": \"the hook followed by the discovery question\",\n"
			"  \"solution\": \"step-by-step explanation written for a curious student\",\n"
			f"  \"learning_objective\": \"the specific {subject} concept\",\n"
			f"  \"interest_connection\": \"how this connects to {interest_list}\",\n"
			"  \"next_steps\": \"related questions to explore next\",\n"
			"  \"follow_up_questions\": [\"deeper question\", \"different scenario\", \"broader principle\"]\n"
			"}\n\n"
			f"{_PLAIN_TEXT_RULE}"
		)
	if kind == "chat_suggestions":
		lines = [
			"Generate 3 contextual chat suggestions for an AI tutor interface.",
			"",
			"Student context:",
			f"- Current subject: {subject}",
			f"- Interests: {interest_list}",
			f"- Grade level: {grade_level}",
		]
		if context:
			lines.append(f"- Current question context: {context}")
		lines += [
			"",
			f"Make them specific to {subject} and relevant to {interest_list}.",
			"Return a JSON array of exactly 3 strings (no extra text).",
			"",
			_PLAIN_TEXT_RULE,
		]
		return "\n".join(lines)
	if kind == "how_we_get_results":
		ctx = context if isinstance(context, dict) else {}
		goals = _join(ctx.get("learning_goals") or []) or "academic excellence"
		primary = ctx.get("primary_interest") or (interests[0] if interests else "learning")
		return (
			f"Create personalized content explaining how the program helps a {grade_level} grade student reach the 98th percentile.\n\n"
			"Student context:\n"
			f"- Grade level: {grade_level}\n"
			f"- Interests: {interest_list}\n"
			f"- Learning goals: {goals}\n"
			f"- Primary interest: {primary}\n\n"
			"Write parent-focused content that references the child's actual interests and grade level, "
			"explains the method in terms parents understand and avoids generic statements.\n\n"
			"Return JSON in this exact format (no extra text):\n"
			"{\"title\": \"headline mentioning grade level\", \"subtitle\": \"subtitle referencing their interests\", "
			"\"points\": [{\"title\": \"benefit\", \"description\": \"explanation for their child\"}]}\n\n"
			f"{_PLAIN_TEXT_RULE}"
		)
	raise ValueError(f"type must be one of {list(FALLBACK_KINDS)}")


def build_copywriting_prompt(
	raw_text: str,
	*,
	kind: str = "personalized_copy",
	context: Optional[str] = None,
	grade_level: str = "high school",
	school_name: str = "your school",
) -> str:
	if kind == "interests_personalization":
		return (
			"You are a professional copywriter specializing in educational marketing. Transform this raw user input "
			"into natural, personalized copy for parents reading about their child's education.\n\n"
			f"Raw user input: \"{raw_text}\"\n"
			"Context: This describes what the child is interested in or passionate about\n"
			f"Grade level: {grade_level}\n"
			f"School: {school_name}\n\n"
			"Use \"your child's passion for...\" or \"your child's love of...\" language, keep it warm and "
			"conversational, 1-2 sentences, and focus on how this interest can accelerate learning.\n"
			"NEVER use hyphens. Return only the improved copy, nothing else."
		)
	if kind == "grade_level_fix":
		return (
			"You are a professional copywriter. Fix this awkward grade level reference to sound natural and professional.\n\n"
			f"Raw text: \"{raw_text}\"\n"
			f"Grade level context: {grade_level}\n\n"
			"Turn phrases like \"high grader\" into natural language such as \"high school student\" or "
			"\"your high schooler\". Only fix the grade level reference and keep the meaning exactly the same.\n"
			"NEVER use hyphens. Return only the corrected text, nothing else."
		)
	if kind == "credibility_disclaimer":
		return (
			"<system_role>\nYou are a professional educational copywriter building parent trust through honest communication.\n</system_role>\n\n"
			"<task>\nAdd a brief credibility statement addressing parent skepticism that AI education sounds too good to be true.\n</task>\n\n"
			f"<original_text>\n{raw_text}\n</original_text>\n\n"
			"<strict_requirements>\n"
			"- Add 1-2 sentences maximum\n"
			"- Mention the current implementation with partner schools\n"
			"- Note that the homeschool version is in development\n"
			"- Do not change factual claims or use hyphens\n"
			"</strict_requirements>\n\n"
			"<output_format>\nReturn ONLY the original text with the statement integrated.\n</output_format>"
		)
	return (
		"<system_role>\nYou are a professional educational copywriter who turns marketing text into authentic parent conversations.\n</system_role>\n\n"
		"<task>\nImprove educational marketing copy to be more engaging, credible and parent-friendly.\n</task>\n\n"
		f"<original_text>\n{raw_text}\n</original_text>\n\n"
		f"<context>\n{context or 'Educational marketing copy for parents'}\n</context>\n\n"
		"<writing_principles>\n"
		"- Voice: knowledgeable educator, not salesperson\n"
		"- Keep all facts intact and the length within 10% of the original\n"
		"- Do not use hyphens, superlatives or corporate buzzwords\n"
		"</writing_principles>\n\n"
		"<output_format>\nReturn ONLY the improved copy.\n</output_format>"
	)


def build_personalized_prompt(
	question: str,
	*,
	quiz_data: Optional[Dict[str, Any]] = None,
	conversation_history: Sequence[Dict[str, Any]] = (),
	interests: Sequence[str] = (),
	grade_level: str = "high school",
) -> str:
	quiz_data = quiz_data or {}
	schools = school_list(quiz_data.get("selected_schools"))
	school = schools[0].get("name") if schools else None
	recent = list(conversation_history)[-4:]
	if recent:
		previous = "\n".join(f"{m.get('role', 'user')}: {m.get('content', '')}" for m in recent)
	else:
		previous = "No previous context"
	return (
		"You are a friendly education advisor answering a parent's question about a personalized, AI-driven school program.\n\n"
		f"Question: {question}\n\n"
		"Family context:\n"
		f"- Parent type: {quiz_data.get('parent_sub_type') or 'unknown'}\n"
		f"- Current school: {school or 'unknown'}\n"
		f"- Number of kids: {quiz_data.get('number_of_kids') or 1}\n"
		f"- Grade level: {grade_level}\n"
		f"- Interests: {_join(interests) or 'not provided'}\n\n"
		f"Previous conversation:\n{previous}\n\n"
		"Return JSON with keys: header (string), main_heading (string), description (string), "
		"key_points (array of strings), follow_up_questions (array of 3 strings). No extra text."
	)


# ---- exploration and follow-up questions ----

FALLBACK_EXPLORATION_QUESTIONS = (
	"What's one thing your child gets so absorbed in that they lose track of time?",
	"When does your child light up the most while learning something new?",
	"What question does your child ask you that you wish you could answer better?",
	"Which part of the school day does your child talk about most at dinner?",
	"What would your child build if they had a whole afternoon and no limits?",
)

DEFAULT_FOLLOW_UP_QUESTIONS = (
	"How does the program work?",
	"What's the daily schedule like?",
	"Can I see success stories?",
)

_WORD = re.compile(r"\w+")


def build_exploration_question_prompt(
	*,
	grade_level: str = "elementary",
	interests: Sequence[str] = (),
	quiz_data: Optional[Dict[str, Any]] = None,
	existing_questions: Sequence[str] = (),
) -> str:
	quiz_data = quiz_data or {}
	lines = [
		"Write ONE short, warm question a parent could explore about how their child learns best.",
		"",
		"Family context:",
		f"- Grade level: {grade_level}",
		f"- Child's interests: {_join(interests) or 'not shared yet'}",
		f"- Parent type: {quiz_data.get('parent_sub_type') or 'unknown'}",
	]
	if existing_questions:
		lines += ["", "Do not repeat or rephrase any of these questions:"]
		lines += [f"- {q}" for q in existing_questions]
	lines += [
		"",
		"Rules: one sentence, under 25 words, ends with a question mark, no quotes and no markdown.",
		"Return only the question.",
	]
	return "\n".join(lines)


def clean_question(text: str) -> str:
	"""Strip quotes and markdown from a generated question and make it end with '?'."""
	lines = (text or "").strip().splitlines()
	question = lines[0].strip() if lines else ""
	question = re.sub(r"^(\*\*|#+)\s*", "", question)
	question = question.replace("**", "").strip().strip("\"'").strip()
	if question and not question.endswith("?"):
		question = question.rstrip(".!") + "?"
	return question


def is_similar_question(question: str, existing: Sequence[str]) -> bool:
	"""True when the first 20 characters match an existing question."""
	prefix = question.lower()[:20]
	return any(prefix == q.lower()[:20] for q in existing if q)


def pick_fallback_question(existing: Sequence[str]) -> str:
	for question in FALLBACK_EXPLORATION_QUESTIONS:
		if not is_similar_question(question, existing):
			return question
	return FALLBACK_EXPLORATION_QUESTIONS[0]


def build_practice_question_prompt(subject: str, *, interests: Sequence[str] = (), grade_level: str = "6th") -> str:
	interest_list = _join(interests) or "everyday life"
	return (
		f"Create one {subject} practice question for a {grade_level} grade student that uses their interests: {interest_list}.\n\n"
		"The question should be solvable in a few minutes, grounded in a real situation from those interests, "
		"and pitched at the student's grade level.\n\n"
		"Return JSON in this exact format (no extra text):\n"
		"{\n"
		"  \"question\": \"the practice question\",\n"
		"  \"solution\": \"step-by-step solution\",\n"
		f"  \"learning_objective\": \"the {subject} skill practiced\",\n"
		"  \"interest_connection\": \"how the question uses their interests\",\n"
		"  \"next_steps\": \"what to practice next\",\n"
		"  \"follow_up_questions\": [\"question 1\", \"question 2\", \"question 3\"]\n"
		"}\n\n"
		f"{_PLAIN_TEXT_RULE}"
	)


def build_follow_up_questions_prompt(
	*,
	section_id: Optional[str] = None,
	question: Optional[str] = None,
	current_question: Optional[str] = None,
	current_answer: Any = None,
	interests: Sequence[str] = (),
	grade_level: Optional[str] = None,
	message_history: Sequence[Dict[str, Any]] = (),
	clicked_questions: Sequence[str] = (),
	quiz_data: Optional[Dict[str, Any]] = None,
) -> Tuple[str, str]:
	"""System and user prompts asking for 3 short follow-up questions."""
	quiz_data = quiz_data or {}
	schools = school_list(quiz_data.get("selected_schools"))
	system = (
		"You suggest follow-up questions a parent might tap next while exploring a personalized school program. "
		"Each question is at most 7 words, specific to what was just discussed, and different from questions "
		"already asked. Respond with a JSON array of exactly 3 strings and nothing else."
	)
	lines = [f"Section: {section_id or 'general'}"]
	if current_question or question:
		lines.append(f"Current question: {current_question or question}")
	if current_answer:
		answer = current_answer if isinstance(current_answer, str) else json.dumps(current_answer)
		lines.append(f"Current answer: {answer[:1500]}")
	lines += [
		f"Grade level: {grade_level or quiz_data.get('grade') or 'unknown'}",
		f"Interests: {_join(interests or quiz_data.get('kids_interests') or []) or 'not provided'}",
	]
	if schools:
		lines.append(f"Current school: {schools[0].get('name') or 'unknown'}")
	recent = list(message_history)[-8:]
	if recent:
		lines.append("Recent conversation:")
		lines += [f"{m.get('role', 'user')}: {str(m.get('content', ''))[:300]}" for m in recent]
	if clicked_questions:
		lines.append("Already asked (do not repeat): " + "; ".join(clicked_questions))
	lines.append("Return the JSON array of 3 questions.")
	return system, "\n".join(lines)


def _keywords(text: str) -> set:
	return {w for w in _WORD.findall(text.lower()) if len(w) > 3}


def is_repeat_question(question: str, clicked: Sequence[str]) -> bool:
	"""Same question, a 30 character overlap, or two or more shared keywords."""
	q = question.lower().strip()
	words = _keywords(q)
	for asked in clicked:
		a = (asked or "").lower().strip()
		if not a:
			continue
		if q == a or q[:30] in a or a[:30] in q:
			return True
		if len(words & _keywords(a)) >= 2:
			return True
	return False


def filter_follow_up_questions(questions: Sequence[str], clicked: Sequence[str], count: int = 3) -> List[str]:
	"""Drop questions the visitor already asked, topping up from the defaults."""
	kept = [q for q in questions if not is_repeat_question(q, clicked)]
	for extra in list(questions) + list(DEFAULT_FOLLOW_UP_QUESTIONS):
		if len(kept) >= count:
			break
		if extra not in kept and not is_repeat_question(extra, clicked):
			kept.append(extra)
	# everything was asked already; repeats beat an empty list
	for extra in DEFAULT_FOLLOW_UP_QUESTIONS:
		if len(kept) >= count:
			break
		if extra not in kept:
			kept.append(extra)
	return kept[:count]


def build_follow_up_content_prompt(
	question: str,
	*,
	section: Optional[str] = None,
	user_data: Optional[Dict[str, Any]] = None,
	previous_content: Optional[str] = None,
	reference: Optional[str] = None,
) -> Tuple[str, str]:
	user_data = user_data or {}
	system = (
		"You are an education advisor writing a short follow-up explanation for a parent. "
		"Answer in 2-3 short paragraphs of plain text, grounded in the family's details, without markdown headings."
	)
	lines = [
		f"Parent's question: {question}",
		f"Section being read: {section or 'general'}",
		f"Family details: {json.dumps(user_data, default=str)[:1500]}",
	]
	if previous_content:
		lines.append(f"What they already read: {previous_content[:2000]}")
	if reference:
		lines.append(f"Reference material: {reference[:3000]}")
	return system, "\n".join(lines)


# ---- tutor and learn-more chat ----

SECTION_DESCRIPTIONS = {
	"school-performance": "how the child's current school performs compared with the program",
	"closest-schools": "program schools near the family",
	"ai-experience": "what a day of AI tutoring looks like",
	"learning-science": "the research the program is built on",
	"afternoon-activities": "how afternoons are freed up for the child's passions",
	"custom-question": "an answer to the parent's own question",
}

SECTION_INTENTS = {
	"school-performance": "Help the parent see where their child could be academically.",
	"closest-schools": "Help the parent picture attending in person.",
	"ai-experience": "Make the daily learning routine concrete.",
	"learning-science": "Explain the science in plain language and build trust.",
	"afternoon-activities": "Connect the freed-up time to the child's interests.",
}


def build_learn_more_system_prompt(
	*,
	section: Optional[str] = None,
	quiz_data: Optional[Dict[str, Any]] = None,
	section_content: Optional[str] = None,
) -> str:
	quiz_data = quiz_data or {}
	schools = school_list(quiz_data.get("selected_schools"))
	lines = [
		"You are a friendly education advisor chatting with a parent who wants to learn more about a personalized, AI-driven school program.",
		f"They are reading the section about {SECTION_DESCRIPTIONS.get(section or '', 'the program')}.",
	]
	if section in SECTION_INTENTS:
		lines.append(f"Goal: {SECTION_INTENTS[section]}")
	lines += [
		"",
		"Family context:",
		f"- Parent type: {quiz_data.get('parent_sub_type') or quiz_data.get('user_type') or 'unknown'}",
		f"- Grade: {quiz_data.get('grade') or 'unknown'}",
		f"- Interests: {_join(quiz_data.get('kids_interests') or []) or 'not provided'}",
		f"- Current school: {(schools[0].get('name') if schools else None) or 'unknown'}",
	]
	if section_content:
		lines += ["", f"Section content they are reading:\n{section_content[:3000]}"]
	lines += [
		"",
		"Answer in plain conversational text, at most 3 short paragraphs.",
		"If they ask about pricing or tuition, say details are shared with families on the waitlist and invite them to join it.",
	]
	return "\n".join(lines)


TUTOR_MODES = ("schema", "assistant", "tutor")

_INSIGHT_FORMAT = (
	"Return JSON in this exact format (no extra text):\n"
	"{\n"
	"  \"header\": \"short eyebrow label\",\n"
	"  \"main_heading\": \"a clear headline answer\",\n"
	"  \"description\": \"2-3 sentences of explanation\",\n"
	"  \"key_points\": [{\"label\": \"short label\", \"description\": \"one sentence\"}, "
	"{\"label\": \"...\", \"description\": \"...\"}, {\"label\": \"...\", \"description\": \"...\"}],\n"
	"  \"next_options\": [\"follow-up question\", \"follow-up question\", \"follow-up question\"]\n"
	"}\n"
	"key_points must have exactly 3 items and next_options exactly 3 strings. Plain text only, no markdown."
)


def build_tutor_prompt(
	mode: str,
	question: str,
	*,
	interests: Sequence[str] = (),
	subject: Optional[str] = None,
	grade_level: Optional[str] = None,
	context: Any = None,
) -> Tuple[str, str]:
	"""System and user prompts for one of the tutor modes."""
	interest_list = _join(interests) or "not provided"
	if mode == "schema":
		system = (
			"You answer parent questions about a personalized, AI-driven school program as structured content cards. "
			+ _INSIGHT_FORMAT
		)
		user = f"Question: {question}\nChild's grade: {grade_level or 'unknown'}\nChild's interests: {interest_list}"
		return system, user
	if mode == "assistant":
		system = (
			"You are a knowledgeable assistant explaining how a personalized, AI-driven school program works: "
			"two hours of focused AI tutoring, mastery-based progress, and afternoons for life skills and passions. "
			"Answer factually and concisely in plain text."
		)
		return system, question
	system = (
		f"You are a patient {subject or 'general'} tutor for a {grade_level or 'middle school'} student who likes {interest_list}. "
		"Never give the final answer. Guide with one hint or one question at a time, connect ideas to their interests, "
		"and praise effort. Keep replies under 120 words."
	)
	user = question
	if context and isinstance(context, str):
		user = f"{question}\n\nContext: {context}"
	return system, user


def build_custom_question_prompt(
	question: str,
	*,
	current_user: Optional[Dict[str, Any]] = None,
	viewed_summary: str = "",
) -> str:
	current_user = current_user or {}
	lines = [
		"A parent exploring a personalized, AI-driven school program asked their own question.",
		f"Question: {question}",
		"",
		"What we know about the family:",
		f"- Grade: {current_user.get('grade') or 'unknown'}",
		f"- Interests: {_join(current_user.get('kids_interests') or current_user.get('interests') or []) or 'not provided'}",
		f"- Parent type: {current_user.get('parent_sub_type') or current_user.get('user_type') or 'unknown'}",
	]
	if viewed_summary:
		lines += ["", f"Sections they already read: {viewed_summary[:2000]}"]
	lines += ["", _INSIGHT_FORMAT]
	return "\n".join(lines)


# ---- afternoon activities and research ----

def build_afternoon_prompt(interests: Sequence[str], quiz_data: Optional[Dict[str, Any]] = None) -> str:
	quiz_data = quiz_data or {}
	interest_list = _join(interests) or "exploring new hobbies"
	return (
		"Students in the program finish core academics in about two hours each morning. "
		f"Describe a personalized afternoon for a {quiz_data.get('grade') or 'school-age'} child who loves {interest_list}.\n\n"
		"Return JSON in this exact format (no extra text):\n"
		"{\n"
		"  \"main_title\": \"headline about their afternoons\",\n"
		"  \"subtitle\": \"one sentence\",\n"
		"  \"secondary_interests_text\": \"one sentence about their other interests\",\n"
		"  \"specific_activities\": [{\"activity\": \"name\", \"description\": \"one sentence\", \"time_required\": \"e.g. 45 minutes\"}],\n"
		"  \"passion_project_name\": \"a catchy project name\",\n"
		"  \"passion_deep_dive\": {\"title\": \"...\", \"description\": \"...\", \"progression\": \"how it grows over a year\"},\n"
		"  \"time_comparison_custom\": {\"traditional\": \"hours left in a traditional school day\", \"timeback\": \"hours freed in the program\"}\n"
		"}\n"
		"specific_activities must have exactly 4 items.\n\n"
		f"{_PLAIN_TEXT_RULE}"
	)


RESEARCH_TOPICS = ("blooms_sigma", "zone_proximal_development", "cognitive_load_theory", "mastery_learning")


def build_research_prompt(
	interests: Sequence[str],
	learning_goals: Sequence[str] = (),
	quiz_data: Optional[Dict[str, Any]] = None,
) -> str:
	quiz_data = quiz_data or {}
	schools = school_list(quiz_data.get("selected_schools"))
	level = (schools[0].get("level") if schools else None) or quiz_data.get("grade") or "school-age"
	topic_shape = "{\"personalized_explanation\": \"...\", \"why_it_matters\": \"...\", \"real_world_example\": \"...\"}"
	topics = ",\n".join(f"  \"{topic}\": {topic_shape}" for topic in RESEARCH_TOPICS)
	return (
		"Explain the learning science behind a personalized, AI-driven school program to a parent of a "
		f"{level} student who loves {_join(interests) or 'learning'}"
		f" and whose goals are {_join(learning_goals) or 'strong academics'}.\n"
		"Cover Bloom's 2 sigma problem, the zone of proximal development, cognitive load theory and mastery learning, "
		"using examples from the child's interests.\n\n"
		"Return JSON in this exact format (no extra text):\n"
		"{\n"
		f"{topics},\n"
		"  \"overall_summary\": \"2 sentences tying it together\"\n"
		"}\n\n"
		f"{_PLAIN_TEXT_RULE}"
	)
