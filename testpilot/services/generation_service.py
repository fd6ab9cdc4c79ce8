"""
Test case generation from a user story.

Flow:
    1. Precondition checks (story title, LLM config, image count), before any network call
    2. Prompt assembly (testpilot.ai.prompts.build_test_case_messages)
    3. One completion call through LLMGateway (no retry)
    4. Strict parse of the reply as a JSON array of objects
    5. Full replacement of the story's test cases, story marked completed

Regeneration is lossy by policy: afterwards the story's test-case set is
exactly the newly generated set. The delete and the inserts share the request
session and are committed once by the route, so a failure before commit keeps
the previous set.
"""

import json
import logging

from testpilot.ai.gateway import LLMGateway
from testpilot.ai.prompts import build_test_case_messages, truncate_description
from testpilot.core.exceptions import ResponseParseError, ValidationError
from testpilot.models import db
from testpilot.models.story import UserStory
from testpilot.models.testing import (
    DEFAULT_STATUS,
    TEST_CASE_CATEGORIES,
    TEST_CASE_PRIORITIES,
    TEST_CASE_TYPES,
    TestCase,
    join_steps,
)
from testpilot.services.test_case_service import encode_test_data, next_readable_id

logger = logging.getLogger(__name__)

MAX_IMAGES = 5
TITLE_MAX = 255

GENERATION_TEMPERATURE = 0.7
GENERATION_MAX_TOKENS = 2500


def parse_test_cases(content: str, provider: str = "") -> list[dict]:
    """Decode the completion text as a JSON array of objects.

    No fence stripping and no repair: anything else is a parse failure.

    Raises:
        ResponseParseError: carrying the raw text.
    """
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError) as e:
        raise ResponseParseError(
            f"Invalid JSON response from AI service: {e}",
            raw_content=content or "", provider=provider,
        ) from e

    if not isinstance(parsed, list):
        raise ResponseParseError(
            "AI response is not a JSON array of test cases",
            raw_content=content, provider=provider,
        )
    if not all(isinstance(item, dict) for item in parsed):
        raise ResponseParseError(
            "AI response array must contain only test case objects",
            raw_content=content, provider=provider,
        )
    return parsed


def _choice(value, allowed: set, default):
    value = str(value or "").strip().lower()
    return value if value in allowed else default


def _as_text(value) -> str:
    """Free-text fields arrive as strings, lists of lines or the odd object."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return join_steps(value)
    return json.dumps(value, default=str)


def _test_case_from_generated(item: dict, story: UserStory, readable_id: str) -> TestCase:
    steps = item.get("steps")
    return TestCase(
        project_id=story.project_id,
        user_story_id=story.id,
        readable_id=readable_id,
        title=_as_text(item.get("title") or item.get("name") or "Test Case")[:500],
        description=_as_text(item.get("description")),
        steps=join_steps(steps if steps is not None else ""),
        expected_result=_as_text(item.get("expectedResult") or item.get("expected")),
        test_data=encode_test_data(item.get("testData")),
        priority=_choice(item.get("priority"), TEST_CASE_PRIORITIES, "medium"),
        status=DEFAULT_STATUS,
        test_type=_choice(item.get("type"), TEST_CASE_TYPES, None),
        category=_choice(item.get("category"), TEST_CASE_CATEGORIES, None),
    )


def replace_story_test_cases(story: UserStory, generated: list[dict]) -> list[TestCase]:
    """Delete every test case of the story, then insert the generated set."""
    existing = TestCase.query.filter_by(project_id=story.project_id, user_story_id=story.id).all()
    for tc in existing:
        db.session.delete(tc)
    removed = len(existing)
    db.session.flush()

    first = int(next_readable_id(story.project_id).split("-")[1])
    cases = []
    for offset, item in enumerate(generated):
        tc = _test_case_from_generated(item, story, f"TC-{first + offset:04d}")
        db.session.add(tc)
        cases.append(tc)
    db.session.flush()
    logger.info("Replaced test cases story_id=%s removed=%d inserted=%d",
                story.id, removed, len(cases), extra={"story_id": story.id})
    return cases


def generate_test_cases(
    story: UserStory,
    llm_config,
    *,
    custom_prompt: str | None = None,
    images: list | None = None,
    user: str = "system",
    gateway: LLMGateway | None = None,
) -> list[TestCase]:
    """Generate test cases for a story and replace its existing set.

    Raises:
        ValidationError: missing title/config or too many images (no network call made).
        ProviderError: completion endpoint failure.
        ResponseParseError: reply is not a JSON array of objects (nothing persisted).
    """
    title = (story.title or "").strip()
    if not title:
        raise ValidationError("Story title is required", details={"title": "required"})
    if len(title) > TITLE_MAX:
        raise ValidationError(f"Story title must be at most {TITLE_MAX} characters",
                              details={"title": f"max {TITLE_MAX}"})
    if llm_config is None:
        raise ValidationError("LLM configuration is required",
                              details={"provider": "llm", "missing": ["llm"]})

    images = [img for img in (images or []) if img]
    if len(images) > MAX_IMAGES:
        raise ValidationError(f"At most {MAX_IMAGES} images can be attached",
                              details={"images": len(images)})
    if not all(isinstance(img, str) for img in images):
        raise ValidationError("Images must be URLs or data URLs", details={"images": "invalid"})

    messages = build_test_case_messages(
        {
            "title": title,
            "description": truncate_description(story.description),
            "priority": (story.priority or "medium").capitalize(),
            "issue_type": "Story",
            "acceptance_criteria": story.acceptance_criteria,
        },
        custom_prompt=custom_prompt,
        images=images,
    )

    gateway = gateway or LLMGateway()
    result = gateway.chat(
        messages, llm_config,
        purpose="test_case_generation", user=user, project_id=story.project_id,
        temperature=GENERATION_TEMPERATURE, max_tokens=GENERATION_MAX_TOKENS,
    )

    try:
        generated = parse_test_cases(result["content"], provider=result.get("provider", ""))
    except ResponseParseError as exc:
        gateway.mark_failed(result, exc)
        raise
    cases = replace_story_test_cases(story, generated)

    story.status = "completed"
    db.session.flush()
    logger.info("Generated %d test cases story_id=%s provider=%s",
                len(cases), story.id, result.get("provider"),
                extra={"story_id": story.id, "project_id": story.project_id,
                       "provider": result.get("provider"), "purpose": "test_case_generation"})
    return cases
