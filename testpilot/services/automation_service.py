"""
Selenium automation skeleton generator.

Template-based (no completion call): a Java JUnit 5 + Selenium WebDriver
class is rendered from ``templates/automation/selenium_junit.java.j2``.
Each test step gets placeholder WebDriver code chosen by keyword; the
locators and URLs are stubs to be filled in by the automation engineer.

The call is still recorded in the AI usage log (provider "template",
zero tokens) so automation requests show up next to LLM usage.
"""

import logging
import re
import time

from jinja2 import Environment, PackageLoader, StrictUndefined

from testpilot.ai.gateway import LLMGateway
from testpilot.models.testing import TestCase, split_steps

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "automation/selenium_junit.java.j2"

# Checked in order; first match wins
_STEP_KEYWORDS = (
    ("navigate", ("navigate", "open", "go to")),
    ("click", ("click", "press")),
    ("input", ("enter", "type", "input")),
    ("verify", ("verify", "check", "assert")),
    ("wait", ("wait", "pause")),
)

_env = Environment(
    loader=PackageLoader("testpilot", "templates"),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=False,
    undefined=StrictUndefined,
)


def java_string(value) -> str:
    """Escape text for use inside a Java string literal or comment."""
    text = str(value or "")
    text = text.replace("\\", "\\\\").replace('"', '\\"')
    return re.sub(r"[\r\n]+", " ", text).replace("*/", "* /")


_env.filters["java"] = java_string


def sanitize_class_name(title: str) -> str:
    """Title reduced to [A-Za-z0-9], prefixed when it starts with a digit, suffixed 'Test'."""
    name = re.sub(r"[^a-zA-Z0-9]", "", title or "")
    if name[:1].isdigit():
        name = "Test" + name
    return name + "Test"


def step_kind(step: str) -> str:
    content = step.lower()
    for kind, keywords in _STEP_KEYWORDS:
        if any(k in content for k in keywords):
            return kind
    return "manual"


def render_selenium_code(test_case: TestCase) -> tuple[str, str]:
    class_name = sanitize_class_name(test_case.title)
    steps = [
        {"number": n, "text": text, "kind": step_kind(text)}
        for n, text in enumerate(split_steps(test_case.steps), start=1)
    ]
    code = _env.get_template(TEMPLATE_NAME).render(
        class_name=class_name,
        method_name="test" + class_name.replace("Test", "", 1),
        title=test_case.title,
        description=test_case.description or "",
        priority=test_case.priority,
        expected_result=test_case.expected_result or "",
        steps=steps,
    )
    return code, class_name


def generate_selenium_code(
    test_case: TestCase,
    *,
    user: str = "system",
    gateway: LLMGateway | None = None,
) -> dict:
    """Render the skeleton and log the template call. Returns {code, class_name}."""
    started = time.time()
    code, class_name = render_selenium_code(test_case)

    gateway = gateway or LLMGateway()
    gateway.record_usage(
        provider="template", model="selenium-junit5",
        purpose="selenium_automation_generation",
        user=user, project_id=test_case.project_id,
        latency_ms=int((time.time() - started) * 1000),
    )
    logger.info("Selenium skeleton generated test_case_id=%s class=%s", test_case.id, class_name)
    return {"code": code, "class_name": class_name}
