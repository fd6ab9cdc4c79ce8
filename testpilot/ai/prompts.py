"""
TestPilot
Prompt Registry.

Built-in prompt templates with:
    - {{variable}} rendering into chat messages
    - Version tracking (name → version → template)

Conditional blocks (image context, custom requirements, defect metrics) are
assembled by the builder functions below and passed in as variables, so the
templates themselves stay flat text.

Usage:
    from testpilot.ai.prompts import build_test_case_messages
    messages = build_test_case_messages(story_fields, custom_prompt="...", images=[...])
"""

import logging
import re

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_CHARS = 5000
TRUNCATION_MARKER = "... [truncated]"


class PromptTemplate:
    """A single prompt template with metadata."""

    def __init__(self, name: str, version: str, system: str, user: str, description: str = ""):
        self.name = name
        self.version = version
        self.system = system
        self.user = user
        self.description = description

    def render(self, **variables) -> list[dict]:
        """
        Render template with variables, returning chat messages.

        Variables are replaced using {{variable_name}} syntax.

        Returns:
            List of message dicts: [{"role": "system", "content": "..."}, ...]
        """
        system_rendered = self._substitute(self.system, variables)
        user_rendered = self._substitute(self.user, variables)

        messages = []
        if system_rendered.strip():
            messages.append({"role": "system", "content": system_rendered})
        if user_rendered.strip():
            messages.append({"role": "user", "content": user_rendered})
        return messages

    @staticmethod
    def _substitute(template: str, variables: dict) -> str:
        """Replace {{var}} placeholders with values; unknown names are left in place."""
        def replacer(match):
            key = match.group(1).strip()
            if key not in variables:
                return match.group(0)
            return str(variables[key])
        return re.sub(r"\{\{(\s*\w+\s*)\}\}", replacer, template)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "system_preview": self.system[:200],
            "user_preview": self.user[:200],
        }


class PromptRegistry:
    """Registry for the built-in prompt templates."""

    def __init__(self, templates: list[PromptTemplate] | None = None):
        self._templates: dict[str, dict[str, PromptTemplate]] = {}  # name → {version → template}
        for tpl in templates if templates is not None else _DEFAULT_TEMPLATES:
            self.register(tpl)

    def register(self, template: PromptTemplate):
        self._templates.setdefault(template.name, {})[template.version] = template

    def get(self, name: str, version: str = "v1") -> PromptTemplate | None:
        return self._templates.get(name, {}).get(version)

    def render(self, name: str, version: str = "v1", **variables) -> list[dict]:
        """
        Render a prompt template with variables.

        Raises:
            KeyError: If template not found.
        """
        tpl = self.get(name, version)
        if not tpl:
            raise KeyError(f"Prompt template not found: {name} v{version}")
        return tpl.render(**variables)

    def list_templates(self) -> list[dict]:
        return [tpl.to_dict() for versions in self._templates.values() for tpl in versions.values()]


# ── Built-in Default Templates ────────────────────────────────────────────────

_DEFAULT_TEMPLATES = [
    PromptTemplate(
        name="test_case_generator",
        version="v1",
        description="Generate 8-12 structured test cases for one user story",
        system=(
            "You are a QA expert who generates comprehensive test cases. When an image is "
            "provided, analyze it carefully for UI elements, workflows, and visual components. "
            "Return only valid JSON arrays without any markdown formatting or explanations."
        ),
        user=(
            "Generate comprehensive test cases for the following user story:\n\n"
            "Title: {{title}}\n"
            "Description: {{description}}\n"
            "Priority: {{priority}}\n"
            "Issue Type: {{issue_type}}"
            "{{acceptance_criteria_block}}"
            "{{images_block}}\n\n"
            "Please generate test cases that include:\n"
            "1. Positive test scenarios\n"
            "2. Negative test scenarios\n"
            "3. Edge cases\n"
            "4. Boundary conditions\n"
            "5. User acceptance criteria validation"
            "{{image_checklist_block}}"
            "{{custom_block}}\n\n"
            "Format the response as a JSON array of test case objects with the following structure:\n"
            "{\n"
            '  "id": "TC001",\n'
            '  "title": "Test case title",\n'
            '  "description": "Detailed test case description",\n'
            '  "type": "positive|negative|edge|boundary",\n'
            '  "priority": "high|medium|low",\n'
            '  "steps": ["Step 1", "Step 2", "Step 3"],\n'
            '  "expectedResult": "Expected outcome",\n'
            '  "testData": "Sample test data, input values, or data sets needed for this test case",\n'
            '  "category": "functional|ui|integration|performance"\n'
            "}\n\n"
            "Generate 8-12 test cases covering all important scenarios."
        ),
    ),
    PromptTemplate(
        name="test_report",
        version="v1",
        description="Narrative test execution report over aggregate statistics",
        system=(
            "You are a senior QA manager with expertise in test reporting, quality metrics, and "
            "stakeholder communication. Generate comprehensive, data-driven test reports that "
            "provide clear insights and actionable recommendations."
        ),
        user=(
            'Generate a comprehensive test execution report for the project "{{project_name}}" '
            "with integrated defect analysis.\n\n"
            "Test Execution Statistics:\n"
            "- Total Test Cases: {{total}}\n"
            "- Passed: {{passed}}\n"
            "- Failed: {{failed}}\n"
            "- Blocked: {{blocked}}\n"
            "- Pending: {{pending}}\n"
            "- Pass Rate: {{pass_rate}}%\n"
            "- High Priority: {{high}} | Medium Priority: {{medium}} | Low Priority: {{low}}\n"
            "{{defect_block}}\n"
            "Test Cases Details:\n"
            "{{test_case_lines}}\n\n"
            "Report Type: {{report_type}}\n"
            "Execution Period: {{period_start}} to {{period_end}}\n\n"
            "Create a comprehensive test execution report that includes:\n"
            "1. Executive Summary\n"
            "2. Test Execution Overview\n"
            "3. Test Results Summary with charts description\n"
            "4. Defect Analysis and Quality Metrics (if Azure DevOps data is available)\n"
            "5. Test-to-Defect Correlation Analysis\n"
            "6. Detailed Test Results by Priority/User Story\n"
            "7. Failed Test Cases and Related Defects Analysis\n"
            "8. Risk Assessment and Quality Gates\n"
            "9. Quality Metrics, Trends, and Defect Patterns\n"
            "10. Recommendations and Next Steps\n"
            "11. Appendix with test case and defect details\n"
            "{{defect_instruction}}\n"
            "Format the response as a professional document with clear sections, bullet points, "
            "and actionable insights for stakeholders."
        ),
    ),
    PromptTemplate(
        name="test_plan",
        version="v1",
        description="Structured test plan from stories and/or a requirements document",
        system=(
            "You are an expert test manager with deep knowledge of software testing methodologies, "
            "test planning, and quality assurance. Generate comprehensive, professional test plans "
            "that follow industry standards."
        ),
        user=(
            'Generate a comprehensive test plan for the project "{{project_name}}".\n\n'
            "{{content_block}}"
            "Testing Scope: {{testing_scope}}"
            "{{custom_block}}\n\n"
            "Create a detailed test plan that includes:\n"
            "1. Test Objectives\n"
            "2. Test Scope and Approach\n"
            "3. Test Environment Requirements\n"
            "4. Test Schedule and Milestones\n"
            "5. Risk Assessment\n"
            "6. Entry and Exit Criteria\n"
            "7. Test Deliverables\n"
            "8. Resource Requirements\n"
            "9. Test Strategy for each requirement/story\n"
            "10. Performance and Security Testing considerations\n\n"
            "Format the response as a structured document with clear sections and subsections."
        ),
    ),
]

registry = PromptRegistry()


# ── Builders ──────────────────────────────────────────────────────────────────

def truncate_description(text: str | None, limit: int = MAX_DESCRIPTION_CHARS) -> str:
    """Cut long descriptions and mark the cut."""
    text = text or ""
    if len(text) > limit:
        return text[:limit] + TRUNCATION_MARKER
    return text


def build_test_case_messages(story: dict, *, custom_prompt: str | None = None,
                             images: list[str] | None = None) -> list[dict]:
    """System + user messages for test-case generation.

    Args:
        story: title (required), description, priority, issue_type, acceptance_criteria.
        custom_prompt: Free-text instructions appended verbatim (trimmed).
        images: Image URLs or data URLs; each becomes an ``image_url`` content part.
    """
    images = images or []
    acceptance = (story.get("acceptance_criteria") or "").strip()
    variables = {
        "title": story["title"],
        "description": story.get("description") or "No description provided",
        "priority": story.get("priority") or "Medium",
        "issue_type": story.get("issue_type") or "Story",
        "acceptance_criteria_block": f"\nAcceptance Criteria: {acceptance}" if acceptance else "",
        "images_block": "",
        "image_checklist_block": "",
        "custom_block": "",
    }
    if images:
        variables["images_block"] = (
            "\n\nUPLOADED IMAGES CONTEXT:\n"
            f"{len(images)} image(s) have been provided that show UI elements, mockups, wireframes, "
            "or other visual context related to this user story. Please analyze all the images and "
            "incorporate any visual elements, user interface components, workflows, or specific "
            "scenarios shown in the images when generating test cases."
        )
        variables["image_checklist_block"] = (
            "\n6. UI-specific test cases based on the uploaded images"
            "\n7. Visual validation tests for elements shown in the images"
            "\n8. User interaction tests for components visible in the images"
        )
    if custom_prompt and custom_prompt.strip():
        variables["custom_block"] = (
            "\n\nADDITIONAL CUSTOM REQUIREMENTS:\n"
            f"{custom_prompt.strip()}\n\n"
            "Please ensure the test cases incorporate these custom requirements along with the "
            "standard test case types listed above."
        )

    messages = registry.render("test_case_generator", **variables)
    if images:
        user_msg = messages[-1]
        user_msg["content"] = [{"type": "text", "text": user_msg["content"]}] + [
            {"type": "image_url", "image_url": {"url": url}} for url in images
        ]
    return messages


def format_defect_block(defect_data: dict | None) -> str:
    """Defect metrics + 10 most recent defects, or an empty string."""
    if not defect_data or not defect_data.get("metrics"):
        return ""
    m = defect_data["metrics"]
    lines = [
        "",
        "Defect Metrics (Azure DevOps Integration):",
        f"- Total Defects: {m.get('total_defects', 0)}",
        f"- Open Defects: {m.get('open_defects', 0)}",
        f"- Closed Defects: {m.get('closed_defects', 0)}",
        f"- Critical Defects: {m.get('critical_defects', 0)}",
        f"- High Priority Defects: {m.get('high_defects', 0)}",
        f"- Medium Priority Defects: {m.get('medium_defects', 0)}",
        f"- Low Priority Defects: {m.get('low_defects', 0)}",
        f"- Defect Closure Rate: {m.get('defect_closure_rate', 0)}%",
        "",
        "Recent Defects:",
    ]
    for index, defect in enumerate((defect_data.get("defects") or [])[:10], start=1):
        lines.append(f"{index}. {defect.get('title', 'Untitled')}")
        lines.append(f"   Priority: {defect.get('priority')} | Severity: {defect.get('severity')}")
        lines.append(f"   State: {defect.get('state')}")
        lines.append(f"   Assigned To: {defect.get('assigned_to') or 'Unassigned'}")
        lines.append(f"   Created: {(defect.get('created_date') or '')[:10]}")
    return "\n".join(lines) + "\n"


def build_report_messages(*, project_name: str, statistics: dict, test_cases: list[dict],
                          report_type: str, period_start: str, period_end: str,
                          defect_data: dict | None = None) -> list[dict]:
    """System + user messages for the narrative test report."""
    case_lines = []
    for index, tc in enumerate(test_cases, start=1):
        case_lines.append(f"{index}. {tc['title']}")
        case_lines.append(f"   Status: {tc['status']}")
        case_lines.append(f"   Priority: {tc['priority']}")
        case_lines.append(f"   User Story: {tc.get('user_story_title') or 'N/A'}")
        if tc["status"] == "failed":
            case_lines.append("   Issue: Test failed during execution")

    by_priority = statistics.get("by_priority", {})
    return registry.render(
        "test_report",
        project_name=project_name,
        total=statistics["total"],
        passed=statistics["passed"],
        failed=statistics["failed"],
        blocked=statistics["blocked"],
        pending=statistics["pending"],
        pass_rate=statistics["pass_rate"],
        high=by_priority.get("high", 0),
        medium=by_priority.get("medium", 0),
        low=by_priority.get("low", 0),
        defect_block=format_defect_block(defect_data),
        test_case_lines="\n".join(case_lines),
        report_type=report_type,
        period_start=period_start,
        period_end=period_end,
        defect_instruction=(
            "\nInclude detailed analysis of the relationship between test failures and defects. "
            "Provide insights on defect density, escape rates, and quality trends.\n"
            if defect_data else ""
        ),
    )


def build_test_plan_messages(*, project_name: str, stories: list[dict],
                             requirements_doc: str | None, testing_scope: str,
                             custom_prompt: str | None = None) -> list[dict]:
    """System + user messages for the test plan."""
    content = ""
    if stories:
        story_lines = "\n".join(
            f"{index}. {s['title']}: {s.get('description') or ''}"
            for index, s in enumerate(stories, start=1)
        )
        content += f"User Stories:\n{story_lines}\n\n"
    if requirements_doc:
        content += f"Requirements Document:\n{requirements_doc}\n\n"

    custom_block = ""
    if custom_prompt and custom_prompt.strip():
        custom_block = f"\n\nAdditional Requirements:\n{custom_prompt.strip()}"

    return registry.render(
        "test_plan",
        project_name=project_name,
        content_block=content,
        testing_scope=testing_scope,
        custom_block=custom_block,
    )
