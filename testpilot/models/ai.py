"""
Usage ledger for LLM-backed operations.

Each completion call (and each template render standing in for one) writes a
single AIUsageLog row, successful or not. Rows are never updated.
"""

from datetime import datetime, timezone

from testpilot.models import db

AI_PROVIDERS = {"azure-openai", "openai", "local", "template"}
AI_PURPOSES = {
    "test_case_generation",
    "test_report_generation",
    "test_plan_generation",
    "selenium_automation_generation",
}

# USD per 1M tokens, (input, output)
TOKEN_COSTS = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "gpt-4-turbo": (10.00, 30.00),
    "gpt-4": (30.00, 60.00),
    "gpt-35-turbo": (0.50, 1.50),
    "local-stub": (0.00, 0.00),
}

# Azure deployment names are free-form; anything unknown is priced as gpt-4
_FALLBACK_COSTS = TOKEN_COSTS["gpt-4"]


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    input_rate, output_rate = TOKEN_COSTS.get(model, _FALLBACK_COSTS)
    return (prompt_tokens * input_rate + completion_tokens * output_rate) / 1_000_000


class AIUsageLog(db.Model):
    __tablename__ = "ai_usage_logs"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    purpose = db.Column(db.String(100), default="", comment="one of AI_PURPOSES")
    user = db.Column(db.String(150), default="system")

    provider = db.Column(db.String(30), nullable=False, comment="one of AI_PROVIDERS")
    model = db.Column(db.String(80), nullable=False)
    prompt_tokens = db.Column(db.Integer, default=0)
    completion_tokens = db.Column(db.Integer, default=0)
    total_tokens = db.Column(db.Integer, default=0)
    cost_usd = db.Column(db.Float, default=0.0)
    latency_ms = db.Column(db.Integer, default=0)

    success = db.Column(db.Boolean, default=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        data = {c: getattr(self, c) for c in (
            "id", "project_id", "purpose", "user", "provider", "model",
            "prompt_tokens", "completion_tokens", "total_tokens", "latency_ms",
            "success", "error_message",
        )}
        data["cost_usd"] = round(self.cost_usd or 0.0, 6)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data

    def __repr__(self):
        return f"<AIUsageLog {self.id} {self.purpose} via {self.provider}/{self.model}>"
