"""
TestPilot
AI module.

Submodules:
    - gateway: LLM Gateway (provider variants, cost tracking, usage log)
    - prompts: Prompt templates for test cases, reports and test plans
"""
