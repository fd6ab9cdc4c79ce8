"""testpilot.integrations - External tracker gateway and typed provider settings.

All outbound HTTP calls to issue/work-item trackers go through
`tracker_gateway.TrackerGateway`, never via bare `requests` calls in services
or blueprints.

Provider connection settings arrive with each request and are parsed into the
typed objects in `config`; nothing is persisted server-side.

Current modules:
  config.IntegrationSettings   - Jira / Azure DevOps / LLM settings
  tracker_gateway.TrackerGateway - Jira REST v3 + Azure DevOps WIT REST 7.1
"""
