"""Jira connector package."""
from connectors.jira import JiraApiGateway
from connectors.jira_issues import RemoteIssue, extract_adf_text, normalize

__all__ = [
    "JiraApiGateway",
    "RemoteIssue",
    "extract_adf_text",
    "normalize",
]
