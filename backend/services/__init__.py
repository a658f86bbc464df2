"""Services package."""
from services.atlassian_oauth import AtlassianOAuthClient
from services.jira_connections import ConnectionStore
from services.jira_tokens import TokenRefreshGuard

__all__ = ["AtlassianOAuthClient", "ConnectionStore", "TokenRefreshGuard"]
