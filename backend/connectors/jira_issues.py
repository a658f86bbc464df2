"""
Normalization of raw Jira issue JSON into RemoteIssue records.

Jira returns optional fields as missing keys or explicit nulls, and the
description as an Atlassian Document Format (ADF) tree. Everything here is a
pure function of its input and never raises on missing optional fields.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional

STATUS_CATEGORIES: frozenset[str] = frozenset({"new", "indeterminate", "done"})

DEFAULT_PRIORITY: str = "Medium"
DEFAULT_ISSUE_TYPE: str = "Task"


@dataclass(frozen=True)
class RemoteIssue:
    """A Jira issue reduced to the fields the sync needs."""

    id: str
    key: str
    summary: str = ""
    description: str = ""
    status_name: str = ""
    # One of STATUS_CATEGORIES, or '' when Jira did not send one
    status_category: str = ""
    priority: str = DEFAULT_PRIORITY
    parent_id: Optional[str] = None
    parent_key: Optional[str] = None
    issue_type: str = DEFAULT_ISSUE_TYPE

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _text_of(node: Any) -> str:
    """Concatenate every text leaf under an ADF node."""
    if not isinstance(node, dict):
        return ""
    if node.get("type") == "text":
        text = node.get("text")
        return text if isinstance(text, str) else ""
    children = node.get("content")
    if not isinstance(children, list):
        return ""
    return "".join(_text_of(child) for child in children)


def extract_adf_text(adf: Any) -> str:
    """
    Flatten an ADF document to plain text.

    Each top-level block contributes the concatenation of its text leaves;
    non-empty blocks are joined with newlines. A plain string passes through
    unchanged and anything else yields ''.
    """
    if isinstance(adf, str):
        return adf
    if not isinstance(adf, dict):
        return ""
    blocks = adf.get("content")
    if not isinstance(blocks, list):
        return ""
    return "\n".join(text for text in (_text_of(block) for block in blocks) if text)


def normalize_status_category(key: Any) -> str:
    """Return the status category key if it is a known one, else ''."""
    if isinstance(key, str) and key in STATUS_CATEGORIES:
        return key
    return ""


def normalize(raw: dict[str, Any]) -> RemoteIssue:
    """Build a RemoteIssue from a Jira issue payload (search hit or GET /issue)."""
    fields = _as_dict(raw.get("fields"))
    status = _as_dict(fields.get("status"))
    priority = _as_dict(fields.get("priority"))
    parent = _as_dict(fields.get("parent"))
    issue_type = _as_dict(fields.get("issuetype"))

    parent_id = parent.get("id")
    parent_key = parent.get("key")

    return RemoteIssue(
        id=str(raw.get("id") or ""),
        key=str(raw.get("key") or ""),
        summary=fields.get("summary") or "",
        description=extract_adf_text(fields.get("description")),
        status_name=status.get("name") or "",
        status_category=normalize_status_category(
            _as_dict(status.get("statusCategory")).get("key")
        ),
        priority=priority.get("name") or DEFAULT_PRIORITY,
        parent_id=str(parent_id) if parent_id else None,
        parent_key=str(parent_key) if parent_key else None,
        issue_type=issue_type.get("name") or DEFAULT_ISSUE_TYPE,
    )


def normalize_many(raw_issues: list[dict[str, Any]] | None) -> list[RemoteIssue]:
    return [normalize(raw) for raw in raw_issues or []]
