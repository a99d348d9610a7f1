"""External app registry: the third-party toolkits the assistant can use."""

from __future__ import annotations

from enum import Enum


class ExternalApp(str, Enum):
    """Connected-app identifiers, uppercased as the tool provider reports them."""
    GMAIL = "GMAIL"
    GITHUB = "GITHUB"
    SLACK = "SLACK"
    NOTION = "NOTION"
    CLICKUP = "CLICKUP"
    LINEAR = "LINEAR"

    @property
    def toolkit(self) -> str:
        """Lowercase toolkit slug used by connection records and the provider."""
        return self.value.lower()

    @property
    def human_name(self) -> str:
        return APP_METADATA[self][0]

    @classmethod
    def parse(cls, value: str) -> ExternalApp | None:
        """Return the app for *value* (any case), or None if unknown."""
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


# app → (human name, one-line capability description)
APP_METADATA: dict[ExternalApp, tuple[str, str]] = {
    ExternalApp.GMAIL: ("Gmail", "read and send email"),
    ExternalApp.GITHUB: ("GitHub", "manage repos, issues, and pull requests"),
    ExternalApp.SLACK: ("Slack", "send messages and read channels"),
    ExternalApp.NOTION: ("Notion", "read and write Notion pages"),
    ExternalApp.CLICKUP: ("ClickUp", "manage ClickUp tasks and lists"),
    ExternalApp.LINEAR: ("Linear", "view and update issues and tickets"),
}


def infer_app_from_tool(tool_name: str) -> ExternalApp | None:
    """Map a provider tool slug to its app.

    Examples:
      GMAIL_SEND_EMAIL     → GMAIL
      GITHUB_LIST_ISSUES   → GITHUB
    """
    upper = tool_name.upper()
    for app in ExternalApp:
        if upper.startswith(f"{app.value}_"):
            return app
    return None
