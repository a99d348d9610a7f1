"""Integration layer: connected app ids, Composio tool provider, workspace query client."""

from proddy.integrations.apps import ExternalApp, infer_app_from_tool

__all__ = ["ExternalApp", "infer_app_from_tool"]
