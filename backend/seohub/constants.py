"""Shared constants for the SEO Hub backend."""

from pathlib import Path

API_PREFIX = "/api"

# ``static`` lives at the repository root, next to ``backend``.
STATIC_DIR = Path(__file__).resolve().parent.parent.parent / "static"

DEFAULT_COMPANY_NAME = "Rylie SEO Hub"
DEFAULT_PRIMARY_COLOR = "#3b82f6"
DEFAULT_SECONDARY_COLOR = "#1e40af"
