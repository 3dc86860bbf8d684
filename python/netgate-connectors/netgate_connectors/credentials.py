"""Credential management — reads secrets from environment variables.

Never hardcodes credentials.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_GITHUB_API_URL = "https://api.github.com"


@dataclass(frozen=True)
class GitHubCredentials:
    """GitHub token credentials (PAT or GitHub App installation token)."""

    token: str
    api_url: str = DEFAULT_GITHUB_API_URL

    @classmethod
    def from_env(cls) -> GitHubCredentials:
        """Load GitHub credentials from environment variables."""
        return cls(
            token=os.environ.get("GITHUB_TOKEN", ""),
            api_url=os.environ.get("GITHUB_API_URL", DEFAULT_GITHUB_API_URL),
        )
