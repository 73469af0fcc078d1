"""In-process feature flag registry.

Flags live in memory for the lifetime of the worker; ``PUT
/api/admin/feature-flags`` mutates the singleton :data:`feature_flags`.
"""

from __future__ import annotations

import copy
from dataclasses import asdict
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from seohub.utils.time import utc_now_naive


@dataclass
class FeatureFlag:
    key: str
    name: str
    description: str
    enabled: bool
    rollout_percentage: int
    user_segments: List[str]
    dependencies: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now_naive)
    updated_at: datetime = field(default_factory=utc_now_naive)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "key": data["key"],
            "name": data["name"],
            "description": data["description"],
            "enabled": data["enabled"],
            "rolloutPercentage": data["rollout_percentage"],
            "userSegments": data["user_segments"],
            "dependencies": data["dependencies"],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


DEFAULT_FLAGS: List[FeatureFlag] = [
    FeatureFlag("LOGO_UPLOAD", "Logo Upload", "Allow agencies to upload custom logos", True, 100, ["admin", "premium"]),
    FeatureFlag(
        "ADVANCED_ANALYTICS",
        "Advanced Analytics",
        "Enhanced analytics dashboard with detailed metrics",
        False,
        0,
        ["premium", "enterprise"],
    ),
    FeatureFlag(
        "MULTI_MODEL_CHAT",
        "Multi-Model Chat",
        "Access to multiple AI models in chat",
        True,
        100,
        ["user", "admin", "premium"],
    ),
    FeatureFlag(
        "WHITE_LABEL_THEMES",
        "White Label Themes",
        "Custom theming and branding options",
        True,
        100,
        ["admin", "premium"],
    ),
    FeatureFlag("API_ACCESS", "API Access", "Access to REST API endpoints", False, 0, ["enterprise"]),
]


# Static switch read by the UI and the health check; not part of the mutable registry.
USE_REQUESTS_TERMINOLOGY = True


def hash_user_id(user_id: str) -> int:
    """Stable non-negative 32-bit string hash used for percentage rollouts."""

    h = 0
    for char in str(user_id):
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


class FeatureFlagService:
    def __init__(self):
        self._flags: Dict[str, FeatureFlag] = {}
        self.reset()

    def reset(self) -> None:
        """Restore the default flag set."""

        now = utc_now_naive()
        self._flags = {}
        for flag in DEFAULT_FLAGS:
            fresh = copy.deepcopy(flag)
            fresh.created_at = fresh.updated_at = now
            self._flags[fresh.key] = fresh

    def is_enabled(self, key: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """Evaluate *key* for ``context`` (``user_id``, ``user_segment``).

        Segment and rollout checks only apply when the context carries the
        corresponding value.
        """

        context = context or {}
        flag = self._flags.get(key)
        if flag is None or not flag.enabled:
            return False

        for dependency in flag.dependencies:
            if not self.is_enabled(dependency, context):
                return False

        segment = context.get("user_segment")
        if flag.user_segments and segment and segment not in flag.user_segments:
            return False

        user_id = context.get("user_id")
        if flag.rollout_percentage < 100 and user_id is not None:
            if hash_user_id(str(user_id)) % 100 >= flag.rollout_percentage:
                return False

        return True

    def get_flag(self, key: str) -> Optional[FeatureFlag]:
        return self._flags.get(key)

    def get_all_flags(self) -> List[FeatureFlag]:
        return list(self._flags.values())

    def update_flag(self, key: str, **updates: Any) -> Optional[FeatureFlag]:
        flag = self._flags.get(key)
        if flag is None:
            return None
        for name, value in updates.items():
            if value is not None:
                setattr(flag, name, value)
        flag.updated_at = utc_now_naive()
        return flag


def segment_for(user) -> str:
    """Map a user row onto the flag segment vocabulary."""

    role = getattr(user.role, "value", user.role)
    return "admin" if role == "ADMIN" or getattr(user, "is_super_admin", False) else "user"


feature_flags = FeatureFlagService()
