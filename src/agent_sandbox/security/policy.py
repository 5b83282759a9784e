"""Process-wide capability policy for sandboxed browser execution."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from agent_sandbox.errors import PolicyConfigurationError
from agent_sandbox.security.classifier import RESTRICTED_DESTINATIONS


@dataclass(frozen=True)
class CapabilityPolicy:
    restricted_apis: tuple[str, ...]
    restricted_urls: tuple[str, ...]
    restricted_actions: tuple[str, ...]
    allowed_actions: tuple[str, ...]

    def is_action_allowed(self, action: str) -> bool:
        return action in self.allowed_actions and action not in self.restricted_actions

    def is_url_restricted(self, url: str) -> bool:
        lowered = url.lower()
        return any(fragment in lowered for fragment in self.restricted_urls)

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "restricted_apis": list(self.restricted_apis),
            "restricted_urls": list(self.restricted_urls),
            "restricted_actions": list(self.restricted_actions),
            "allowed_actions": list(self.allowed_actions),
        }


DEFAULT_POLICY = CapabilityPolicy(
    restricted_apis=(
        "localStorage",
        "sessionStorage",
        "cookies",
        "geolocation",
        "camera",
        "microphone",
        "clipboard",
    ),
    restricted_urls=RESTRICTED_DESTINATIONS,
    restricted_actions=(
        "delete_data",
        "modify_settings",
        "install_extension",
        "access_file_system",
        "execute_script",
        "modify_dom_permanently",
    ),
    allowed_actions=(
        "navigate",
        "search",
        "read_content",
        "click_element",
        "fill_form",
        "scroll",
        "take_screenshot",
        "extract_text",
    ),
)


def validate_policy(policy: CapabilityPolicy, registry: Mapping[str, Any]) -> None:
    """Fail fast when the policy and the tool registry contradict each other.

    ``registry`` maps tool names to specs exposing an ``actions`` collection.
    """
    overlap = sorted(set(policy.allowed_actions) & set(policy.restricted_actions))
    if overlap:
        raise PolicyConfigurationError(
            f"Actions are both allowed and restricted: {', '.join(overlap)}"
        )

    covered: set[str] = set()
    for tool_name, spec in registry.items():
        for action in spec.actions:
            if action in policy.restricted_actions:
                raise PolicyConfigurationError(
                    f"Tool '{tool_name}' exercises restricted action '{action}'"
                )
            if action not in policy.allowed_actions:
                raise PolicyConfigurationError(
                    f"Tool '{tool_name}' exercises action '{action}' missing from the allow-list"
                )
            covered.add(action)

    missing = [action for action in policy.allowed_actions if action not in covered]
    if missing:
        raise PolicyConfigurationError(
            f"Allowed actions have no registered tool: {', '.join(missing)}"
        )
