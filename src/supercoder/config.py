"""Configuration management for SuperCoder."""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional
from dotenv import load_dotenv

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "o3-mini"


def get_global_config_path() -> Path:
    """Get path to global config: ~/.supercoder.json"""
    return Path.home() / ".supercoder.json"


def get_workspace_config_path(workspace: Optional[Path] = None) -> Path:
    """Get path to workspace config: workspace/.supercoder/config.json"""
    ws = workspace or Path.cwd()
    return ws / ".supercoder" / "config.json"


def load_json_config(path: Path) -> dict:
    """Load config from JSON file if it exists."""
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        if isinstance(data, dict):
            return data
    return {}


def _first_env(*names: str) -> Optional[str]:
    """Return the first non-empty environment variable among names."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def parse_bool(value: Any) -> bool:
    """Truthy strings are 1, true, yes and on (any case)."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_depth(value: Any) -> Optional[int]:
    """Parse a tool depth limit; empty, zero or negative means unbounded."""
    if value is None or value == "":
        return None
    depth = int(value)
    return depth if depth > 0 else None


@dataclass(frozen=True)
class AppConfig:
    """Immutable configuration, built once at start-up and passed down."""

    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    model: str = DEFAULT_MODEL
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    debug: bool = False
    use_cursor_rules: bool = False
    # None keeps the tool loop unbounded
    max_tool_depth: Optional[int] = None
    workspace_path: Path = field(default_factory=Path.cwd)

    @classmethod
    def from_env(
        cls,
        env_path: Optional[Path] = None,
        workspace: Optional[Path] = None,
    ) -> "AppConfig":
        """Load configuration from the environment.

        Priority (earlier wins):
        1. SUPERCODER_* environment variables (a .env file is loaded first)
        2. OPENAI_* environment variables
        3. workspace/.supercoder/config.json
        4. ~/.supercoder.json
        """
        if env_path and env_path.exists():
            load_dotenv(env_path)
        else:
            load_dotenv()

        workspace = workspace or Path.cwd()
        file_data: Dict[str, Any] = {}
        file_data.update(load_json_config(get_global_config_path()))
        file_data.update(load_json_config(get_workspace_config_path(workspace)))

        def pick(env_names, key, default=None):
            value = _first_env(*env_names)
            if value is not None:
                return value
            return file_data.get(key, default)

        temperature = pick(["SUPERCODER_TEMPERATURE"], "temperature")
        max_tokens = pick(["SUPERCODER_MAX_TOKENS"], "max_tokens")

        return cls(
            base_url=pick(["SUPERCODER_BASE_URL", "OPENAI_BASE_URL"], "base_url", DEFAULT_BASE_URL),
            api_key=pick(["SUPERCODER_API_KEY", "OPENAI_API_KEY"], "api_key", ""),
            model=pick(["SUPERCODER_MODEL", "OPENAI_MODEL"], "model", DEFAULT_MODEL),
            temperature=float(temperature) if temperature not in (None, "") else None,
            max_tokens=int(max_tokens) if max_tokens not in (None, "") else None,
            debug=parse_bool(pick(["SUPERCODER_DEBUG"], "debug", False)),
            use_cursor_rules=parse_bool(pick(["SUPERCODER_USE_CURSOR_RULES"], "use_cursor_rules", False)),
            max_tool_depth=_parse_depth(pick(["SUPERCODER_MAX_TOOL_DEPTH"], "max_tool_depth")),
            workspace_path=workspace,
        )

    def with_overrides(self, **overrides: Any) -> "AppConfig":
        """Return a copy with the non-None overrides applied (CLI flags)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    def validate(self) -> bool:
        """Validate the configuration."""
        if not self.base_url:
            raise ValueError("API base URL is required. Set SUPERCODER_BASE_URL or OPENAI_BASE_URL.")
        if not self.api_key:
            raise ValueError("You need to config SUPERCODER_API_KEY or OPENAI_API_KEY variable")
        return True
