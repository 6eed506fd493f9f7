from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

# Configuration mapping: settings_attr -> env_var
ENV_VAR_MAPPING = {
    "progress_path": "STORYPATH_PROGRESS_PATH",
    "content_dir": "STORYPATH_CONTENT_DIR",
    "log_level": "STORYPATH_LOG_LEVEL",
}


def _config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "storypath"
    return Path.home() / ".config" / "storypath"


CONFIG_PATH = _config_dir() / "config.json"


@dataclass
class EngineSettings:
    # Where the reader's progress document lives (defaults next to the config file)
    progress_path: Optional[str] = None
    # Root holding <slug>/meta.json story metadata
    content_dir: Optional[str] = None
    log_level: str = "WARNING"

    def resolved_progress_path(self) -> Path:
        if self.progress_path:
            return Path(self.progress_path).expanduser()
        return CONFIG_PATH.parent / "progress.json"


def load_engine_settings(apply_env: bool = True) -> EngineSettings:
    """Load engine settings from the config file, then apply environment overrides.

    Returns default settings if file doesn't exist or is corrupted.
    """
    s = EngineSettings()
    try:
        if CONFIG_PATH.exists():
            data = json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
            known = {f.name for f in fields(EngineSettings)}
            s = EngineSettings(**{k: v for k, v in data.items() if k in known})
    except json.JSONDecodeError as e:
        logging.warning(f"Failed to parse settings file {CONFIG_PATH}: {e}")
    except Exception as e:
        logging.error(f"Unexpected error loading settings: {e}")

    if apply_env:
        for settings_attr, env_var in ENV_VAR_MAPPING.items():
            value = os.environ.get(env_var)
            if value:
                setattr(s, settings_attr, value)
    return s


def save_engine_settings(s: EngineSettings) -> None:
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_PATH.write_text(json.dumps(asdict(s), indent=2), encoding="utf-8")
