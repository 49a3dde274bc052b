from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

CONFIG_PATH_ENV = "TIMETABLE_STUDIO_CONFIG"
OPERATOR_MARKER_ENV = "TIMETABLE_STUDIO_OPERATOR_MARKER"
MERGE_DISTANCE_ENV = "TIMETABLE_STUDIO_MERGE_DISTANCE_M"


class Settings(BaseModel):
    """Tunables for loading, stop aggregation and timetable labelling.

    - operator_marker: substring of agency_name marking the distinguished operator
    - merge_distance_m: inclusive distance bound for merging same-named stops
    - whitespace_pattern/bracket_pattern/bus_stop_marker/platform_pattern:
      regular expressions removed from stop names before comparison
    """

    model_config = {"frozen": True}

    operator_marker: str = Field(default="広島電鉄")
    merge_distance_m: float = Field(default=30.0)

    whitespace_pattern: str = Field(default=r"[\u3000\s]")
    bracket_pattern: str = Field(default=r"[（）()]")
    bus_stop_marker: str = Field(default="バス停")
    platform_pattern: str = Field(default=r"のりば[0-9]+")

    route_unknown_label: str = Field(default="route unknown")
    agency_unknown_label: str = Field(default="agency unknown")

    @field_validator("merge_distance_m")
    @classmethod
    def must_be_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("merge_distance_m must be >= 0")
        return v

    @field_validator("whitespace_pattern", "bracket_pattern", "bus_stop_marker", "platform_pattern")
    @classmethod
    def must_compile(cls, v: str) -> str:
        if not v:
            raise ValueError("removal pattern must not be empty")
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"invalid regular expression {v!r}: {exc}") from exc
        return v


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    marker = os.getenv(OPERATOR_MARKER_ENV)
    if marker:
        overrides["operator_marker"] = marker
    distance = os.getenv(MERGE_DISTANCE_ENV)
    if distance:
        # left as a string; pydantic coerces and rejects non-numeric values
        overrides["merge_distance_m"] = distance
    return overrides


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Build settings from defaults, an optional JSON file and env overrides.

    The file comes from `config_path` or the TIMETABLE_STUDIO_CONFIG env var.
    A missing file is ignored with a warning; unreadable JSON raises.
    """
    values: Dict[str, Any] = {}
    path = config_path or os.getenv(CONFIG_PATH_ENV)
    if path:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
            if not isinstance(loaded, dict):
                raise ValueError(f"{path} must contain a JSON object")
            values.update(loaded)
        else:
            logging.warning("Config file %s not found, using defaults.", path)

    values.update(_env_overrides())
    return Settings(**values)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
