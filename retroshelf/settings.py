import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .models import EmulatorConfig, LaunchWrapper, WrapperMode

log = logging.getLogger(__name__)

@dataclass
class AppSettings:
    emulators: List[EmulatorConfig] = field(default_factory=list)
    default_native_wrappers: Optional[List[LaunchWrapper]] = None

    def emulator(self, emulator_id: Optional[str]) -> Optional[EmulatorConfig]:
        if not emulator_id:
            return None
        return next((e for e in self.emulators if e.id == emulator_id), None)

def wrappers_from_json(raw) -> Optional[List[LaunchWrapper]]:
    if raw is None or not isinstance(raw, list):
        return None
    out: List[LaunchWrapper] = []
    for w in raw:
        if not isinstance(w, dict):
            continue
        out.append(LaunchWrapper(path=w.get("path") or "", args=w.get("args") or ""))
    return out

def str_map(raw) -> Dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): "" if v is None else str(v) for k, v in raw.items()}

def emulator_from_json(raw: dict) -> Optional[EmulatorConfig]:
    if not isinstance(raw, dict) or not raw.get("path"):
        return None
    try:
        mode = WrapperMode(raw.get("native_wrapper_mode") or WrapperMode.INHERIT.value)
    except ValueError:
        mode = WrapperMode.INHERIT
    return EmulatorConfig(
        id=raw.get("id") or "",
        name=raw.get("name") or "",
        path=raw["path"],
        arguments=raw.get("arguments", "{file}") or "",
        uses_wine_prefix=bool(raw.get("uses_wine_prefix", False)),
        use_playlist_for_multi_disc=bool(raw.get("use_playlist_for_multi_disc", False)),
        environment_overrides=str_map(raw.get("environment_overrides")),
        runtime=raw.get("runtime") or None,
        native_wrapper_mode=mode,
        native_wrappers_override=wrappers_from_json(raw.get("native_wrappers_override")),
    )

def load_settings(settings_file: Path) -> AppSettings:
    settings = AppSettings()
    try:
        if settings_file.exists():
            data = json.loads(settings_file.read_text("utf-8"))
            emulators = [emulator_from_json(e) for e in data.get("emulators", [])]
            settings.emulators = [e for e in emulators if e is not None]
            settings.default_native_wrappers = wrappers_from_json(data.get("default_native_wrappers"))
    except (OSError, ValueError, AttributeError) as e:
        log.warning("Could not read settings %s: %s", settings_file, e)
    return settings
