"""Simple JSON-based config store with per-language scratch files."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Optional

DEFAULT_VOICE = "Kore"
DEFAULT_LIVE_MODEL = "gemini-2.5-flash-native-audio-preview-09-2025"
DEFAULT_TEXT_MODEL = "gemini-3-pro-preview"
DEFAULT_HOTKEYS = {
    "toggle_mute": "Key.f8",
    "toggle_screen_pause": "Key.f9",
}
API_KEY_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")

_EXTENSIONS = {
    "typescript": "ts",
    "javascript": "js",
    "python": "py",
    "java": "java",
    "c": "c",
    "c++": "cpp",
    "go": "go",
    "rust": "rs",
    "r": "r",
}


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "codecoach" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        key = str(self._read_all().get("api_key", "")).strip()
        if key:
            return key
        for name in API_KEY_ENV_VARS:
            value = os.getenv(name, "").strip()
            if value:
                return value
        return ""

    def set_api_key(self, key: str) -> None:
        self._update(api_key=key.strip())

    def get_voice(self) -> str:
        return str(self._read_all().get("voice", DEFAULT_VOICE))

    def set_voice(self, voice: str) -> None:
        self._update(voice=voice)

    def get_live_model(self) -> str:
        return str(self._read_all().get("live_model", DEFAULT_LIVE_MODEL))

    def get_text_model(self) -> str:
        return str(self._read_all().get("text_model", DEFAULT_TEXT_MODEL))

    def get_hotkeys(self) -> dict[str, str]:
        stored = self._read_all().get("hotkeys", {})
        hotkeys = dict(DEFAULT_HOTKEYS)
        if isinstance(stored, dict):
            hotkeys.update({str(k): str(v) for k, v in stored.items() if k in DEFAULT_HOTKEYS})
        return hotkeys

    def set_hotkey(self, action: str, hotkey: str) -> None:
        if action not in DEFAULT_HOTKEYS:
            raise KeyError(f"unknown hotkey action: {action}")
        hotkeys = self.get_hotkeys()
        hotkeys[action] = hotkey
        self._update(hotkeys=hotkeys)

    # ------------------------------------------------------------------
    # Scratch code
    # ------------------------------------------------------------------

    def scratch_path(self, language: str) -> Path:
        key = language.strip().lower()
        ext = _EXTENSIONS.get(key, "txt")
        stem = re.sub(r"[^a-z0-9]+", "_", key.replace("+", "p")) or "scratch"
        return self._path.parent / "scratch" / f"{stem}.{ext}"

    def save_scratch_code(self, language: str, code: str) -> None:
        path = self.scratch_path(language)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(code, encoding="utf-8")

    def load_scratch_code(self, language: str) -> Optional[str]:
        path = self.scratch_path(language)
        try:
            return path.read_text(encoding="utf-8")
        except OSError:
            return None

    def _update(self, **values: object) -> None:
        data = self._read_all()
        data.update(values)
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
