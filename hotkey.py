"""Global hotkey adapter based on pynput."""

from __future__ import annotations

import threading
from typing import Callable, Mapping, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore


class GlobalHotkeyAdapter:
    """Fires one handler per bound key press; holding a key does not repeat."""

    def __init__(self, bindings: Mapping[str, str]) -> None:
        # bindings: action name -> pynput key name, e.g. {"toggle_mute": "Key.f8"}
        self._actions_by_key = {key: action for action, key in bindings.items()}
        self._listener: Optional[object] = None
        self._pressed: set[str] = set()
        self._lock = threading.Lock()

    def start(self, handlers: Mapping[str, Callable[[], None]]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")

        def _on_press(key: object) -> None:
            name = str(key)
            action = self._actions_by_key.get(name)
            if action is None or action not in handlers:
                return
            with self._lock:
                if name in self._pressed:
                    return
                self._pressed.add(name)
            handlers[action]()

        def _on_release(key: object) -> None:
            with self._lock:
                self._pressed.discard(str(key))

        self._listener = keyboard.Listener(on_press=_on_press, on_release=_on_release)
        self._listener.start()

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None
        with self._lock:
            self._pressed.clear()
