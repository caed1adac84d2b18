"""Application entrypoint."""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from capture import MicrophoneCapture, record_clip
from coach import ChatSession, CoachService, edit_image_file, grounding_links
from config import JsonConfigStore
from errors import SessionError
from hotkey import GlobalHotkeyAdapter
from models import SUPPORTED_LANGUAGES, CaptureState, Challenge, ChatMode, Difficulty, SessionStatus
from overlay import OverlayWindow
from playback import SoundDeviceOutput
from screen import MssDisplaySource
from session_controller import LiveSessionController
from transport import GeminiLiveTransport

try:
    from PySide6.QtCore import QObject, QSize, QUrl, Signal
    from PySide6.QtGui import QAction, QBrush, QColor, QDesktopServices, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import QApplication, QFileDialog, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "CODECOACH_LOG_LEVEL"
VOICE_CLIP_S = 6.0


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


ICON_IDLE = "#888888"
ICON_CONNECTING = "#F5C542"
ICON_CONNECTED = "#34D399"
ICON_ERROR = "#FF8800"

_STATUS_TEXT = {
    SessionStatus.IDLE.value: "Ready",
    SessionStatus.CONNECTING.value: "Connecting...",
    SessionStatus.CONNECTED.value: "Live",
    SessionStatus.ERROR.value: "Error",
}


class UIBridge(QObject):
    status_signal = Signal(str, str)  # from_status, to_status
    error_signal = Signal(str)
    capture_signal = Signal(bool, bool, bool)  # microphone, screen, screen_paused
    notice_signal = Signal(str, str)  # title, body
    info_signal = Signal(str)
    open_signal = Signal(str)  # local file path


class LoopThread:
    """Runs an asyncio loop on a daemon thread for the session controller."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="live-session", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def submit(self, coro: Any) -> Any:
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def call(self, func: Callable[[], Any]) -> None:
        self.loop.call_soon_threadsafe(func)

    def stop(self, timeout: float = 2.0) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store = JsonConfigStore()
        self.overlay = OverlayWindow()
        self.ui = UIBridge()
        self.ui.status_signal.connect(self._on_status_change_ui)
        self.ui.error_signal.connect(self._on_error_ui)
        self.ui.capture_signal.connect(self._on_capture_change_ui)
        self.ui.notice_signal.connect(self._on_notice_ui)
        self.ui.info_signal.connect(self._on_info_ui)
        self.ui.open_signal.connect(self._on_open_ui)

        self.loop_thread = LoopThread()
        self.controller = LiveSessionController(
            microphone=MicrophoneCapture(),
            output=SoundDeviceOutput(),
            transport=GeminiLiveTransport(
                model=self.config_store.get_live_model(),
                voice=self.config_store.get_voice(),
            ),
            display=MssDisplaySource(),
            api_key_provider=self.config_store.get_api_key,
            on_status_change=self._on_status_change,
            on_error=self._on_error,
            on_capture_change=self._on_capture_change,
        )
        self.hotkey = GlobalHotkeyAdapter(self.config_store.get_hotkeys())
        self.challenge: Optional[Challenge] = None
        self.chat: Optional[ChatSession] = None

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self.tray.setToolTip("Code Coach — Ready")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        self.connect_action = QAction("Connect", menu)
        self.connect_action.triggered.connect(self._toggle_connection)
        menu.addAction(self.connect_action)

        self.mute_action = QAction("Mute", menu)
        self.mute_action.setCheckable(True)
        self.mute_action.triggered.connect(self._toggle_mute)
        menu.addAction(self.mute_action)

        self.share_action = QAction("Share Screen", menu)
        self.share_action.setEnabled(False)
        self.share_action.triggered.connect(self._toggle_screen_share)
        menu.addAction(self.share_action)

        self.pause_action = QAction("Pause Screen", menu)
        self.pause_action.setEnabled(False)
        self.pause_action.triggered.connect(
            lambda: self.loop_thread.call(self.controller.toggle_screen_pause)
        )
        menu.addAction(self.pause_action)

        menu.addSeparator()
        challenge_action = QAction("New Challenge...", menu)
        challenge_action.triggered.connect(self._new_challenge)
        menu.addAction(challenge_action)

        open_action = QAction("Open Scratch File", menu)
        open_action.triggered.connect(self._open_scratch)
        menu.addAction(open_action)

        submit_action = QAction("Submit Scratch Code", menu)
        submit_action.triggered.connect(lambda: self._run_coach_task(self._submit_scratch))
        menu.addAction(submit_action)

        review_action = QAction("Review Scratch Code", menu)
        review_action.triggered.connect(lambda: self._run_coach_task(self._review_scratch))
        menu.addAction(review_action)

        menu.addSeparator()
        ask_action = QAction("Ask Coach...", menu)
        ask_action.triggered.connect(self._ask_coach)
        menu.addAction(ask_action)

        voice_action = QAction("Ask Coach by Voice", menu)
        voice_action.triggered.connect(self._ask_coach_by_voice)
        menu.addAction(voice_action)

        clear_chat_action = QAction("Clear Chat History", menu)
        clear_chat_action.triggered.connect(self._clear_chat)
        menu.addAction(clear_chat_action)

        image_action = QAction("Edit Image...", menu)
        image_action.triggered.connect(self._edit_image)
        menu.addAction(image_action)

        menu.addSeparator()
        api_action = QAction("Set API Key", menu)
        api_action.triggered.connect(self._set_api_key)
        menu.addAction(api_action)

        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)

    # ------------------------------------------------------------------
    # Menu actions (UI thread)
    # ------------------------------------------------------------------

    def _toggle_connection(self) -> None:
        if self.controller.status in (SessionStatus.IDLE, SessionStatus.ERROR):
            self.loop_thread.submit(self.controller.connect())
        else:
            self.loop_thread.submit(self.controller.disconnect())

    def _toggle_mute(self) -> None:
        self.loop_thread.call(self.controller.toggle_mute)

    def _toggle_screen_share(self) -> None:
        if self.controller.capture_state.screen:
            self.loop_thread.call(self.controller.stop_screen_share)
        else:
            self.loop_thread.submit(self.controller.start_screen_share())

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(None, "API Key", "Gemini API Key")
        if not ok:
            return
        self.config_store.set_api_key(value)
        self.chat = None
        QMessageBox.information(None, "Saved", "API Key saved. It is used on the next connect.")

    def _new_challenge(self) -> None:
        language, ok = QInputDialog.getItem(
            None, "New Challenge", "Language", list(SUPPORTED_LANGUAGES), 2, False
        )
        if not ok:
            return
        levels = [d.value for d in Difficulty]
        level, ok = QInputDialog.getItem(None, "New Challenge", "Difficulty", levels, 1, False)
        if not ok:
            return
        topic, ok = QInputDialog.getText(None, "New Challenge", "Topic (e.g. Arrays, Recursion)")
        if not ok or not topic.strip():
            return
        self._run_coach_task(
            lambda coach: self._generate_challenge(coach, Difficulty(level), topic.strip(), language)
        )

    def _open_scratch(self) -> None:
        if self.challenge is None:
            self.overlay.show_error("Create a challenge first.")
            return
        path = self.config_store.scratch_path(self.challenge.language)
        if not path.exists():
            self.config_store.save_scratch_code(self.challenge.language, self.challenge.starter_code)
        QDesktopServices.openUrl(QUrl.fromLocalFile(str(path)))

    def _ask_coach(self) -> None:
        modes = [m.value for m in ChatMode]
        mode, ok = QInputDialog.getItem(None, "Ask Coach", "Mode", modes, 0, False)
        if not ok:
            return
        question, ok = QInputDialog.getText(None, "Ask Coach", "Question")
        if not ok or not question.strip():
            return
        self._run_coach_task(lambda coach: self._answer(coach, question, ChatMode(mode)))

    def _ask_coach_by_voice(self) -> None:
        if self.controller.status == SessionStatus.CONNECTED:
            self.overlay.show_error("Disconnect the live session to record a question.")
            return
        self._run_coach_task(self._answer_recorded_question)

    def _clear_chat(self) -> None:
        if self.chat is not None:
            self.chat.clear()

    def _edit_image(self) -> None:
        path, _ = QFileDialog.getOpenFileName(
            None, "Edit Image", "", "Images (*.png *.jpg *.jpeg *.webp)"
        )
        if not path:
            return
        prompt, ok = QInputDialog.getText(None, "Edit Image", "Describe the change")
        if not ok or not prompt.strip():
            return
        self._run_coach_task(lambda coach: self._edit_image_file(coach, Path(path), prompt.strip()))

    # ------------------------------------------------------------------
    # Coach requests (worker threads)
    # ------------------------------------------------------------------

    def _run_coach_task(self, task: Callable[[CoachService], None]) -> None:
        api_key = self.config_store.get_api_key()
        if not api_key:
            self.overlay.show_error("Please set an API Key first.")
            return

        def _worker() -> None:
            try:
                task(CoachService(api_key, model=self.config_store.get_text_model()))
            except Exception as exc:
                logger.exception("coach request failed")
                self.ui.error_signal.emit(f"Coach request failed: {exc}")

        threading.Thread(target=_worker, daemon=True).start()

    def _generate_challenge(
        self, coach: CoachService, difficulty: Difficulty, topic: str, language: str
    ) -> None:
        challenge = coach.generate_challenge(difficulty, topic, language)
        self.challenge = challenge
        self.config_store.save_scratch_code(language, challenge.starter_code)
        body = challenge.description + "\n\n" + "\n".join(f"• {r}" for r in challenge.requirements)
        self.ui.notice_signal.emit(challenge.title, body)

    def _submit_scratch(self, coach: CoachService) -> None:
        challenge = self.challenge
        if challenge is None:
            self.ui.error_signal.emit("Create a challenge first.")
            return
        code = self.config_store.load_scratch_code(challenge.language) or ""
        result = coach.submit_solution(code, challenge)
        lines = [result.status, "", result.feedback]
        lines.extend(f"• {m}" for m in result.mistakes)
        self.ui.notice_signal.emit("Submission", "\n".join(lines))

    def _review_scratch(self, coach: CoachService) -> None:
        challenge = self.challenge
        if challenge is None:
            self.ui.error_signal.emit("Create a challenge first.")
            return
        code = self.config_store.load_scratch_code(challenge.language) or ""
        self.ui.notice_signal.emit("Code Review", coach.review_code(code, challenge))

    def _answer(self, coach: CoachService, question: str, mode: ChatMode) -> None:
        if self.chat is None:
            self.chat = ChatSession(coach)
        reply = self.chat.ask(question, mode=mode)
        body = reply.text or "(no answer)"
        links = grounding_links(reply.grounding_metadata)
        if links:
            body += "\n\nSources:\n" + "\n".join(f"• {title}: {uri}" for title, uri in links)
        self.ui.notice_signal.emit("Coach", body)

    def _answer_recorded_question(self, coach: CoachService) -> None:
        self.ui.info_signal.emit(f"🎙️ Listening for {VOICE_CLIP_S:g}s...")
        wav = record_clip(VOICE_CLIP_S)
        question = coach.transcribe_audio(base64.b64encode(wav).decode("ascii"), "audio/wav")
        if not question.strip():
            self.ui.error_signal.emit("Could not understand the recording. Please try again.")
            return
        self._answer(coach, question, ChatMode.DEFAULT)

    def _edit_image_file(self, coach: CoachService, path: Path, prompt: str) -> None:
        target = edit_image_file(coach, path, prompt)
        if target is None:
            self.ui.error_signal.emit("No image generated. Please try a different prompt.")
            return
        self.ui.info_signal.emit(f"Saved {target.name}")
        self.ui.open_signal.emit(str(target))

    # ------------------------------------------------------------------
    # Controller callbacks (loop thread -> emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_status_change(self, from_status: SessionStatus, to_status: SessionStatus) -> None:
        self.ui.status_signal.emit(from_status.value, to_status.value)

    def _on_error(self, error: SessionError) -> None:
        self.ui.error_signal.emit(error.message)

    def _on_capture_change(self, state: CaptureState) -> None:
        self.ui.capture_signal.emit(state.microphone, state.screen, state.screen_paused)

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_status_change_ui(self, from_status: str, to_status: str) -> None:
        self.tray.setToolTip(f"Code Coach — {_STATUS_TEXT.get(to_status, to_status)}")
        if to_status != SessionStatus.CONNECTED.value:
            self.overlay.stop_visualizer()
            self.share_action.setEnabled(False)
            self.pause_action.setEnabled(False)
        if to_status == SessionStatus.CONNECTING.value:
            self.tray.setIcon(_create_icon(ICON_CONNECTING))
            self.connect_action.setText("Disconnect")
            self.overlay.set_text("Connecting...")
        elif to_status == SessionStatus.CONNECTED.value:
            self.tray.setIcon(_create_icon(ICON_CONNECTED))
            self.share_action.setEnabled(True)
            self.overlay.set_text("🎙️ Coach is listening")
            self.overlay.start_visualizer(self.controller.frequency_data)
        elif to_status == SessionStatus.IDLE.value:
            self.tray.setIcon(_create_icon(ICON_IDLE))
            self.connect_action.setText("Connect")
            self.overlay.hide_with_delay(400)
        elif to_status == SessionStatus.ERROR.value:
            self.tray.setIcon(_create_icon(ICON_ERROR))
            self.connect_action.setText("Connect")

    def _on_error_ui(self, msg: str) -> None:
        self.overlay.show_error(msg)

    def _on_capture_change_ui(self, microphone: bool, screen: bool, screen_paused: bool) -> None:
        self.mute_action.setChecked(self.controller.muted)
        self.share_action.setText("Stop Sharing" if screen else "Share Screen")
        self.pause_action.setEnabled(screen)
        self.pause_action.setText("Resume Screen" if screen_paused else "Pause Screen")

    def _on_notice_ui(self, title: str, body: str) -> None:
        QMessageBox.information(None, title, body)

    def _on_info_ui(self, text: str) -> None:
        self.overlay.set_text(text)
        self.overlay.hide_with_delay(3000)

    def _on_open_ui(self, path: str) -> None:
        QDesktopServices.openUrl(QUrl.fromLocalFile(path))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        self.loop_thread.start()
        try:
            self.hotkey.start(
                {
                    "toggle_mute": lambda: self.loop_thread.call(self.controller.toggle_mute),
                    "toggle_screen_pause": lambda: self.loop_thread.call(
                        self.controller.toggle_screen_pause
                    ),
                }
            )
        except Exception as exc:
            self.overlay.show_error(f"Hotkeys disabled: {exc}")
        return self.app.exec()

    def quit(self) -> None:
        self.hotkey.stop()
        future = self.loop_thread.submit(self.controller.disconnect())
        try:
            future.result(timeout=3.0)
        except Exception:
            logger.warning("disconnect on quit did not finish cleanly", exc_info=True)
        self.loop_thread.stop()
        self.app.quit()


def configure_logging() -> None:
    level = os.getenv(LOG_LEVEL_ENV, "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> int:
    configure_logging()
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
