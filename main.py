"""Application entrypoint."""

from __future__ import annotations

import sys
import threading
from typing import Optional

from app_paths import configure_logging, get_bundle_dir, get_logger, get_models_dir
from auto_paste import ClipboardPasteService, ResultDelivery
from capture import SoundDeviceCapture
from catalog import build_asset, load_catalog
from config import SUPPORTED_LANGUAGES, JsonConfigStore, build_session_config
from errors import INFERENCE_FAILED, DictationError, SessionAlreadyActiveError, user_message
from hotkey import DictationHotkey
from inference import WhisperCppEngine
from models import (
    TERMINAL_EVENT_KINDS,
    ActionKind,
    FetchOutcome,
    PasteResult,
    ScriptVariant,
    SessionEvent,
    SessionEventKind,
    SessionHandle,
    SessionState,
)
from overlay import OverlayWindow
from provisioning import DownloadTask, ModelProvisioningManager
from session_orchestrator import TranscriptionSessionOrchestrator

try:
    from PySide6.QtCore import QObject, QSize, QTimer, Signal
    from PySide6.QtGui import QAction, QBrush, QColor, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import QApplication, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = get_logger(__name__)

AUTO_RESTART_DELAY_MS = 500


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
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
ICON_RECORDING = "#FF4444"
ICON_BUSY = "#4488FF"
ICON_ERROR = "#FF8800"


class UIBridge(QObject):
    # object, not int: model sizes overflow a C int.
    session_signal = Signal(object)
    progress_signal = Signal(object, object)
    download_done_signal = Signal(object)
    error_signal = Signal(str)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store = JsonConfigStore()
        self.overlay = OverlayWindow()
        self.ui = UIBridge()
        self.ui.session_signal.connect(self._on_session_event_ui)
        self.ui.progress_signal.connect(self._on_progress_ui)
        self.ui.download_done_signal.connect(self._on_download_done_ui)
        self.ui.error_signal.connect(self._on_error_ui)

        models_dir = get_models_dir()
        catalog = load_catalog(self.config_store.get_model_overrides())
        self.provisioning = ModelProvisioningManager(
            [build_asset(spec, models_dir) for spec in catalog.values()],
            bundle_dir=get_bundle_dir(),
            models_dir=models_dir,
            config_store=self.config_store,
        )
        self.orchestrator = TranscriptionSessionOrchestrator(
            capture=SoundDeviceCapture(),
            inference=WhisperCppEngine(),
            readiness=self.provisioning,
        )
        self.orchestrator.subscribe(self.ui.session_signal.emit)
        self._delivery = ResultDelivery(ClipboardPasteService(), on_delivered=self._on_delivered)

        self._handle_lock = threading.Lock()
        self._handle: Optional[SessionHandle] = None
        self._end_requested = False
        self._quitting = False
        self._download_task: Optional[DownloadTask] = None

        self.hotkey = DictationHotkey(hotkey_name=self.config_store.get_hotkey())

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self.tray.setToolTip("Dictation — Ready")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        download_action = QAction("Download Model", menu)
        download_action.triggered.connect(self._download_model)
        menu.addAction(download_action)

        delete_action = QAction("Delete Model", menu)
        delete_action.triggered.connect(self._delete_model)
        menu.addAction(delete_action)

        menu.addSeparator()
        language_action = QAction("Set Language", menu)
        language_action.triggered.connect(self._set_language)
        menu.addAction(language_action)

        script_action = QAction("Chinese Script", menu)
        script_action.triggered.connect(self._set_script_variant)
        menu.addAction(script_action)

        self._translate_action = QAction("Translate to English", menu)
        self._translate_action.setCheckable(True)
        self._translate_action.setChecked(self.config_store.get_action() == ActionKind.TRANSLATE)
        self._translate_action.toggled.connect(self._set_translate)
        menu.addAction(self._translate_action)

        self._auto_action = QAction("Auto Mode", menu)
        self._auto_action.setCheckable(True)
        self._auto_action.setChecked(self.config_store.get_auto_mode())
        self._auto_action.toggled.connect(lambda on: self.config_store.set("auto_mode", bool(on)))
        menu.addAction(self._auto_action)

        hotkey_action = QAction("Set Hotkey", menu)
        hotkey_action.triggered.connect(self._set_hotkey)
        menu.addAction(hotkey_action)

        menu.addSeparator()
        cancel_action = QAction("Cancel Dictation", menu)
        cancel_action.triggered.connect(self._cancel_dictation)
        menu.addAction(cancel_action)

        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _current_asset(self):  # noqa: ANN202
        return build_session_config(self.config_store, self.provisioning).asset

    def _download_model(self) -> None:
        asset = self._current_asset()
        task = self.provisioning.fetch(asset, on_progress=self.ui.progress_signal.emit)
        self._download_task = task
        task.add_done_listener(self.ui.download_done_signal.emit)
        self.overlay.show_progress("Downloading model...", task.downloaded, task.total or 0)

    def _delete_model(self) -> None:
        asset = self._current_asset()
        answer = QMessageBox.question(None, "Delete Model", f"Delete {asset.local_path.name}?")
        if answer != QMessageBox.Yes:
            return
        self.provisioning.discard(asset)
        self.overlay.show_status("Model deleted")
        self.overlay.hide_with_delay(1500)

    def _set_language(self) -> None:
        choices = ["auto"] + sorted(SUPPORTED_LANGUAGES)
        current = self.config_store.get_language()
        value, ok = QInputDialog.getItem(
            None, "Language", "Spoken language", choices, choices.index(current), False
        )
        if ok:
            self.config_store.set("language", value)

    def _set_script_variant(self) -> None:
        choices = [variant.value for variant in ScriptVariant]
        current = self.config_store.get_script_variant().value
        value, ok = QInputDialog.getItem(
            None, "Chinese Script", "Convert Chinese results to", choices, choices.index(current), False
        )
        if ok:
            self.config_store.set("script_variant", value)

    def _set_translate(self, enabled: bool) -> None:
        action = ActionKind.TRANSLATE if enabled else ActionKind.TRANSCRIBE
        self.config_store.set("action", action.value)

    def _set_hotkey(self) -> None:
        value, ok = QInputDialog.getText(None, "Hotkey", "Use pynput key format, e.g. Key.alt_l")
        if not ok or not value:
            return
        self.config_store.set_hotkey(value)
        QMessageBox.information(None, "Saved", "Hotkey saved. Restart app to apply.")

    # ------------------------------------------------------------------
    # Dictation control (hotkey thread)
    # ------------------------------------------------------------------

    def _begin_dictation(self) -> None:
        with self._handle_lock:
            self._end_requested = False
        # Readiness may hash the whole model, keep it off the listener thread.
        threading.Thread(target=self._start_session, name="dictation-start", daemon=True).start()

    def _start_session(self) -> None:
        try:
            config = build_session_config(self.config_store, self.provisioning)
            handle = self.orchestrator.start_session(config)
        except SessionAlreadyActiveError:
            logger.info("Dictation already active, ignoring start request")
            return
        except DictationError as exc:
            self.ui.error_signal.emit(exc.message)
            return
        with self._handle_lock:
            self._handle = handle
            stop_now = self._end_requested
        if stop_now:
            self.orchestrator.stop_recording(handle)

    def _end_dictation(self) -> None:
        with self._handle_lock:
            self._end_requested = True
            handle = self._handle
        if handle is not None:
            self.orchestrator.stop_recording(handle)

    def _cancel_dictation(self) -> None:
        with self._handle_lock:
            handle = self._handle
        if handle is not None:
            self.orchestrator.cancel_session(handle)

    def _on_delivered(self, result: PasteResult) -> None:
        if not result.success and result.reason != "empty text":
            self.ui.error_signal.emit(result.reason)

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_session_event_ui(self, event: SessionEvent) -> None:
        kind = event.kind
        if kind == SessionEventKind.STATE.value:
            self._on_state_change_ui(event.to_state)
        elif kind == SessionEventKind.PARTIAL.value:
            self.overlay.show_status(event.text)
        elif kind == SessionEventKind.RESULT.value:
            threading.Thread(target=self._delivery, args=(event,), name="paste", daemon=True).start()
        elif kind == SessionEventKind.ERROR.value:
            self.overlay.show_error(event.message or user_message(event.code))
            if event.code == INFERENCE_FAILED:
                self._auto_action.setChecked(False)

        if kind in {k.value for k in TERMINAL_EVENT_KINDS}:
            self.hotkey.reset()
            if kind != SessionEventKind.CANCELLED.value and self._auto_action.isChecked() and not self._quitting:
                QTimer.singleShot(AUTO_RESTART_DELAY_MS, self._begin_dictation)

    def _on_state_change_ui(self, to_state: Optional[SessionState]) -> None:
        if to_state == SessionState.RECORDING:
            self.tray.setIcon(_create_icon(ICON_RECORDING))
            self.tray.setToolTip("Dictation — Recording...")
            self.overlay.show_status("🎙️ Listening...")
        elif to_state == SessionState.TRANSCRIBING:
            self.tray.setIcon(_create_icon(ICON_BUSY))
            self.tray.setToolTip("Dictation — Transcribing...")
            self.overlay.show_status("Transcribing...")
        elif to_state in (SessionState.RECORDING_FAILED, SessionState.INFERENCE_FAILED):
            self.tray.setIcon(_create_icon(ICON_ERROR))
        elif to_state == SessionState.IDLE:
            self.tray.setIcon(_create_icon(ICON_IDLE))
            self.tray.setToolTip("Dictation — Ready")
            self.overlay.hide_with_delay(400)

    def _on_progress_ui(self, downloaded: int, total: int) -> None:
        task = self._download_task
        speed = task.speed_bps if task is not None else None
        self.overlay.show_progress("Downloading model...", downloaded, total, speed)

    def _on_download_done_ui(self, outcome: FetchOutcome) -> None:
        if outcome.success:
            self.overlay.show_status("Model ready")
            self.overlay.hide_with_delay(1500)
        else:
            self.overlay.show_error(user_message(outcome.code))

    def _on_error_ui(self, msg: str) -> None:
        self.overlay.show_error(msg)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        try:
            self.hotkey.start(on_begin=self._begin_dictation, on_end=self._end_dictation)
        except Exception as exc:
            self.overlay.show_error(f"Hotkey disabled: {exc}")
        return self.app.exec()

    def quit(self) -> None:
        self._quitting = True
        self.hotkey.stop()
        self.orchestrator.close()
        self.app.quit()


def main() -> int:
    configure_logging()
    logger.info("Starting dictation app")
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
