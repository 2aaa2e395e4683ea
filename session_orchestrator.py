"""State-machine based transcription session orchestration.

All session state changes happen under one re-entrant lock. Capture and
inference handles report back through per-session listener closures, so an
event that arrives after its session has ended (or from an older session)
is recognised and dropped. Every session that ``start_session`` returns a
handle for ends with exactly one terminal event: RESULT, CANCELLED or ERROR.
"""

from __future__ import annotations

import itertools
import threading
import time
from typing import Callable, Optional

from app_paths import get_logger
from errors import INFERENCE_FAILED, RECORDING_FAILED, ModelNotReadyError, SessionAlreadyActiveError
from interfaces import AudioCapture, InferenceEngine, ReadinessGate, TimerFactory, TimerHandle
from models import (
    ACTIVE_STATES,
    CaptureEvent,
    CaptureKind,
    InferenceEvent,
    InferenceKind,
    PostProcessOptions,
    SessionConfig,
    SessionEvent,
    SessionEventKind,
    SessionHandle,
    SessionState,
    TranscriptionSession,
)
from postprocess import post_process

logger = get_logger(__name__)

SessionListener = Callable[[SessionEvent], None]
PostProcessor = Callable[[str, Optional[str], PostProcessOptions], str]


def _daemon_timer(interval: float, function: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(interval, function)
    timer.daemon = True
    return timer


class TranscriptionSessionOrchestrator:
    def __init__(
        self,
        capture: AudioCapture,
        inference: InferenceEngine,
        readiness: ReadinessGate,
        timer_factory: TimerFactory = _daemon_timer,
        post_processor: PostProcessor = post_process,
        on_event: Optional[SessionListener] = None,
    ) -> None:
        self._capture = capture
        self._inference = inference
        self._readiness = readiness
        self._timer_factory = timer_factory
        self._post_processor = post_processor

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._ids = itertools.count(1)
        self._session: Optional[TranscriptionSession] = None
        self._config: Optional[SessionConfig] = None
        self._timer: Optional[TimerHandle] = None
        self._configured: Optional[tuple] = None
        self._listeners: list[SessionListener] = []
        if on_event is not None:
            self._listeners.append(on_event)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[TranscriptionSession]:
        """The current session, or the most recently finished one."""
        return self._session

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Host-facing operations
    # ------------------------------------------------------------------

    def start_session(self, config: SessionConfig) -> SessionHandle:
        """Begin recording.

        Raises ``SessionAlreadyActiveError`` while another session is recording
        or transcribing, and ``ModelNotReadyError`` if the model fails its
        readiness check. Neither creates a session nor emits events.
        """
        self._reject_if_active()
        if not self._readiness.is_ready(config.asset):
            raise ModelNotReadyError(config.asset.logical_name, config.asset.state)

        with self._lock:
            self._reject_if_active()
            session_id = next(self._ids)
            session = TranscriptionSession(
                session_id=session_id,
                language_token=config.language_token,
                action_kind=config.action_kind,
                deadline=time.time() + config.recording_budget_s,
            )
            self._session = session
            self._config = config
            logger.info(
                "Session %d starting (language=%s, action=%s)",
                session_id,
                config.language_token,
                config.action_kind.value,
            )
            self._transition(SessionState.RECORDING)

            self._capture.set_listener(lambda event: self._handle_capture_event(session_id, event))
            self._inference.set_listener(lambda event: self._handle_inference_event(session_id, event))

            try:
                self._prepare_inference(config)
            except Exception as exc:
                logger.exception("Inference setup failed for session %d", session_id)
                self._fail(SessionState.INFERENCE_FAILED, INFERENCE_FAILED, f"setup failed: {exc}")
                return SessionHandle(session_id)

            self._timer = self._timer_factory(
                config.recording_budget_s, lambda: self._on_deadline(session_id)
            )
            self._timer.start()
            try:
                self._capture.start()
            except Exception as exc:
                logger.exception("Capture start failed for session %d", session_id)
                if self._is_current(session_id) and self._state == SessionState.RECORDING:
                    self._fail(SessionState.RECORDING_FAILED, RECORDING_FAILED, f"start failed: {exc}")
            return SessionHandle(session_id)

    def stop_recording(self, handle: SessionHandle) -> None:
        """Stop capture early and proceed to transcription."""
        with self._lock:
            if not self._is_current(handle.session_id) or self._state != SessionState.RECORDING:
                return
            self._request_capture_stop("manual stop")

    def cancel_session(self, handle: SessionHandle) -> None:
        """Abandon the session without a result. No-op once it has ended."""
        with self._lock:
            if not self._is_current(handle.session_id) or self._state not in ACTIVE_STATES:
                return
            previous = self._state
            self._cancel_timer()
            self._transition(SessionState.CANCELLED)
            self._emit(SessionEventKind.CANCELLED)
            logger.info("Session %d cancelled during %s", handle.session_id, previous.value)
            if previous == SessionState.RECORDING or self._capture_in_progress():
                self._safe_stop_capture()
            if previous == SessionState.TRANSCRIBING:
                self._safe_stop_inference()
            self._transition(SessionState.IDLE)

    def close(self) -> None:
        """Cancel any active session and release the inference model."""
        with self._lock:
            session = self._session
            if session is not None:
                self.cancel_session(SessionHandle(session.session_id))
            if self._capture_in_progress():
                self._safe_stop_capture()
            try:
                self._inference.unload()
            except Exception:
                logger.exception("Failed to unload inference model")
            self._configured = None

    # ------------------------------------------------------------------
    # Event sinks
    # ------------------------------------------------------------------

    def _handle_capture_event(self, session_id: int, event: CaptureEvent) -> None:
        with self._lock:
            if not self._is_current(session_id) or self._state != SessionState.RECORDING:
                logger.debug("Dropping late capture event %s for session %d", event.kind, session_id)
                return
            kind = event.kind
            if kind == CaptureKind.STARTED.value:
                self._emit(SessionEventKind.RECORDING_STARTED)
                return
            if kind == CaptureKind.ERROR.value:
                self._cancel_timer()
                self._fail(SessionState.RECORDING_FAILED, RECORDING_FAILED, event.reason or "no input")
                return
            if kind == CaptureKind.STOPPED.value:
                self._cancel_timer()
                audio = event.buffer
                if audio is None or not audio.pcm16_bytes:
                    self._fail(SessionState.RECORDING_FAILED, RECORDING_FAILED, "no audio captured")
                    return
                self._transition(SessionState.TRANSCRIBING)
                try:
                    self._inference.start(audio)
                except Exception as exc:
                    logger.exception("Inference start failed for session %d", session_id)
                    self._fail(SessionState.INFERENCE_FAILED, INFERENCE_FAILED, str(exc))

    def _handle_inference_event(self, session_id: int, event: InferenceEvent) -> None:
        with self._lock:
            if not self._is_current(session_id) or self._state != SessionState.TRANSCRIBING:
                logger.debug("Dropping late inference event %s for session %d", event.kind, session_id)
                return
            kind = event.kind
            if kind == InferenceKind.PARTIAL.value:
                self._emit(SessionEventKind.PARTIAL, text=event.text)
                return
            if kind == InferenceKind.ERROR.value:
                self._fail(SessionState.INFERENCE_FAILED, INFERENCE_FAILED, event.message)
                return
            if kind == InferenceKind.FINAL.value:
                self._complete(event)

    def _on_deadline(self, session_id: int) -> None:
        with self._lock:
            if not self._is_current(session_id) or self._state != SessionState.RECORDING:
                return
            self._timer = None
            self._request_capture_stop("recording budget elapsed")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _complete(self, event: InferenceEvent) -> None:
        session = self._session
        config = self._config
        if session is None or config is None:
            logger.warning("Final result arrived with no session configured, dropping it")
            return
        detected = event.language
        if not detected and session.language_token != "auto":
            detected = session.language_token
        try:
            final_text = self._post_processor(event.text, detected, config.options)
        except Exception as exc:
            logger.exception("Post-processing failed for session %d", session.session_id)
            self._fail(SessionState.INFERENCE_FAILED, INFERENCE_FAILED, f"post-processing failed: {exc}")
            return
        session.raw_result = event.text
        session.detected_language = detected
        session.post_processed_result = final_text
        self._transition(SessionState.COMPLETED)
        self._emit(SessionEventKind.RESULT, text=final_text, language=detected)
        logger.info("Session %d completed (%d chars, language=%s)", session.session_id, len(final_text), detected)
        self._transition(SessionState.IDLE)

    def _fail(self, failed_state: SessionState, code: str, message: str) -> None:
        previous = self._state
        self._cancel_timer()
        self._transition(failed_state)
        self._emit(SessionEventKind.ERROR, code=code, message=message)
        logger.warning("Session failed in %s: %s %s", previous.value, code, message)
        if self._capture_in_progress():
            self._safe_stop_capture()
        if previous == SessionState.TRANSCRIBING:
            self._safe_stop_inference()
        self._transition(SessionState.IDLE)

    def _request_capture_stop(self, reason: str) -> None:
        session = self._session
        if session is None or session.stop_requested:
            return
        session.stop_requested = True
        self._cancel_timer()
        logger.info("Session %d: stopping capture (%s)", session.session_id, reason)
        if not self._safe_stop_capture():
            if self._state == SessionState.RECORDING:
                self._fail(SessionState.RECORDING_FAILED, RECORDING_FAILED, "capture stop failed")

    def _prepare_inference(self, config: SessionConfig) -> None:
        key = (config.asset.local_path, config.vocab_path, config.is_multilingual)
        if self._configured != key:
            self._inference.configure(*key)
            self._configured = key
        self._inference.set_language(config.language_token)
        self._inference.set_action(config.action_kind)

    def _reject_if_active(self) -> None:
        with self._lock:
            if self._state in ACTIVE_STATES:
                active = self._session.session_id if self._session else None
                raise SessionAlreadyActiveError(active)

    def _is_current(self, session_id: int) -> bool:
        return self._session is not None and self._session.session_id == session_id

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None:
            timer.cancel()

    def _capture_in_progress(self) -> bool:
        try:
            return bool(self._capture.is_in_progress())
        except Exception:
            logger.exception("Capture progress probe failed")
            return False

    def _safe_stop_capture(self) -> bool:
        try:
            self._capture.stop()
            return True
        except Exception:
            logger.exception("Failed to stop audio capture")
            return False

    def _safe_stop_inference(self) -> None:
        try:
            self._inference.stop()
        except Exception:
            logger.exception("Failed to stop inference")

    def _emit(self, kind: SessionEventKind, **fields: str) -> None:
        session_id = self._session.session_id if self._session else 0
        self._publish(SessionEvent(kind=kind.value, session_id=session_id, **fields))

    def _publish(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener raised on %s", event.kind)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        session = self._session
        if session is not None and to_state != SessionState.IDLE:
            session.state = to_state
        logger.debug("Session state %s -> %s", from_state.value, to_state.value)
        self._publish(
            SessionEvent(
                kind=SessionEventKind.STATE.value,
                session_id=session.session_id if session else 0,
                from_state=from_state,
                to_state=to_state,
            )
        )
