"""Model provisioning: readiness checks, verified downloads and discards.

A model file only ever appears under its final name after its checksum has
been verified. Transfers stream into ``<name>.part`` on a background thread
and are renamed into place on success; every failure path removes the
staging file and resolves to a ``FetchOutcome`` instead of raising.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Optional

import requests

import integrity
from app_paths import APP_VERSION, get_logger, get_models_dir
from assets import ensure_bundled_assets
from errors import CHECKSUM_MISMATCH, DOWNLOAD_CANCELLED, IO_ERROR, NETWORK_ERROR
from interfaces import ConfigStore
from models import AssetState, FetchOutcome, FetchStatus, ModelAsset

logger = get_logger(__name__)

USER_AGENT = f"whisper-dictate/{APP_VERSION}"
CHUNK_SIZE = 1 << 18  # 256 KiB
REQUEST_TIMEOUT = (10, 90)
PROGRESS_INTERVAL_S = 0.25
MODEL_PREFERENCE_KEYS = ("model_name", "recognition_service_model_name")

ProgressCallback = Callable[[int, int], None]
DoneCallback = Callable[[FetchOutcome], None]
ChecksumFn = Callable[[Path, str], str]


class _TransferCancelled(Exception):
    pass


def _same_source(a: ModelAsset, b: ModelAsset) -> bool:
    return (
        a.local_path == b.local_path
        and a.url == b.url
        and a.expected_checksum.lower() == b.expected_checksum.lower()
        and a.checksum_algorithm == b.checksum_algorithm
        and a.expected_size_bytes == b.expected_size_bytes
    )


class DownloadTask:
    """Handle for one in-flight transfer; shared by every caller of ``fetch``."""

    def __init__(self, asset: ModelAsset) -> None:
        self.asset = asset
        self.total: Optional[int] = None
        self.downloaded = 0
        self.start_ts: Optional[float] = None
        self.outcome: Optional[FetchOutcome] = None
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._cancelled = threading.Event()
        self._progress_listeners: list[ProgressCallback] = []
        self._done_listeners: list[DoneCallback] = []
        self._last_report = 0.0

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def speed_bps(self) -> Optional[float]:
        if self.start_ts is None:
            return None
        dt = max(time.time() - self.start_ts, 1e-6)
        return self.downloaded / dt

    @property
    def eta_s(self) -> Optional[float]:
        if self.total is None or self.speed_bps is None or self.speed_bps <= 0:
            return None
        remain = max(self.total - self.downloaded, 0)
        return remain / self.speed_bps

    def add_progress_listener(self, listener: ProgressCallback) -> None:
        with self._lock:
            self._progress_listeners.append(listener)

    def add_done_listener(self, listener: DoneCallback) -> None:
        with self._lock:
            if self.outcome is None:
                self._done_listeners.append(listener)
                return
            outcome = self.outcome
        if outcome is not None:
            self._safe_call(listener, outcome)

    def cancel(self) -> None:
        self._cancelled.set()

    def wait(self, timeout: Optional[float] = None) -> Optional[FetchOutcome]:
        if not self._done.wait(timeout):
            return None
        return self.outcome

    def _report_progress(self, force: bool = False, interval_s: float = PROGRESS_INTERVAL_S) -> None:
        now = time.monotonic()
        if not force and now - self._last_report < interval_s:
            return
        self._last_report = now
        with self._lock:
            listeners = list(self._progress_listeners)
        for listener in listeners:
            self._safe_call(listener, self.downloaded, self.total or 0)

    def _finish(self, outcome: FetchOutcome) -> None:
        with self._lock:
            self.outcome = outcome
            listeners = list(self._done_listeners)
            self._done_listeners.clear()
        for listener in listeners:
            self._safe_call(listener, outcome)
        self._done.set()

    @staticmethod
    def _safe_call(listener: Callable[..., None], *args: object) -> None:
        try:
            listener(*args)
        except Exception:
            logger.exception("Download listener raised")


class ModelProvisioningManager:
    def __init__(
        self,
        assets: Iterable[ModelAsset] = (),
        *,
        bundle_dir: Optional[Path] = None,
        models_dir: Optional[Path] = None,
        config_store: Optional[ConfigStore] = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
        checksum_fn: ChecksumFn = integrity.checksum,
        chunk_size: int = CHUNK_SIZE,
        progress_interval_s: float = PROGRESS_INTERVAL_S,
        request_timeout: tuple[float, float] = REQUEST_TIMEOUT,
    ) -> None:
        self._assets = {asset.logical_name: asset for asset in assets}
        self._bundle_dir = Path(bundle_dir) if bundle_dir is not None else None
        self._models_dir = Path(models_dir) if models_dir is not None else None
        self._config_store = config_store
        self._session_factory = session_factory
        self._checksum = checksum_fn
        self._chunk_size = chunk_size
        self._progress_interval_s = progress_interval_s
        self._request_timeout = request_timeout

        self._lock = threading.RLock()
        self._bundle_lock = threading.Lock()
        self._bundled_done = False
        self._inflight: dict[str, DownloadTask] = {}
        self._verified: dict[str, tuple[str, int, int]] = {}

    def get_asset(self, logical_name: str) -> ModelAsset:
        try:
            return self._assets[logical_name]
        except KeyError:
            raise KeyError(f"Unknown model asset: {logical_name}") from None

    def register(self, asset: ModelAsset) -> ModelAsset:
        """Add ``asset``, or replace a registered entry whose source changed.

        While the registered entry is downloading it is kept as is.
        """
        with self._lock:
            current = self._assets.get(asset.logical_name)
            if current is None:
                self._assets[asset.logical_name] = asset
                return asset
            if _same_source(current, asset) or asset.logical_name in self._inflight:
                return current
            logger.info("Model %s changed in settings, replacing registered entry", asset.logical_name)
            self._assets[asset.logical_name] = asset
            self._verified.pop(asset.logical_name, None)
            return asset

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_ready(self, asset: ModelAsset) -> bool:
        """True iff the model file exists and its checksum matches.

        A file that fails verification is deleted and the asset is marked
        ``VERIFY_FAILED``. Read errors count as "not ready".
        """
        self._ensure_bundled_once()
        return self._verify(asset)

    def needs_update(self, asset: ModelAsset) -> bool:
        return not asset.local_path.exists()

    def in_flight(self, asset: ModelAsset) -> Optional[DownloadTask]:
        with self._lock:
            return self._inflight.get(asset.logical_name)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def fetch(self, asset: ModelAsset, on_progress: Optional[ProgressCallback] = None) -> DownloadTask:
        """Start (or join) the background transfer for ``asset``."""
        with self._lock:
            task = self._inflight.get(asset.logical_name)
            if task is not None and not task.done:
                logger.info("Joining in-flight download of %s", asset.logical_name)
                if on_progress is not None:
                    task.add_progress_listener(on_progress)
                return task
            task = DownloadTask(asset)
            if on_progress is not None:
                task.add_progress_listener(on_progress)
            self._inflight[asset.logical_name] = task

        thread = threading.Thread(
            target=self._download_worker,
            args=(task,),
            name=f"model-download-{asset.logical_name}",
            daemon=True,
        )
        thread.start()
        return task

    def discard(self, asset: ModelAsset) -> None:
        """Delete the local model and forget any preference pointing at it."""
        task = self.in_flight(asset)
        if task is not None and not task.done:
            logger.info("Cancelling in-flight download of %s before discard", asset.logical_name)
            task.cancel()
            task.wait()

        with self._lock:
            self._verified.pop(asset.logical_name, None)
            asset.local_path.unlink(missing_ok=True)
            asset.staging_path.unlink(missing_ok=True)
            asset.state = AssetState.ABSENT

        store = self._config_store
        if store is not None:
            stale = [key for key in MODEL_PREFERENCE_KEYS if store.get(key) == asset.logical_name]
            if stale:
                store.remove(*stale)
        logger.info("Discarded model %s", asset.logical_name)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _ensure_bundled_once(self) -> None:
        if self._bundle_dir is None or self._bundled_done:
            return
        with self._bundle_lock:
            if self._bundled_done:
                return
            dest = self._models_dir or get_models_dir()
            result = ensure_bundled_assets(self._bundle_dir, dest)
            self._bundled_done = result.ok

    def _set_state(self, asset: ModelAsset, state: AssetState) -> None:
        with self._lock:
            if asset.state != state:
                logger.debug("Asset %s: %s -> %s", asset.logical_name, asset.state.value, state.value)
            asset.state = state

    def _verify(self, asset: ModelAsset) -> bool:
        path = asset.local_path
        try:
            stat = path.stat()
        except FileNotFoundError:
            with self._lock:
                self._verified.pop(asset.logical_name, None)
                if asset.state == AssetState.READY:
                    asset.state = AssetState.ABSENT
            return False
        except OSError:
            logger.warning("Cannot stat model file %s", path, exc_info=True)
            return False

        fingerprint = (str(path), stat.st_size, stat.st_mtime_ns)
        with self._lock:
            if self._verified.get(asset.logical_name) == fingerprint:
                asset.state = AssetState.READY
                return True

        try:
            actual = self._checksum(path, asset.checksum_algorithm)
        except FileNotFoundError:
            logger.warning("Model file %s disappeared while verifying", path)
            return False
        except OSError:
            logger.warning("Failed to read model file %s while verifying", path, exc_info=True)
            return False

        expected = asset.expected_checksum.strip().lower()
        with self._lock:
            if actual.lower() == expected:
                self._verified[asset.logical_name] = fingerprint
                asset.state = AssetState.READY
                return True
            logger.warning(
                "Checksum mismatch during check for %s: expected %s, got %s; removing file",
                asset.logical_name,
                expected,
                actual,
            )
            self._verified.pop(asset.logical_name, None)
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.exception("Failed to remove corrupt model file %s", path)
            asset.state = AssetState.VERIFY_FAILED
        return False

    def _download_worker(self, task: DownloadTask) -> None:
        asset = task.asset
        try:
            outcome = self._run_transfer(task)
        except Exception as exc:
            logger.exception("Model download of %s failed unexpectedly", asset.logical_name)
            outcome = self._fail(task, IO_ERROR, str(exc))

        with self._lock:
            if self._inflight.get(asset.logical_name) is task:
                self._inflight.pop(asset.logical_name)
        logger.info(
            "Download of %s finished: %s (%d bytes)",
            asset.logical_name,
            outcome.status.value,
            outcome.bytes_written,
        )
        task._finish(outcome)

    def _run_transfer(self, task: DownloadTask) -> FetchOutcome:
        asset = task.asset
        if self._verify(asset):
            size = asset.local_path.stat().st_size
            task.downloaded = size
            task.total = size
            task._report_progress(force=True)
            return FetchOutcome(
                status=FetchStatus.SUCCESS,
                logical_name=asset.logical_name,
                bytes_written=0,
                checksum=asset.expected_checksum.lower(),
            )

        self._set_state(asset, AssetState.DOWNLOADING)
        staging = asset.staging_path
        staging.parent.mkdir(parents=True, exist_ok=True)
        staging.unlink(missing_ok=True)
        logger.info("Downloading %s from %s", asset.logical_name, asset.url)

        task.start_ts = time.time()
        session = self._session_factory()
        session.headers.setdefault("User-Agent", USER_AGENT)
        try:
            with session.get(asset.url, stream=True, timeout=self._request_timeout) as response:
                response.raise_for_status()
                content_length = response.headers.get("Content-Length")
                if content_length and str(content_length).isdigit():
                    task.total = int(content_length)
                else:
                    task.total = asset.expected_size_bytes or None
                with open(staging, "wb") as handle:
                    for chunk in response.iter_content(chunk_size=self._chunk_size):
                        if task.cancelled:
                            raise _TransferCancelled()
                        if not chunk:
                            continue
                        handle.write(chunk)
                        task.downloaded += len(chunk)
                        task._report_progress(interval_s=self._progress_interval_s)
                    handle.flush()
                    os.fsync(handle.fileno())
        except _TransferCancelled:
            return self._fail(task, DOWNLOAD_CANCELLED, "download cancelled")
        except requests.RequestException as exc:
            logger.warning("Network failure downloading %s: %s", asset.logical_name, exc)
            return self._fail(task, NETWORK_ERROR, str(exc))
        except OSError as exc:
            logger.warning("Storage failure downloading %s: %s", asset.logical_name, exc)
            return self._fail(task, IO_ERROR, str(exc))
        finally:
            session.close()

        task._report_progress(force=True)

        try:
            actual = self._checksum(staging, asset.checksum_algorithm).lower()
        except OSError as exc:
            return self._fail(task, IO_ERROR, f"verification read failed: {exc}")

        expected = asset.expected_checksum.strip().lower()
        logger.info("Checksum check for %s: expected %s, got %s", asset.logical_name, expected, actual)
        if actual != expected:
            staging.unlink(missing_ok=True)
            self._set_state(asset, AssetState.ABSENT)
            return FetchOutcome(
                status=FetchStatus.CHECKSUM_MISMATCH,
                logical_name=asset.logical_name,
                bytes_written=task.downloaded,
                checksum=actual,
                code=CHECKSUM_MISMATCH,
                message=f"checksum mismatch: got {actual}",
            )

        try:
            os.replace(staging, asset.local_path)
            stat = asset.local_path.stat()
        except OSError as exc:
            return self._fail(task, IO_ERROR, f"finalize failed: {exc}")

        with self._lock:
            self._verified[asset.logical_name] = (str(asset.local_path), stat.st_size, stat.st_mtime_ns)
            asset.state = AssetState.READY
        return FetchOutcome(
            status=FetchStatus.SUCCESS,
            logical_name=asset.logical_name,
            bytes_written=task.downloaded,
            checksum=actual,
        )

    def _fail(self, task: DownloadTask, code: str, message: str) -> FetchOutcome:
        asset = task.asset
        try:
            asset.staging_path.unlink(missing_ok=True)
        except OSError:
            logger.exception("Failed to remove partial download %s", asset.staging_path)
        self._set_state(asset, AssetState.ABSENT)
        return FetchOutcome(
            status=FetchStatus.TRANSFER_FAILED,
            logical_name=asset.logical_name,
            bytes_written=task.downloaded,
            code=code,
            message=message,
        )
