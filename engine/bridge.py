from __future__ import annotations

import asyncio
import enum
import os
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Protocol

from engine.errors import SynthesisError
from engine.output_resolver import find_audio_output
from engine.process_runner import OutputCallback, run_engine
from engine.request_builder import (
    GenerationRequest,
    build_engine_command,
    create_scratch_dir,
    validate_request,
)

if TYPE_CHECKING:
    from config import AppConfig

DEFAULT_SAVE_NAME = "supertonic_output.wav"
SOURCE_MISSING_ERROR = "Source file not found"

_DEBUG_BRIDGE = os.getenv("SUPERTONIC_DEBUG", "0").strip() == "1"


def _debug(msg: str) -> None:
    if _DEBUG_BRIDGE:
        print(f"[bridge] {msg}", flush=True)


class GenerationState(enum.Enum):
    IDLE = "idle"
    BUILDING = "building"
    SPAWNING = "spawning"
    RUNNING = "running"
    RESOLVING = "resolving"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


StateCallback = Callable[[GenerationState], None]


class SaveDialog(Protocol):
    async def ask_save_path(self, default_name: str) -> Path | None:
        """Ask the user for a destination; None when the dialog is dismissed."""


@dataclass
class GenerationResult:
    file_path: Path
    stdout: str
    stderr: str
    scratch_dir: Path

    def to_dict(self) -> dict[str, str]:
        return {"filePath": str(self.file_path), "stdout": self.stdout}


@dataclass
class SaveResult:
    success: bool
    file_path: Path | None = None
    error: str | None = None
    canceled: bool = False

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"success": self.success}
        if self.file_path is not None:
            payload["filePath"] = str(self.file_path)
        if self.error is not None:
            payload["error"] = self.error
        if self.canceled:
            payload["canceled"] = True
        return payload


class TransferBridge:
    """The two operations the window is allowed to call: generate and save."""

    def __init__(self, config: AppConfig, save_dialog: SaveDialog | None = None) -> None:
        self._config = config
        self._save_dialog = save_dialog
        self._tracked: set[Path] = set()
        self._lock = threading.Lock()

    def set_save_dialog(self, save_dialog: SaveDialog) -> None:
        self._save_dialog = save_dialog

    @property
    def tracked_scratch_dirs(self) -> list[Path]:
        with self._lock:
            return sorted(self._tracked)

    async def generate(
        self,
        request: GenerationRequest,
        on_state: StateCallback | None = None,
        on_output: OutputCallback | None = None,
    ) -> GenerationResult:
        def notify(state: GenerationState) -> None:
            _debug(f"state={state.value}")
            if on_state is not None:
                on_state(state)

        cfg = self._config
        scratch_dir: Path | None = None
        notify(GenerationState.BUILDING)
        try:
            validate_request(request)
            scratch_dir = create_scratch_dir(cfg.scratch_root)
            command = build_engine_command(
                cfg.binary_path, cfg.working_dir, request, scratch_dir
            )

            notify(GenerationState.SPAWNING)
            outcome = await run_engine(
                command.argv,
                cwd=command.cwd,
                timeout=cfg.timeout_seconds,
                on_started=lambda _pid: notify(GenerationState.RUNNING),
                on_output=on_output,
            )

            notify(GenerationState.RESOLVING)
            file_path = find_audio_output(scratch_dir, outcome.stdout, outcome.stderr)
        except asyncio.CancelledError:
            self._discard(scratch_dir)
            notify(GenerationState.CANCELED)
            raise
        except SynthesisError as exc:
            print(f"[generate] failed: {exc.message}", flush=True)
            if exc.stderr:
                print(f"[generate] stderr: {exc.stderr.strip()}", flush=True)
            self._discard(scratch_dir)
            notify(GenerationState.FAILED)
            raise
        except Exception as exc:
            print(f"[generate] failed: {exc!r}", flush=True)
            self._discard(scratch_dir)
            notify(GenerationState.FAILED)
            raise

        with self._lock:
            self._tracked.add(scratch_dir)
        notify(GenerationState.SUCCEEDED)
        return GenerationResult(
            file_path=file_path,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            scratch_dir=scratch_dir,
        )

    async def save(self, source_path: Path | str) -> SaveResult:
        source = Path(source_path)
        if not source.exists():
            return SaveResult(success=False, error=SOURCE_MISSING_ERROR)
        if self._save_dialog is None:
            raise RuntimeError("no save dialog configured")

        try:
            destination = await self._save_dialog.ask_save_path(DEFAULT_SAVE_NAME)
        except SynthesisError as exc:
            return SaveResult(success=False, error=exc.message)
        if destination is None:
            return SaveResult(success=False, canceled=True)

        destination = Path(destination)
        try:
            shutil.copyfile(source, destination)
        except OSError as exc:
            return SaveResult(success=False, error=exc.strerror or str(exc))
        _debug(f"saved {source} -> {destination}")
        return SaveResult(success=True, file_path=destination)

    def release(self, result: GenerationResult) -> None:
        with self._lock:
            if result.scratch_dir not in self._tracked:
                return
            self._tracked.discard(result.scratch_dir)
        self._discard(result.scratch_dir)

    def cleanup(self) -> None:
        with self._lock:
            tracked = list(self._tracked)
            self._tracked.clear()
        for scratch_dir in tracked:
            self._discard(scratch_dir)

    def _discard(self, scratch_dir: Path | None) -> None:
        if scratch_dir is None or self._config.keep_scratch:
            return
        shutil.rmtree(scratch_dir, ignore_errors=True)
        _debug(f"removed {scratch_dir}")
