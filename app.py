from __future__ import annotations

import concurrent.futures
import threading
from dataclasses import dataclass
from pathlib import Path

import gi

gi.require_version("Gtk", "4.0")
from gi.repository import GLib, Gtk

from audio.playback import audio_duration_seconds, play_audio_file
from config import AppConfig, load_config
from engine.bridge import GenerationResult, GenerationState, SaveResult, TransferBridge
from engine.errors import SynthesisError
from engine.loop_thread import EventLoopThread
from engine.request_builder import GenerationRequest
from ui.main_window import SynthWindow
from ui.save_dialog import GtkSaveDialog

_STATE_LABELS = {
    GenerationState.BUILDING: "Preparing request...",
    GenerationState.SPAWNING: "Starting engine...",
    GenerationState.RUNNING: "Synthesizing...",
    GenerationState.RESOLVING: "Collecting output...",
    GenerationState.FAILED: "Generation failed",
    GenerationState.CANCELED: "Canceled",
}


@dataclass
class AppContext:
    config: AppConfig
    bridge: TransferBridge
    loop: EventLoopThread
    save_dialog: GtkSaveDialog
    window: SynthWindow | None = None
    result: GenerationResult | None = None
    pending: concurrent.futures.Future | None = None


class SupertonicApp(Gtk.Application):
    def __init__(self) -> None:
        super().__init__(application_id="com.supertonic.desktop")
        self._ctx: AppContext | None = None
        self._last_status = ""

    def do_activate(self):
        if self._ctx is not None and self._ctx.window is not None:
            self._ctx.window.present()
            return

        try:
            cfg = load_config()
        except ValueError as exc:
            print(f"[status] Config error: {exc}", flush=True)
            self.quit()
            return

        save_dialog = GtkSaveDialog()
        ctx = AppContext(
            config=cfg,
            bridge=TransferBridge(cfg, save_dialog),
            loop=EventLoopThread(),
            save_dialog=save_dialog,
        )
        ctx.loop.start()

        ctx.window = SynthWindow(
            self,
            on_generate=self._on_generate,
            on_cancel=self._on_cancel,
            on_play=self._on_play,
            on_save=self._on_save,
            default_voice=cfg.default_voice,
            default_lang=cfg.default_lang,
            default_speed=cfg.default_speed,
            default_steps=cfg.default_steps,
        )
        save_dialog.set_parent(ctx.window)
        self._ctx = ctx
        ctx.window.present()

        if not cfg.binary_path.exists():
            self._set_status(f"Engine not found: {cfg.binary_path}")
        else:
            self._set_status(f"Engine ready: {cfg.binary_path.name}")

    def do_shutdown(self):
        ctx = self._ctx
        if ctx is not None:
            if ctx.pending is not None:
                ctx.pending.cancel()
            ctx.loop.stop()
            ctx.bridge.cleanup()
            self._ctx = None
        Gtk.Application.do_shutdown(self)

    def _on_generate(self, request: GenerationRequest) -> None:
        ctx = self._ctx
        if ctx is None or ctx.window is None:
            return
        if ctx.pending is not None and not ctx.pending.done():
            self._set_status("Busy")
            return

        if ctx.result is not None:
            ctx.bridge.release(ctx.result)
            ctx.result = None
        ctx.window.set_busy(True)
        ctx.window.set_error_text(None)
        ctx.window.set_result_available(False)

        future = ctx.loop.submit(ctx.bridge.generate(request, on_state=self._on_state))
        ctx.pending = future
        future.add_done_callback(
            lambda done: GLib.idle_add(self._finish_generate, done)
        )

    def _on_state(self, state: GenerationState) -> None:
        label = _STATE_LABELS.get(state)
        if label:
            self._set_status(label)

    def _finish_generate(self, future: concurrent.futures.Future) -> bool:
        ctx = self._ctx
        if ctx is None or ctx.window is None:
            return False
        if ctx.pending is future:
            ctx.pending = None
        ctx.window.set_busy(False)

        if future.cancelled():
            self._set_status("Canceled")
            return False
        exc = future.exception()
        if isinstance(exc, SynthesisError):
            ctx.window.set_error_text(exc.message)
            return False
        if exc is not None:
            ctx.window.set_error_text(str(exc) or "Failed to generate audio")
            return False

        result: GenerationResult = future.result()
        ctx.result = result
        ctx.window.set_result_available(True)
        duration = audio_duration_seconds(result.file_path)
        if duration is not None:
            self._set_status(f"Generated {duration:.1f}s: {result.file_path.name}")
        else:
            self._set_status(f"Generated {result.file_path.name}")
        if ctx.config.autoplay:
            self._play(result.file_path)
        return False

    def _on_cancel(self) -> None:
        ctx = self._ctx
        if ctx is not None and ctx.pending is not None:
            ctx.pending.cancel()

    def _on_play(self) -> None:
        ctx = self._ctx
        if ctx is not None and ctx.result is not None:
            self._play(ctx.result.file_path)

    def _play(self, path: Path) -> None:
        def worker() -> None:
            if not play_audio_file(path):
                self._set_status("Playback failed")

        threading.Thread(target=worker, daemon=True).start()

    def _on_save(self) -> None:
        ctx = self._ctx
        if ctx is None or ctx.result is None:
            return
        future = ctx.loop.submit(ctx.bridge.save(ctx.result.file_path))
        future.add_done_callback(lambda done: GLib.idle_add(self._finish_save, done))

    def _finish_save(self, future: concurrent.futures.Future) -> bool:
        ctx = self._ctx
        if ctx is None or ctx.window is None or future.cancelled():
            return False
        try:
            result: SaveResult = future.result()
        except Exception as exc:
            ctx.window.set_error_text(f"Could not save file: {exc}")
            return False
        if result.success:
            self._set_status(f"File saved to {result.file_path}")
        elif result.error:
            ctx.window.set_error_text(f"Could not save file: {result.error}")
        return False

    def _set_status(self, text: str) -> None:
        if text == self._last_status:
            return
        self._last_status = text

        def apply_status() -> bool:
            ctx = self._ctx
            if ctx is not None and ctx.window is not None:
                ctx.window.set_status_text(text)
            print(f"[status] {text}", flush=True)
            return False

        GLib.idle_add(apply_status)


def main() -> None:
    app = SupertonicApp()
    app.run()


if __name__ == "__main__":
    main()
