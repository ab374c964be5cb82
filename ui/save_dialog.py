from __future__ import annotations

import asyncio
from pathlib import Path

import gi

gi.require_version("Gtk", "4.0")
from gi.repository import Gio, GLib, Gtk

from engine.errors import IOFailure


class GtkSaveDialog:
    """Native save dialog awaited from the bridge's asyncio loop.

    The dialog itself always runs on the GTK main thread.
    """

    def __init__(self, parent: Gtk.Window | None = None) -> None:
        self._parent = parent

    def set_parent(self, parent: Gtk.Window) -> None:
        self._parent = parent

    async def ask_save_path(self, default_name: str) -> Path | None:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Path | None] = loop.create_future()

        def settle(value: Path | None, error: Exception | None = None) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(value)

        def resolve(value: Path | None, error: Exception | None = None) -> None:
            loop.call_soon_threadsafe(settle, value, error)

        def open_dialog() -> bool:
            self._open(default_name, resolve)
            return False

        GLib.idle_add(open_dialog)
        return await future

    def _open(self, default_name: str, resolve) -> None:
        wav_filter = Gtk.FileFilter()
        wav_filter.set_name("WAV Audio")
        wav_filter.add_suffix("wav")
        filters = Gio.ListStore.new(Gtk.FileFilter)
        filters.append(wav_filter)

        dialog = Gtk.FileDialog()
        dialog.set_title("Save Audio File")
        dialog.set_modal(True)
        dialog.set_initial_name(default_name)
        dialog.set_filters(filters)
        dialog.set_default_filter(wav_filter)

        def on_finish(source: Gtk.FileDialog, result: Gio.AsyncResult) -> None:
            try:
                gfile = source.save_finish(result)
            except GLib.Error as exc:
                if exc.matches(Gtk.dialog_error_quark(), Gtk.DialogError.DISMISSED):
                    resolve(None)
                else:
                    resolve(None, IOFailure(f"Save dialog failed: {exc.message}"))
                return
            path = gfile.get_path() if gfile is not None else None
            resolve(Path(path) if path else None)

        dialog.save(self._parent, None, on_finish)
