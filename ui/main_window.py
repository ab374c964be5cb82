from __future__ import annotations

from typing import Callable

import gi

gi.require_version("Gtk", "4.0")
gi.require_version("Gdk", "4.0")
gi.require_version("Pango", "1.0")
from gi.repository import Gdk, Gtk, Pango

from engine.request_builder import LANGUAGES, SPEED_RANGE, STEPS_RANGE, VOICES, GenerationRequest

SAMPLE_TEXT = "오늘 아침 일찍 산책을 다녀왔더니, 기분이 상쾌하고 좋았다."


class SynthWindow(Gtk.ApplicationWindow):
    def __init__(
        self,
        app: Gtk.Application,
        on_generate: Callable[[GenerationRequest], None],
        on_cancel: Callable[[], None],
        on_play: Callable[[], None],
        on_save: Callable[[], None],
        default_voice: str = "M1",
        default_lang: str = "ko",
        default_speed: float = 1.0,
        default_steps: int = 5,
    ) -> None:
        super().__init__(application=app)
        self.set_title("Supertonic")
        self.set_default_size(1000, 800)

        self._on_generate = on_generate
        self._voice_ids = list(VOICES)
        self._lang_ids = list(LANGUAGES)
        self._busy = False

        self._lang_dropdown = Gtk.DropDown.new_from_strings(list(LANGUAGES.values()))
        self._lang_dropdown.set_selected(self._lang_ids.index(default_lang))

        self._voice_dropdown = Gtk.DropDown.new_from_strings(
            [f"{vid} ({label})" for vid, label in VOICES.items()]
        )
        self._voice_dropdown.set_selected(self._voice_ids.index(default_voice))

        self._speed_scale = Gtk.Scale.new_with_range(
            Gtk.Orientation.HORIZONTAL, SPEED_RANGE[0], SPEED_RANGE[1], 0.1
        )
        self._speed_scale.set_digits(1)
        self._speed_scale.set_draw_value(True)
        self._speed_scale.set_value(default_speed)

        self._steps_scale = Gtk.Scale.new_with_range(
            Gtk.Orientation.HORIZONTAL, STEPS_RANGE[0], STEPS_RANGE[1], 1
        )
        self._steps_scale.set_digits(0)
        self._steps_scale.set_draw_value(True)
        self._steps_scale.set_value(default_steps)
        self._steps_scale.add_mark(STEPS_RANGE[0], Gtk.PositionType.BOTTOM, "Fast")
        self._steps_scale.add_mark(STEPS_RANGE[1], Gtk.PositionType.BOTTOM, "High Quality")

        controls = Gtk.Box(orientation=Gtk.Orientation.VERTICAL, spacing=6)
        controls.set_size_request(300, -1)
        for caption, widget in (
            ("Language", self._lang_dropdown),
            ("Voice Model", self._voice_dropdown),
            ("Speed", self._speed_scale),
            ("Quality (Steps)", self._steps_scale),
        ):
            controls.append(self._caption(caption))
            controls.append(widget)

        self._buffer = Gtk.TextBuffer()
        self._buffer.set_text(SAMPLE_TEXT)
        self._buffer.connect("changed", lambda _buf: self._refresh_sensitivity())
        text_view = Gtk.TextView.new_with_buffer(self._buffer)
        text_view.set_wrap_mode(Gtk.WrapMode.WORD_CHAR)
        text_view.set_top_margin(12)
        text_view.set_left_margin(12)
        text_view.set_right_margin(12)
        scroller = Gtk.ScrolledWindow()
        scroller.set_child(text_view)
        scroller.set_vexpand(True)

        self._generate_button = Gtk.Button(label="Generate")
        self._generate_button.add_css_class("suggested-action")
        self._generate_button.set_hexpand(True)
        self._generate_button.connect("clicked", self._on_generate_clicked)

        self._cancel_button = Gtk.Button(label="Cancel")
        self._cancel_button.connect("clicked", lambda _btn: on_cancel())
        self._cancel_button.set_visible(False)

        self._play_button = Gtk.Button(label="Play")
        self._play_button.connect("clicked", lambda _btn: on_play())
        self._play_button.set_visible(False)

        self._save_button = Gtk.Button(label="Save")
        self._save_button.connect("clicked", lambda _btn: on_save())
        self._save_button.set_visible(False)

        self._spinner = Gtk.Spinner()

        actions = Gtk.Box(orientation=Gtk.Orientation.HORIZONTAL, spacing=8)
        for widget in (
            self._generate_button,
            self._spinner,
            self._cancel_button,
            self._play_button,
            self._save_button,
        ):
            actions.append(widget)

        self._error_label = Gtk.Label(label="")
        self._error_label.set_wrap(True)
        self._error_label.set_xalign(0.5)
        self._error_label.add_css_class("supertonic-error")
        self._error_label.set_visible(False)

        self._status_label = Gtk.Label(label="Status: Local")
        self._status_label.set_ellipsize(Pango.EllipsizeMode.END)
        self._status_label.set_xalign(0.0)
        self._status_label.add_css_class("dim-label")

        right = Gtk.Box(orientation=Gtk.Orientation.VERTICAL, spacing=8)
        right.set_hexpand(True)
        right.append(self._caption("Input Text"))
        right.append(scroller)
        right.append(actions)
        right.append(self._error_label)
        right.append(self._status_label)

        body = Gtk.Box(orientation=Gtk.Orientation.HORIZONTAL, spacing=24)
        body.set_margin_top(24)
        body.set_margin_bottom(24)
        body.set_margin_start(24)
        body.set_margin_end(24)
        body.append(controls)
        body.append(right)
        self.set_child(body)

        self._install_style()
        self._refresh_sensitivity()

    @staticmethod
    def _caption(text: str) -> Gtk.Label:
        label = Gtk.Label(label=text.upper())
        label.set_xalign(0.0)
        label.add_css_class("supertonic-caption")
        return label

    def _install_style(self) -> None:
        css = Gtk.CssProvider()
        css.load_from_data(
            b"""
            label.supertonic-caption {
                font-size: 11px;
                font-weight: bold;
                letter-spacing: 1px;
                opacity: 0.6;
            }
            label.supertonic-error {
                color: #f87171;
                background-color: rgba(127, 29, 29, 0.2);
                border-radius: 8px;
                padding: 6px 10px;
            }
            """
        )
        display = Gdk.Display.get_default()
        if display is not None:
            Gtk.StyleContext.add_provider_for_display(
                display, css, Gtk.STYLE_PROVIDER_PRIORITY_APPLICATION
            )

    def _text(self) -> str:
        start, end = self._buffer.get_bounds()
        return self._buffer.get_text(start, end, False)

    def current_request(self) -> GenerationRequest:
        return GenerationRequest(
            text=self._text(),
            voice=self._voice_ids[self._voice_dropdown.get_selected()],
            lang=self._lang_ids[self._lang_dropdown.get_selected()],
            speed=round(self._speed_scale.get_value(), 1),
            steps=int(round(self._steps_scale.get_value())),
        )

    def _on_generate_clicked(self, _button: Gtk.Button) -> None:
        if self._busy or not self._text().strip():
            return
        self._on_generate(self.current_request())

    def _refresh_sensitivity(self) -> None:
        self._generate_button.set_sensitive(not self._busy and bool(self._text().strip()))

    def set_busy(self, busy: bool) -> None:
        self._busy = busy
        self._generate_button.set_label("Synthesizing..." if busy else "Generate")
        self._cancel_button.set_visible(busy)
        if busy:
            self._spinner.start()
        else:
            self._spinner.stop()
        self._refresh_sensitivity()

    def set_result_available(self, available: bool) -> None:
        self._play_button.set_visible(available)
        self._save_button.set_visible(available)

    def set_status_text(self, text: str) -> None:
        self._status_label.set_text(text)

    def set_error_text(self, text: str | None) -> None:
        if text:
            self._error_label.set_text(f"Error: {text}")
            self._error_label.set_visible(True)
        else:
            self._error_label.set_text("")
            self._error_label.set_visible(False)
