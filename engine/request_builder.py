from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from engine.errors import IOFailure, ValidationFailure

VOICES: dict[str, str] = {
    "M1": "Male 1",
    "M2": "Male 2",
    "M3": "Male 3",
    "M4": "Male 4",
    "M5": "Male 5",
    "F1": "Female 1",
    "F2": "Female 2",
    "F3": "Female 3",
    "F4": "Female 4",
    "F5": "Female 5",
}

LANGUAGES: dict[str, str] = {
    "en": "English",
    "ko": "Korean",
    "es": "Spanish",
    "pt": "Portuguese",
    "fr": "French",
}

SPEED_RANGE = (0.5, 2.0)
STEPS_RANGE = (1, 10)
DEFAULT_STEPS = 5
SCRATCH_PREFIX = "supertonic_"


@dataclass
class GenerationRequest:
    text: str
    voice: str
    lang: str
    speed: float = 1.0
    steps: int | None = DEFAULT_STEPS


@dataclass
class EngineCommand:
    program: str
    args: list[str]
    cwd: Path
    save_dir: Path

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]


def voice_style_path(voice: str) -> str:
    """Asset path of a voice style, relative to the engine's working dir."""
    return str(Path("assets") / "voice_styles" / f"{voice}.json")


def format_number(value: float) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_request(request: GenerationRequest) -> None:
    if not isinstance(request.text, str) or not request.text.strip():
        raise ValidationFailure("text", "Text must not be empty")
    if request.voice not in VOICES:
        raise ValidationFailure("voice", f"Unknown voice '{request.voice}'")
    if request.lang not in LANGUAGES:
        raise ValidationFailure("lang", f"Unknown language '{request.lang}'")

    low, high = SPEED_RANGE
    if not _is_number(request.speed) or not (low <= request.speed <= high):
        raise ValidationFailure(
            "speed", f"Speed must be between {low} and {high} (got {request.speed!r})"
        )

    if request.steps is None:
        return
    low_steps, high_steps = STEPS_RANGE
    steps = request.steps
    if not _is_number(steps) or not float(steps).is_integer():
        raise ValidationFailure("steps", f"Steps must be an integer (got {steps!r})")
    if not (low_steps <= steps <= high_steps):
        raise ValidationFailure(
            "steps", f"Steps must be between {low_steps} and {high_steps} (got {steps!r})"
        )


def create_scratch_dir(
    root: Path, now_ms: Callable[[], int] | None = None
) -> Path:
    """Create a fresh ``supertonic_<ms>`` directory under *root*.

    ``mkdir`` is atomic, so a name already taken by a concurrent request
    gets a numeric suffix instead of being shared.
    """
    clock = now_ms or (lambda: int(time.time() * 1000))
    try:
        root.mkdir(parents=True, exist_ok=True)
        base = f"{SCRATCH_PREFIX}{clock()}"
        candidate = root / base
        suffix = 0
        while True:
            try:
                candidate.mkdir()
                return candidate
            except FileExistsError:
                suffix += 1
                candidate = root / f"{base}_{suffix}"
    except OSError as exc:
        raise IOFailure("Error creating output directory", exc) from exc


def build_engine_command(
    binary: Path | str,
    working_dir: Path,
    request: GenerationRequest,
    save_dir: Path,
) -> EngineCommand:
    # Values pass through verbatim; the engine decides what it accepts.
    steps = request.steps if request.steps is not None else DEFAULT_STEPS
    args = [
        "--save-dir",
        str(save_dir),
        "--text",
        request.text,
        "--voice-style",
        voice_style_path(request.voice),
        "--lang",
        request.lang,
        "--speed",
        format_number(request.speed),
        "--total-step",
        format_number(steps),
    ]
    return EngineCommand(
        program=str(binary), args=args, cwd=Path(working_dir), save_dir=save_dir
    )
