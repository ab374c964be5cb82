import math
import os
import shutil
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from engine.request_builder import DEFAULT_STEPS, LANGUAGES, SPEED_RANGE, STEPS_RANGE, VOICES

BASE_DIR = Path(__file__).resolve().parent

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class AppConfig:
    binary_path: Path
    working_dir: Path
    scratch_root: Path
    timeout_seconds: float | None
    keep_scratch: bool
    autoplay: bool
    packaged: bool
    default_voice: str
    default_lang: str
    default_speed: float
    default_steps: int


def _read_bool(name: str, default: str) -> bool:
    raw = os.getenv(name, default).strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(
        f"{name} must be one of: {', '.join(sorted(_TRUE_VALUES | _FALSE_VALUES))} "
        f"(got '{raw}')"
    )


def _read_float(name: str, default: str) -> float:
    raw = os.getenv(name, default).strip()
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got '{raw}')") from None
    if not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number (got '{raw}')")
    return value


def _read_int(name: str, default: str) -> int:
    raw = os.getenv(name, default).strip()
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got '{raw}')") from None


def _resolve_binary(value: str) -> Path:
    """Resolve a path-like value; a bare command name is looked up on PATH."""
    separators = {os.sep, "/"} | ({os.altsep} if os.altsep else set())
    if any(sep in value for sep in separators) or value.startswith("~"):
        return Path(value).expanduser().resolve()
    found = shutil.which(value)
    if found:
        return Path(found).resolve()
    return Path(value)


def _is_packaged() -> bool:
    if getattr(sys, "frozen", False):
        return True
    return _read_bool("SUPERTONIC_PACKAGED", "0")


def _engine_paths(packaged: bool) -> tuple[Path, Path]:
    """Return (binary, working dir) for a packaged build or a dev checkout."""
    exe_name = "example_onnx.exe" if sys.platform == "win32" else "example_onnx"
    if packaged:
        working_dir = Path(sys.executable).resolve().parent / "resources" / "rust"
        return (working_dir / exe_name, working_dir)
    working_dir = (BASE_DIR.parent / "rust").resolve()
    return (working_dir / "target" / "release" / exe_name, working_dir)


def load_config() -> AppConfig:
    load_dotenv()
    packaged = _is_packaged()
    default_binary, default_working_dir = _engine_paths(packaged)

    binary_path = os.getenv("SUPERTONIC_BINARY", "").strip() or str(default_binary)
    working_dir = os.getenv("SUPERTONIC_WORKING_DIR", "").strip() or str(
        default_working_dir
    )
    scratch_root = os.getenv("SUPERTONIC_SCRATCH_ROOT", "").strip() or tempfile.gettempdir()

    timeout_seconds = _read_float("SUPERTONIC_TIMEOUT_SECONDS", "300")
    if timeout_seconds < 0:
        raise ValueError("SUPERTONIC_TIMEOUT_SECONDS must be >= 0")

    keep_scratch = _read_bool("SUPERTONIC_KEEP_SCRATCH", "0")
    autoplay = _read_bool("SUPERTONIC_AUTOPLAY", "1")

    default_voice = os.getenv("SUPERTONIC_DEFAULT_VOICE", "M1").strip()
    if default_voice not in VOICES:
        raise ValueError(
            f"SUPERTONIC_DEFAULT_VOICE must be one of: {', '.join(VOICES)} "
            f"(got '{default_voice}')"
        )
    default_lang = os.getenv("SUPERTONIC_DEFAULT_LANG", "ko").strip().lower()
    if default_lang not in LANGUAGES:
        raise ValueError(
            f"SUPERTONIC_DEFAULT_LANG must be one of: {', '.join(LANGUAGES)} "
            f"(got '{default_lang}')"
        )
    default_speed = _read_float("SUPERTONIC_DEFAULT_SPEED", "1.0")
    if not (SPEED_RANGE[0] <= default_speed <= SPEED_RANGE[1]):
        raise ValueError(
            f"SUPERTONIC_DEFAULT_SPEED must be between {SPEED_RANGE[0]} and {SPEED_RANGE[1]}"
        )
    default_steps = _read_int("SUPERTONIC_DEFAULT_STEPS", str(DEFAULT_STEPS))
    if not (STEPS_RANGE[0] <= default_steps <= STEPS_RANGE[1]):
        raise ValueError(
            f"SUPERTONIC_DEFAULT_STEPS must be between {STEPS_RANGE[0]} and {STEPS_RANGE[1]}"
        )

    return AppConfig(
        binary_path=_resolve_binary(binary_path),
        working_dir=Path(working_dir).expanduser().resolve(),
        scratch_root=Path(scratch_root).expanduser().resolve(),
        timeout_seconds=timeout_seconds or None,
        keep_scratch=keep_scratch,
        autoplay=autoplay,
        packaged=packaged,
        default_voice=default_voice,
        default_lang=default_lang,
        default_speed=default_speed,
        default_steps=default_steps,
    )
