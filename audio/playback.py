from __future__ import annotations

import os
import shutil
import subprocess
import time
from pathlib import Path

import soundfile as sf

# PipeWire first, then ALSA; sounddevice covers hosts with neither.
_PLAY_CMDS = [cmd for cmd in ("pw-play", "aplay") if shutil.which(cmd)]
_PLAY_RETRIES = 2
_PLAY_RETRY_DELAY_SECONDS = 0.06
_DEBUG_AUDIO = os.getenv("SUPERTONIC_DEBUG", "0").strip() == "1"


def _debug(msg: str) -> None:
    if _DEBUG_AUDIO:
        print(f"[audio] {msg}", flush=True)


def audio_duration_seconds(path: str | Path) -> float | None:
    try:
        info = sf.info(str(path))
    except Exception:
        return None
    if info.samplerate <= 0 or info.frames <= 0:
        return None
    return float(info.frames) / float(info.samplerate)


def _play_timeout_seconds(filepath: str) -> float | None:
    duration = audio_duration_seconds(filepath)
    if duration is None:
        return None
    # Leave room for backend startup and buffer drain.
    return max(12.0, duration * 1.6 + 4.0)


def _play_with_sounddevice(filepath: str) -> bool:
    try:
        import sounddevice as sd

        data, samplerate = sf.read(filepath, dtype="float32")
        sd.play(data, samplerate)
        sd.wait()
        return True
    except Exception as exc:
        _debug(f"sounddevice failed file={Path(filepath).name}: {exc}")
        return False


def _cli_play(filepath: str, timeout_seconds: float | None = None) -> bool:
    name = Path(filepath).name
    for cmd in _PLAY_CMDS:
        for attempt in range(_PLAY_RETRIES):
            try:
                start = time.perf_counter()
                result = subprocess.run(
                    args=[cmd, filepath],
                    check=False,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    timeout=timeout_seconds,
                )
                elapsed = time.perf_counter() - start
                _debug(
                    f"play cmd={cmd} attempt={attempt + 1}/{_PLAY_RETRIES} "
                    f"rc={result.returncode} elapsed={elapsed:.3f}s file={name}"
                )
                if result.returncode == 0:
                    return True
            except subprocess.TimeoutExpired:
                # A hung backend gets skipped, not retried.
                _debug(f"play timeout cmd={cmd} timeout={timeout_seconds}s file={name}")
                break
            except OSError as exc:
                _debug(f"play error cmd={cmd} file={name}: {exc}")
                break
            if attempt < _PLAY_RETRIES - 1:
                time.sleep(_PLAY_RETRY_DELAY_SECONDS)
    _debug(f"play fallback sounddevice file={name}")
    return _play_with_sounddevice(filepath)


def play_audio_file(path: str | Path) -> bool:
    """Play a WAV file to completion. Blocks; call from a worker thread."""
    audio_path = Path(path)
    if not audio_path.is_file():
        return False
    filepath = str(audio_path)
    return _cli_play(filepath, timeout_seconds=_play_timeout_seconds(filepath))
