"""Incremental parser for ffmpeg's human-readable stderr output.

ffmpeg reports the input duration once per input (``Duration: HH:MM:SS.ff``)
and then prints a status line starting with ``frame=`` for every progress
tick.  The parser is fed raw stderr chunks in arrival order and turns each
status line into a :class:`ProgressUpdate`.

Fields that are missing or unparseable become ``math.nan`` instead of
raising, as does ``progress`` until a duration has been seen.
"""

import math
import re
from dataclasses import dataclass, field

from tubemux.core.logging import get_logger

logger = get_logger(__name__)

DURATION_MARKER = "Duration:"
PROGRESS_PREFIX = "frame="

_TIMESTAMP_RE = re.compile(r"(\d{2}):(\d{2}):(\d{2}\.\d{1,2})")
_LEADING_NUMBER_RE = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")
_UNIT_RE = re.compile(r"[a-z]", re.IGNORECASE)
_BIT_RE = re.compile(r"bit", re.IGNORECASE)
# Everything after the first line break that starts a new block
_TRAILING_BLOCK_RE = re.compile(r"[\r\n]+[\s\S]+")
_FIELD_SPLIT_RE = re.compile(r"=\s*|\s+")

_UNIT_PREFIXES = ("b", "k", "m", "g", "t", "p")


def parse_number(text: str | None) -> float:
    """Parse the leading numeric part of *text* (``"1.0x"`` -> ``1.0``)."""
    if not text:
        return math.nan
    match = _LEADING_NUMBER_RE.match(text)
    if not match:
        return math.nan
    return float(match.group(1))


def parse_int(text: str | None) -> int | None:
    """Parse the leading integer part of *text*, or ``None``."""
    value = parse_number(text)
    if math.isnan(value):
        return None
    return int(value)


def parse_timestamp(text: str | None) -> float:
    """Convert the first ``HH:MM:SS.ff`` found in *text* to seconds."""
    if not text:
        return math.nan
    match = _TIMESTAMP_RE.search(text)
    if not match:
        return math.nan
    hours, minutes, seconds = match.groups()
    return (int(hours) * 60 + int(minutes)) * 60 + float(seconds)


def _unit_scale(unit: str) -> float:
    for power, prefix in enumerate(_UNIT_PREFIXES):
        if unit == prefix:
            return 1000.0**power
        if unit == prefix.upper():
            return 1024.0**power
    return 1.0


def parse_sized_value(token: str | None) -> float:
    """Convert a sized token such as ``100kB`` or ``160.0kbits/s`` to bytes.

    A lowercase unit letter scales by powers of 1000, an uppercase one by
    powers of 1024.  A ``bit`` suffix divides the result by 8.
    """
    if not token:
        return math.nan
    match = _LEADING_NUMBER_RE.match(token)
    if not match:
        return math.nan
    value = float(match.group(1))
    rest = token[match.end():]
    unit = _UNIT_RE.search(rest)
    if unit:
        value *= _unit_scale(unit.group(0))
    if _BIT_RE.search(rest):
        value /= 8
    return value


def tokenize_progress_line(text: str) -> dict[str, str]:
    """Split a ``frame=`` status line into its raw ``key -> value`` pairs."""
    head = _TRAILING_BLOCK_RE.sub("", text).strip()
    parts = _FIELD_SPLIT_RE.split(head)
    fields: dict[str, str] = {}
    for i in range(0, len(parts) - 1, 2):
        if parts[i]:
            fields[parts[i]] = parts[i + 1]
    return fields


@dataclass
class ProgressSample:
    """Typed view of one ffmpeg status line."""

    frame: int | None = None
    fps: float = math.nan
    q: float = math.nan
    time: float = math.nan
    bitrate: float = math.nan
    speed: float = math.nan
    size: float = math.nan
    # "Lsize" is printed once the output has been finalized
    size_key: str = "size"

    @property
    def is_final(self) -> bool:
        return self.size_key == "Lsize"

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "ProgressSample":
        size_key = "Lsize" if "Lsize" in fields else "size"
        return cls(
            frame=parse_int(fields.get("frame")),
            fps=parse_number(fields.get("fps")),
            q=parse_number(fields.get("q")),
            time=parse_timestamp(fields.get("time")),
            bitrate=parse_sized_value(fields.get("bitrate")),
            speed=parse_number(fields.get("speed")),
            size=parse_sized_value(fields.get(size_key)),
            size_key=size_key,
        )


@dataclass
class ProgressUpdate:
    """An ``Update`` event: normalized progress plus the sample it came from."""

    progress: float
    sample: ProgressSample
    raw_text: str
    raw_fields: dict[str, str] = field(default_factory=dict)


class ProgressParser:
    """Per-job state machine over ffmpeg stderr chunks."""

    def __init__(self) -> None:
        self.duration_known = False
        self.total_duration = math.nan
        self._capturing_duration = False

    def feed(self, chunk: str) -> ProgressUpdate | None:
        """Consume one stderr chunk, returning an update for status lines."""
        if DURATION_MARKER in chunk:
            self._capturing_duration = True

        if self._capturing_duration:
            match = _TIMESTAMP_RE.search(chunk)
            if match:
                self._capturing_duration = False
                self._record_duration(parse_timestamp(match.group(0)))

        if not chunk.startswith(PROGRESS_PREFIX):
            return None

        fields = tokenize_progress_line(chunk)
        sample = ProgressSample.from_fields(fields)
        return ProgressUpdate(
            progress=self.progress_for(sample.time),
            sample=sample,
            raw_text=chunk,
            raw_fields=fields,
        )

    def progress_for(self, elapsed: float) -> float:
        """Return ``elapsed / total_duration``, NaN while the duration is unknown."""
        if not self.duration_known or self.total_duration <= 0:
            return math.nan
        return elapsed / self.total_duration

    def _record_duration(self, seconds: float) -> None:
        # ffmpeg prints one duration per input; keep the longest
        if not self.duration_known or seconds > self.total_duration:
            logger.debug(f"Total duration set to {seconds:.2f}s")
            self.total_duration = seconds
            self.duration_known = True
