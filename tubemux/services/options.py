"""Per-job download options whose values may depend on the video."""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Mapping, Sequence, TypeVar, Union

from tubemux.core.config import settings
from tubemux.models.video import VideoMetadata
from tubemux.services.selector import SelectionCriteria, SourceSelection

T = TypeVar("T")

_YEAR_RE = re.compile(r"\d{4}")


@dataclass
class VideoContext:
    """What a :class:`Derived` option is computed from."""

    video_id: str
    title: str
    author: str | None
    description: str
    genre: str | None
    date_published: str | None
    target_format: str
    extension: str
    sources: SourceSelection | None = None

    @classmethod
    def build(
        cls, metadata: VideoMetadata, container: str, sources: SourceSelection | None = None
    ) -> "VideoContext":
        return cls(
            video_id=metadata.video_id,
            title=metadata.title,
            author=metadata.author,
            description=metadata.description,
            genre=metadata.genre,
            date_published=metadata.date_published,
            target_format=container,
            extension=container,
            sources=sources,
        )

    @property
    def year(self) -> str | None:
        if not self.date_published:
            return None
        match = _YEAR_RE.search(self.date_published)
        return match.group(0) if match else None


@dataclass(frozen=True)
class Literal(Generic[T]):
    value: T

    def resolve(self, context: VideoContext) -> T:
        return self.value


@dataclass(frozen=True)
class Derived(Generic[T]):
    func: Callable[[VideoContext], T]

    def resolve(self, context: VideoContext) -> T:
        return self.func(context)


Option = Union[Literal[T], Derived[T]]


def as_option(value: Any) -> Option:
    """Wrap a plain value or callable into a :class:`Literal` / :class:`Derived`."""
    if isinstance(value, (Literal, Derived)):
        return value
    if callable(value):
        return Derived(value)
    return Literal(value)


def resolve(value: Any, context: VideoContext) -> Any:
    return as_option(value).resolve(context)


def default_filename(ctx: VideoContext) -> str:
    return f"{ctx.title} [{ctx.video_id}].{ctx.extension}"


def default_extra_args() -> dict[str, Any]:
    return {
        # Move the moov atom to the front for progressive playback
        "mp4": ["-movflags", "faststart"],
        "webm": [],
    }


def default_metadata() -> dict[str, Any]:
    return {
        "title": Derived(lambda ctx: ctx.title),
        "author": Derived(lambda ctx: ctx.author),
        "artist": Derived(lambda ctx: ctx.author),
        "genre": Derived(lambda ctx: ctx.genre),
        "date": Derived(lambda ctx: ctx.date_published),
        "year": Derived(lambda ctx: ctx.year),
        "comment": Derived(lambda ctx: f"https://youtu.be/{ctx.video_id}\n\n{ctx.description}"),
    }


@dataclass
class DownloadOptions:
    """Options for one download request.

    ``extra_args`` and ``metadata`` are either a per-key mapping (values may
    be literals or callables) or a single callable returning the whole value.
    """

    output_dir: Any = field(default_factory=lambda: settings.OUTPUT_DIR)
    output_filename: Any = field(default_factory=lambda: Derived(default_filename))
    target_formats: Sequence[str] = field(default_factory=lambda: list(settings.target_formats_list))
    extra_args: Any = field(default_factory=default_extra_args)
    metadata: Any = field(default_factory=default_metadata)
    criteria: SelectionCriteria = field(default_factory=SelectionCriteria)

    def resolve_output(self, context: VideoContext) -> tuple[str, str]:
        """Return ``(directory, filename)`` before sanitization."""
        return resolve(self.output_dir, context), resolve(self.output_filename, context)

    def resolve_extra_args(self, context: VideoContext) -> tuple[str, ...]:
        if isinstance(self.extra_args, Mapping):
            args = resolve(self.extra_args.get(context.target_format) or [], context)
        else:
            args = resolve(self.extra_args, context)
        return tuple(str(a) for a in args or ())

    def resolve_metadata(self, context: VideoContext) -> tuple[tuple[str, str], ...]:
        """Resolve metadata pairs, dropping entries that resolve to ``None``."""
        if isinstance(self.metadata, Mapping):
            raw = {key: resolve(value, context) for key, value in self.metadata.items()}
        else:
            raw = resolve(self.metadata, context) or {}
        return tuple((str(k), str(v)) for k, v in raw.items() if v is not None)
