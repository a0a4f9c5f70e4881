"""Pick one audio and one video source per target container."""

from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from tubemux.core.config import settings
from tubemux.core.logging import get_logger
from tubemux.models.video import SourceDescriptor
from tubemux.services.errors import NoMatchingSourceError

logger = get_logger(__name__)

SourceFilter = Callable[[SourceDescriptor], bool]
SourceComparator = Callable[[SourceDescriptor, SourceDescriptor], bool]


def make_source_filter(excluded: Iterable[tuple[str, str, str]]) -> SourceFilter:
    """Build a filter rejecting the given ``(track, container, codec)`` triples."""
    blocked = {(t.lower(), c.lower(), k.lower()) for t, c, k in excluded}

    def _filter(source: SourceDescriptor) -> bool:
        key = (source.track_type, source.container.lower(), (source.codec or "").lower())
        return key not in blocked

    return _filter


def default_format_filter(source: SourceDescriptor) -> bool:
    """Reject the configured excluded sources (Vorbis in WebM by default).

    Opus is preferred over Vorbis in the same container regardless of bitrate.
    """
    return make_source_filter(settings.excluded_sources_list)(source)


def higher_bitrate(best: SourceDescriptor, candidate: SourceDescriptor) -> bool:
    """Default comparator: the candidate wins with a strictly higher bitrate."""
    return best.bitrate < candidate.bitrate


@dataclass
class SelectionCriteria:
    filter: SourceFilter = default_format_filter
    better_than: SourceComparator = higher_bitrate


@dataclass
class SourceSelection:
    """Winning sources for one container."""

    container: str
    audio: SourceDescriptor | None = None
    video: SourceDescriptor | None = None

    @property
    def complete(self) -> bool:
        return self.audio is not None and self.video is not None

    def get(self, track: str) -> SourceDescriptor | None:
        return self.audio if track == "audio" else self.video


def group_catalog(
    sources: Iterable[SourceDescriptor],
) -> dict[str, dict[str, list[SourceDescriptor]]]:
    """Group sources by container, then by track type."""
    grouped: dict[str, dict[str, list[SourceDescriptor]]] = defaultdict(
        lambda: {"audio": [], "video": []}
    )
    for source in sources:
        grouped[source.container][source.track_type].append(source)
    return dict(grouped)


def pick_best(
    candidates: Iterable[SourceDescriptor], criteria: SelectionCriteria
) -> SourceDescriptor | None:
    best: SourceDescriptor | None = None
    for candidate in candidates:
        if not criteria.filter(candidate):
            continue
        if best is None or criteria.better_than(best, candidate):
            best = candidate
    return best


def select_sources(
    sources: Sequence[SourceDescriptor],
    container: str,
    criteria: SelectionCriteria | None = None,
) -> SourceSelection:
    """Select the best audio and video source of *container*."""
    criteria = criteria or SelectionCriteria()
    tracks = group_catalog(sources).get(container, {"audio": [], "video": []})
    return SourceSelection(
        container=container,
        audio=pick_best(tracks["audio"], criteria),
        video=pick_best(tracks["video"], criteria),
    )


def require_sources(
    sources: Sequence[SourceDescriptor],
    container: str,
    criteria: SelectionCriteria | None = None,
) -> SourceSelection:
    """Like :func:`select_sources`, but raise when a track has no winner.

    Raises:
        NoMatchingSourceError: If audio or video has no eligible source
    """
    selection = select_sources(sources, container, criteria)
    missing = [track for track in ("audio", "video") if selection.get(track) is None]
    if missing:
        raise NoMatchingSourceError(
            f"No eligible {' or '.join(missing)} source for container '{container}'"
        )
    return selection


def select_all(
    sources: Sequence[SourceDescriptor],
    containers: Iterable[str],
    criteria: SelectionCriteria | None = None,
) -> dict[str, SourceSelection]:
    """Select sources for every container, skipping incomplete ones."""
    selections: dict[str, SourceSelection] = {}
    for container in containers:
        selection = select_sources(sources, container, criteria)
        if not selection.complete:
            logger.info(f"Skipping container '{container}': no eligible audio/video pair")
            continue
        selections[container] = selection
    return selections
