"""yt-dlp integration for fetching a video's single-track source catalog."""

import ipaddress
import re
import threading
from typing import Any
from urllib.parse import urlparse

import yt_dlp
from cachetools import TTLCache

from tubemux.core.config import settings
from tubemux.core.logging import get_logger
from tubemux.core.urls import sanitize_url_for_logging
from tubemux.models.video import SourceDescriptor, VideoCatalog, VideoMetadata
from tubemux.services.errors import (
    CatalogFetchError,
    InvalidUrlError,
    UnsupportedPlatformError,
    VideoNotFoundError,
)

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CODEC_NONE = "none"

BLOCKED_HOSTNAMES = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}

STREAMABLE_PROTOCOLS = {"http", "https"}

# yt-dlp extension -> container family the muxer writes
EXT_CONTAINERS = {"m4a": "mp4", "mp4": "mp4", "webm": "webm"}

VIDEO_ID_PATTERN = re.compile(r"^[\w-]{11}$")
YOUTUBE_URL_PATTERN = re.compile(
    r"^(?:(?:(?:h?ttps?)?:)?//)?"
    r"(?:youtu\.be/|(?:www\.|m\.)?youtube\.com/(?:watch\?(?:.+&)?v=|v/|e(?:mbed)?/))"
    r"([\w-]{11})",
    re.IGNORECASE,
)

_UPLOAD_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")


class CatalogService:
    """Service for turning a video URL into a :class:`VideoCatalog`."""

    _catalog_cache: TTLCache | None = None
    _catalog_cache_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Cache helpers (backed by cachetools.TTLCache)
    # ------------------------------------------------------------------

    @classmethod
    def _get_cache(cls) -> TTLCache:
        """Lazy-initialise and return the TTL cache."""
        if cls._catalog_cache is None:
            cls._catalog_cache = TTLCache(
                maxsize=max(1, settings.CATALOG_CACHE_MAXSIZE),
                ttl=max(1, settings.CATALOG_CACHE_TTL_SECONDS),
            )
        return cls._catalog_cache

    @classmethod
    def _cache_enabled(cls) -> bool:
        """Return True when caching is configured on."""
        return (
            settings.CATALOG_CACHE_TTL_SECONDS > 0
            and settings.CATALOG_CACHE_MAXSIZE > 0
        )

    @classmethod
    def get_cached_catalog(cls, url: str) -> VideoCatalog | None:
        """Return the cached catalog for *url*, or None."""
        if not cls._cache_enabled():
            return None
        with cls._catalog_cache_lock:
            return cls._get_cache().get(url)

    @classmethod
    def _cache_set_catalog(cls, url: str, catalog: VideoCatalog) -> None:
        if not cls._cache_enabled():
            return
        with cls._catalog_cache_lock:
            cls._get_cache()[url] = catalog

    @classmethod
    def clear_cache(cls) -> None:
        with cls._catalog_cache_lock:
            cls._catalog_cache = None

    # ------------------------------------------------------------------
    # URL helpers
    # ------------------------------------------------------------------

    @staticmethod
    def extract_video_id(target: str) -> str | None:
        """Return the YouTube video id of a bare id or YouTube URL."""
        target = target.strip()
        if VIDEO_ID_PATTERN.match(target):
            return target
        if match := YOUTUBE_URL_PATTERN.match(target):
            return match.group(1)
        return None

    @classmethod
    def normalize_url(cls, url: str) -> str:
        """Normalize and validate a URL for safety.

        Bare video ids and YouTube links are rewritten to the canonical
        watch page URL.

        Args:
            url: Raw URL string or video id from user input

        Returns:
            Normalized URL string

        Raises:
            InvalidUrlError: If URL is malformed or blocked
        """
        url = url.strip()

        if video_id := cls.extract_video_id(url):
            return f"https://www.youtube.com/watch?v={video_id}"

        try:
            parsed = urlparse(url)
        except ValueError as e:
            logger.warning(f"Failed to parse URL: {e}")
            raise InvalidUrlError("Malformed URL")

        if parsed.scheme.lower() not in settings.allowed_schemes_list:
            raise InvalidUrlError(
                f"URL scheme not allowed. Allowed schemes: "
                f"{', '.join(settings.allowed_schemes_list)}"
            )

        if not parsed.hostname:
            raise InvalidUrlError("URL must have a valid hostname")

        # SSRF protection: block private networks
        if settings.BLOCK_PRIVATE_NETWORKS:
            try:
                ip = ipaddress.ip_address(parsed.hostname)
                if ip.is_private or ip.is_loopback or ip.is_link_local:
                    logger.warning(f"Blocked private network URL: {parsed.hostname}")
                    raise InvalidUrlError("Private network URLs are not allowed")
            except ValueError:
                # Not an IP address, hostname is OK
                pass

            if parsed.hostname.lower() in BLOCKED_HOSTNAMES:
                raise InvalidUrlError("Localhost URLs are not allowed")

        return url

    # ------------------------------------------------------------------
    # Catalog normalisation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_source(raw_format: dict[str, Any]) -> SourceDescriptor | None:
        """Convert a yt-dlp format dict to a single-track source, if it is one."""
        vcodec = raw_format.get("vcodec") or CODEC_NONE
        acodec = raw_format.get("acodec") or CODEC_NONE
        url = raw_format.get("url")
        container = EXT_CONTAINERS.get(raw_format.get("ext", ""))

        if not url or container is None:
            return None
        if raw_format.get("protocol", "https") not in STREAMABLE_PROTOCOLS:
            return None

        if acodec != CODEC_NONE and vcodec == CODEC_NONE:
            track_type, codec, kbps = "audio", acodec, raw_format.get("abr")
        elif vcodec != CODEC_NONE and acodec == CODEC_NONE:
            track_type, codec, kbps = "video", vcodec, raw_format.get("vbr")
        else:
            # Muxed or unknown streams are not relayed
            return None

        kbps = kbps or raw_format.get("tbr") or 0
        return SourceDescriptor(
            track_type=track_type,
            container=container,
            codec=codec,
            bitrate=int(float(kbps) * 1000),
            url=url,
            format_id=str(raw_format.get("format_id") or "") or None,
        )

    @classmethod
    def _extract_sources(cls, raw_formats: list[dict[str, Any]]) -> list[SourceDescriptor]:
        sources: list[SourceDescriptor] = []
        for raw_fmt in raw_formats:
            try:
                source = cls._to_source(raw_fmt)
            except (TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed format: {e}")
                continue
            if source is not None:
                sources.append(source)
        return sources

    @staticmethod
    def _format_upload_date(upload_date: Any) -> str | None:
        if not isinstance(upload_date, str):
            return None
        match = _UPLOAD_DATE_RE.match(upload_date)
        if not match:
            return upload_date or None
        return "-".join(match.groups())

    @classmethod
    def _extract_metadata(cls, info: dict[str, Any]) -> VideoMetadata:
        categories = info.get("categories") or []
        author_links = [
            link for link in (info.get("channel_url"), info.get("uploader_url")) if link
        ]
        return VideoMetadata(
            video_id=str(info.get("id") or "unknown"),
            title=info.get("title") or "Unknown Title",
            author=info.get("uploader") or info.get("channel"),
            description=info.get("description") or "",
            genre=categories[0] if categories else None,
            date_published=cls._format_upload_date(info.get("upload_date")),
            webpage_url=info.get("webpage_url"),
            author_links=list(dict.fromkeys(author_links)),
        )

    @classmethod
    def _build_ydl_options(cls) -> dict[str, Any]:
        """Build yt-dlp configuration options for catalog extraction."""
        ydl_opts: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": True,
            "extract_flat": False,
            "socket_timeout": settings.CATALOG_SOCKET_TIMEOUT,
        }

        if settings.RELAY_USER_AGENT:
            ydl_opts["http_headers"] = {"User-Agent": settings.RELAY_USER_AGENT}

        if settings.CATALOG_COOKIES_FROM_BROWSER:
            ydl_opts["cookiesfrombrowser"] = (settings.CATALOG_COOKIES_FROM_BROWSER,)

        if settings.RELAY_PROXY:
            ydl_opts["proxy"] = settings.RELAY_PROXY

        return ydl_opts

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    @classmethod
    def _handle_fetch_error(cls, error: Exception, safe_url: str) -> None:
        """Handle and transform yt-dlp errors into domain exceptions.

        Always raises; return type is ``None`` only for the type-checker.
        """
        if isinstance(error, yt_dlp.utils.UnsupportedError):
            logger.warning(f"Unsupported platform for {safe_url}: {error}")
            raise UnsupportedPlatformError(str(error))

        if isinstance(error, yt_dlp.utils.DownloadError):
            error_msg = str(error).lower()

            if any(kw in error_msg for kw in ("not found", "unavailable", "private")):
                logger.warning(f"Video not found: {safe_url}")
                raise VideoNotFoundError()

            logger.error(f"yt-dlp error for {safe_url}: {error}")
            raise CatalogFetchError(f"Failed to fetch video information: {error}")

        logger.error(
            f"Unexpected error fetching catalog for {safe_url}: {error}",
            exc_info=True,
        )
        raise CatalogFetchError(f"Unexpected error: {error}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @classmethod
    def fetch_catalog(cls, url: str) -> VideoCatalog:
        """Fetch video metadata and its single-track sources.

        Args:
            url: Video URL or bare video id

        Returns:
            VideoCatalog with metadata and sources

        Raises:
            InvalidUrlError: If URL is invalid or blocked
            UnsupportedPlatformError: If platform not supported
            VideoNotFoundError: If video not found
            CatalogFetchError: If yt-dlp fails unexpectedly
        """
        url = cls.normalize_url(url)

        cached = cls.get_cached_catalog(url)
        if cached is not None:
            return cached

        safe_url = sanitize_url_for_logging(url)
        logger.info(f"Fetching catalog for: {safe_url}")

        try:
            with yt_dlp.YoutubeDL(cls._build_ydl_options()) as ydl:
                info = ydl.extract_info(url, download=False)
        except Exception as e:
            cls._handle_fetch_error(e, safe_url)
            raise  # pragma: no cover

        if not info:
            raise VideoNotFoundError()

        catalog = VideoCatalog(
            metadata=cls._extract_metadata(info),
            sources=cls._extract_sources(info.get("formats") or []),
        )
        cls._cache_set_catalog(url, catalog)

        logger.info(
            f"Fetched {len(catalog.sources)} single-track sources for: {safe_url}"
        )
        return catalog
