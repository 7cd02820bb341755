#!/usr/bin/env python3
"""Bandcamp Album Downloader"""

__version__ = "0.2026.10.19.0"

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import aiofiles
import aiohttp
from aiohttp import ClientTimeout
from bs4 import BeautifulSoup
from colorama import Fore, Style, init
import yarl


init(autoreset=True)


try:
    import lxml  # noqa: F401

    LXML_AVAILABLE = True
except ImportError:
    LXML_AVAILABLE = False


LOGGER_NAME = "bandscrape"
SITE_DOMAIN = "bandcamp.com"
DEFAULT_DIRECTORY = "bandcamp"
AUDIO_FORMAT = "mp3-128"
TRACK_EXTENSION = ".mp3"
ILLEGAL_FILENAME_CHARS = ("/", "\\")


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class BandscrapeError(Exception):
    """Base exception for fatal pipeline errors."""


class PageFetchError(BandscrapeError):
    """Raised when the album page cannot be retrieved."""


class AlbumParseError(BandscrapeError):
    """Raised when the embedded album JSON is missing or malformed."""


class DestinationError(BandscrapeError):
    """Raised when the destination directory cannot be created."""


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@dataclass(frozen=True, kw_only=True, slots=True)
class Config:
    """Immutable configuration container."""

    home_dir: Path = field(default_factory=Path.home)
    base_dir: Path | None = None  # None = <home>/bandcamp
    embed_album_art: bool = False  # Accepted, not acted upon
    chunk_size: int | None = 512 * 1024  # 512 KiB
    connection_timeout: float = 15.0
    read_timeout: float = 60.0
    html_parser: str = field(
        default_factory=lambda: "lxml" if LXML_AVAILABLE else "html.parser"
    )
    user_agent: str = field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/143.0.7499.40 Safari/537.36"
        )
    )
    debug: bool = False

    def __post_init__(self) -> None:
        """Validate configuration values after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate all configuration parameters."""
        if not isinstance(self.home_dir, Path):
            raise ValueError(
                f"home_dir must be a Path object, got {type(self.home_dir)}"
            )

        if self.base_dir is not None and not isinstance(self.base_dir, Path):
            raise ValueError(
                f"base_dir must be a Path object or None, got {type(self.base_dir)}"
            )

        if not isinstance(self.embed_album_art, bool):
            raise ValueError(
                f"embed_album_art must be boolean, got {type(self.embed_album_art)}"
            )

        if self.chunk_size is not None:
            if not isinstance(self.chunk_size, int) or self.chunk_size <= 0:
                raise ValueError(
                    f"chunk_size must be positive integer or None, got {self.chunk_size}"
                )  # 0 → None in main()

        for timeout_name, timeout_value in [
            ("connection_timeout", self.connection_timeout),
            ("read_timeout", self.read_timeout),
        ]:
            if not isinstance(timeout_value, (int, float)) or timeout_value <= 0:
                raise ValueError(
                    f"{timeout_name} must be positive number, got {timeout_value}"
                )

        valid_parsers = ["html.parser", "lxml", "html5lib"]
        if self.html_parser not in valid_parsers:
            raise ValueError(
                f"html_parser must be one of {valid_parsers}, got {self.html_parser}"
            )

        if self.html_parser == "lxml" and not LXML_AVAILABLE:
            raise ValueError("lxml parser requested but lxml is not installed.")

        if not isinstance(self.user_agent, str) or not self.user_agent:
            raise ValueError(
                f"user_agent must be non-empty string, got {self.user_agent}"
            )

        if not isinstance(self.debug, bool):
            raise ValueError(f"debug must be boolean, got {type(self.debug)}")

    @property
    def output_root(self) -> Path:
        """Directory that artist folders are created under."""
        if self.base_dir is not None:
            return self.base_dir
        return self.home_dir / DEFAULT_DIRECTORY


# -----------------------------------------------------------------------------
# Data Structures
# -----------------------------------------------------------------------------


def _lookup(data: dict[str, Any], key: str) -> Any:
    """Get a JSON value by key, falling back to a case-insensitive match."""
    if key in data:
        return data[key]
    lowered = key.lower()
    for candidate, value in data.items():
        if candidate.lower() == lowered:
            return value
    return None


def _typed(data: dict[str, Any], key: str, kind: type, default: Any = None) -> Any:
    """Read an optional field, treating absent, null and mistyped values alike."""
    value = _lookup(data, key)
    if value is None:
        return default

    if isinstance(value, bool) and kind is not bool:
        value = None
    elif kind is int and isinstance(value, float) and value.is_integer():
        value = int(value)
    elif kind is float and isinstance(value, int):
        value = float(value)

    if isinstance(value, kind):
        return value

    logging.getLogger(LOGGER_NAME).debug(
        f"Ignoring field {key!r}: expected {kind.__name__}, got {_lookup(data, key)!r}"
    )
    return default


@dataclass(kw_only=True, slots=True)
class File:
    """Downloadable audio rendition of a track."""

    mp3_128: str

    @classmethod
    def from_json(cls, data: Any) -> "File | None":
        if not isinstance(data, dict):
            return None
        url = _typed(data, AUDIO_FORMAT, str)
        if not url:
            return None
        return cls(mp3_128=url)

    def to_json(self) -> dict[str, Any]:
        return {AUDIO_FORMAT: self.mp3_128}


@dataclass(kw_only=True, slots=True)
class TrackInfo:
    """Information about a single track."""

    id: int | None = None
    track_id: int = 0
    file: File | None = None
    artist: str | None = None
    title: str = ""
    track_num: int = 0
    duration: float = 0.0
    alt_link: str | None = None
    play_count: int | None = None
    is_capped: bool | None = None

    @property
    def downloadable(self) -> bool:
        return self.file is not None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "TrackInfo":
        return cls(
            id=_typed(data, "id", int),
            track_id=_typed(data, "track_id", int, 0),
            file=File.from_json(_lookup(data, "file")),
            artist=_typed(data, "artist", str),
            title=_typed(data, "title", str, ""),
            track_num=_typed(data, "track_num", int, 0),
            duration=_typed(data, "duration", float, 0.0),
            alt_link=_typed(data, "alt_link", str),
            play_count=_typed(data, "play_count", int),
            is_capped=_typed(data, "is_capped", bool),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "track_id": self.track_id,
            "file": self.file.to_json() if self.file else None,
            "artist": self.artist,
            "title": self.title,
            "track_num": self.track_num,
            "duration": self.duration,
            "alt_link": self.alt_link,
            "play_count": self.play_count,
            "is_capped": self.is_capped,
        }


@dataclass(kw_only=True, slots=True)
class Album:
    """An album with its ordered tracklist and cover image link."""

    name: str = ""
    artist: str = ""
    tracks: list[TrackInfo] = field(default_factory=list)
    cover_image_link: str = ""  # From og:image, not the JSON

    def to_json(self) -> dict[str, Any]:
        return {
            "Name": self.name,
            "Artist": self.artist,
            "trackinfo": [track.to_json() for track in self.tracks],
        }


@dataclass(kw_only=True, slots=True)
class DownloadSummary:
    """Outcome counts for one album."""

    downloaded: int = 0
    failed: int = 0
    skipped: int = 0


# -----------------------------------------------------------------------------
# Logging and Output
# -----------------------------------------------------------------------------


class ColorFormatter(logging.Formatter):
    """Colors console output by level, or by the record's ``block`` type.

    Block types: ``separator`` and ``header`` lines of an info block,
    ``key_value`` pairs (``key``/``value`` attributes), ``tracklist`` for
    the tracklist heading and ``raw`` for text printed as-is.
    """

    LEVEL_STYLES = {
        "DEBUG": (Fore.YELLOW, "[DEBUG]"),
        "INFO": (Fore.CYAN, "[INFO]"),
        "WARNING": (Fore.YELLOW, "[WARN]"),
        "ERROR": (Fore.RED, "[ERROR]"),
        "CRITICAL": (Fore.RED, "[FATAL]"),
    }
    BLOCK_COLORS = {"separator": Fore.GREEN, "header": Fore.CYAN}

    def format(self, record):
        block = getattr(record, "block", None)

        if block in self.BLOCK_COLORS:
            return f"{self.BLOCK_COLORS[block]}{record.getMessage()}{Style.RESET_ALL}"
        if block == "key_value":
            key = getattr(record, "key", "")
            value = getattr(record, "value", "")
            return f"{Fore.WHITE}{key}: {Fore.CYAN}{value}{Style.RESET_ALL}"
        if block == "raw":
            return record.getMessage()

        if block == "tracklist":
            color, prefix = Fore.MAGENTA, "[TRACKLIST]"
        else:
            color, prefix = self.LEVEL_STYLES.get(
                record.levelname, ("", f"[{record.levelname}]")
            )
        return f"{color}{prefix}{Style.RESET_ALL} {super().format(record)}"


def setup_logging(debug: bool = False) -> logging.Logger:
    """Attach the colored console handler to the bandscrape logger once."""
    logger = logging.getLogger(LOGGER_NAME)
    level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(level)

    for handler in logger.handlers:
        if isinstance(handler.formatter, ColorFormatter):
            handler.setLevel(level)
            return logger

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(ColorFormatter())
    logger.addHandler(console_handler)
    return logger


def log_block(logger: logging.Logger, lines: list[tuple[str, ...]]) -> None:
    """Log ``(text, block)`` and ``(key, value, "key_value")`` lines."""
    for line in lines:
        if len(line) == 3:
            key, value, _ = line
            logger.info("", extra={"block": "key_value", "key": key, "value": value})
        else:
            text, block = line
            logger.info(text, extra={"block": block})


# -----------------------------------------------------------------------------
# Core Components
# -----------------------------------------------------------------------------


def build_album_url(argument: str) -> str:
    """Turn the CLI argument into the album page URL.

    Full URLs are used as given. Otherwise the first path segment names
    the artist subdomain: ``artist/album/name`` becomes
    ``https://artist.bandcamp.com/album/name``.
    """
    argument = argument.strip()
    url = yarl.URL(argument)
    if url.scheme in ("http", "https") and url.host:
        return str(url)

    host, _, path = argument.strip("/").partition("/")
    if not host.endswith(SITE_DOMAIN):
        host = f"{host}.{SITE_DOMAIN}"
    return str(
        yarl.URL.build(scheme="https", host=host, path=f"/{path}" if path else "")
    )


class AlbumParser:
    """Decodes the data-tralbum JSON blob into an Album."""

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger

    def parse(self, raw: str) -> Album:
        """Parse the album JSON. Malformed payloads raise AlbumParseError."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise AlbumParseError(f"Failed to parse album JSON: {e}") from e

        if not isinstance(data, dict):
            raise AlbumParseError(
                f"Failed to parse album JSON: expected an object, got {type(data).__name__}"
            )

        raw_tracks = _lookup(data, "trackinfo")
        if raw_tracks is None:
            raw_tracks = []
        if not isinstance(raw_tracks, list) or not all(
            isinstance(entry, dict) for entry in raw_tracks
        ):
            raise AlbumParseError(
                "Failed to parse album JSON: trackinfo must be a list of objects"
            )

        album = Album(
            name=self._album_name(data),
            artist=_typed(data, "Artist", str, ""),
            tracks=[TrackInfo.from_json(entry) for entry in raw_tracks],
        )
        self.logger.debug(
            f"Parsed album {album.name!r} by {album.artist!r} with {len(album.tracks)} track(s)"
        )
        return album

    def _album_name(self, data: dict[str, Any]) -> str:
        """Album name, with fallbacks for the layout of live album pages."""
        name = _typed(data, "Name", str)
        if name is not None:
            return name

        current = _lookup(data, "current")
        if isinstance(current, dict):
            title = _typed(current, "title", str)
            if title is not None:
                self.logger.debug(f"Using current.title as album name: {title}")
                return title

        return _typed(data, "album_title", str, "")


class PageFetcher:
    """Fetches the album page and extracts the album JSON and cover link."""

    def __init__(self, config: Config, logger: logging.Logger) -> None:
        """Initialize the fetcher."""
        self.config = config
        self.logger = logger
        self.parser = AlbumParser(logger)

    def _make_soup(self, html: str | bytes) -> BeautifulSoup:
        """Create BeautifulSoup object using configured parser."""
        return BeautifulSoup(html, self.config.html_parser)

    async def fetch_page(self, session: aiohttp.ClientSession, url: str) -> bytes:
        """Fetch the album page once. Any failure is fatal.

        The raw body is returned so BeautifulSoup can detect the encoding.
        """
        self.logger.debug(f"Visiting {url}")
        try:
            async with session.get(url) as response:
                response.raise_for_status()
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PageFetchError(f"Error visiting the page {url}: {e!r}") from e

    def extract_album(self, html: str | bytes) -> Album:
        """Run both element handlers over the page."""
        soup = self._make_soup(html)

        script = soup.find("script", attrs={"data-tralbum": True})
        if script is None:
            raise AlbumParseError("No album data found on page")
        album = self.parser.parse(script["data-tralbum"])

        meta = soup.find("meta", attrs={"property": "og:image"})
        if meta is not None and meta.get("content"):
            album.cover_image_link = meta["content"]
        else:
            self.logger.warning("No cover image found on page")

        return album


class PathBuilder:
    """Destination paths and filesystem-safe filenames."""

    @staticmethod
    def destination_dir(config: Config, album: Album) -> Path:
        """Directory the album's tracks are written to."""
        return config.output_root / album.artist.lower() / album.name.lower()

    @staticmethod
    def ensure_directory(path: Path) -> None:
        """Create a directory and its parents if needed."""
        try:
            path.mkdir(parents=True, exist_ok=True)
        except (OSError, ValueError) as e:
            raise DestinationError(f"Failed to create directory {path}: {e}") from e

    @staticmethod
    def sanitize_filename(name: str, logger: logging.Logger) -> str:
        """Strip path separators from a filename, logging each removal."""
        kept = []
        for char in name:
            if char in ILLEGAL_FILENAME_CHARS:
                logger.info(f"Removed {char} from filename: {name}")
                continue
            kept.append(char)
        return "".join(kept)

    @staticmethod
    def track_filename(track: TrackInfo, logger: logging.Logger) -> str:
        return PathBuilder.sanitize_filename(
            f"{track.track_num}-{track.title}{TRACK_EXTENSION}", logger
        )


class TrackDownloader:
    """Downloads an album's tracks one at a time."""

    def __init__(self, config: Config, logger: logging.Logger) -> None:
        """Initialize the downloader."""
        self.config = config
        self.logger = logger

    def _display_tracklist(self, tracks: list[TrackInfo]) -> None:
        """Display the tracklist in a single call."""
        track_entries = []
        for track in tracks:
            marker = "" if track.downloadable else " (unavailable)"
            track_entries.append(f"{track.track_num}. {track.title}{marker}")

        self.logger.info(
            f"Tracklist ({len(tracks)} tracks):", extra={"block": "tracklist"}
        )
        self.logger.info("\n".join(track_entries), extra={"block": "raw"})

    async def _download_file(
        self,
        session: aiohttp.ClientSession,
        download_url: str,
        file_path: Path,
    ) -> bool:
        """Stream one remote file to disk, overwriting any existing file."""
        try:
            f = await aiofiles.open(file_path, "wb")
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to create file {file_path}: {e}")
            return False

        try:
            completed = await self._write_response(session, download_url, file_path, f)
        finally:
            await f.close()

        if not completed:
            # Clean up partial file on error
            file_path.unlink(missing_ok=True)
        return completed

    async def _write_response(
        self,
        session: aiohttp.ClientSession,
        download_url: str,
        file_path: Path,
        f: Any,
    ) -> bool:
        try:
            response = await session.get(download_url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Failed to download track {download_url}: {e!r}")
            return False

        async with response:
            try:
                response.raise_for_status()
            except aiohttp.ClientResponseError as e:
                self.logger.error(f"Failed to download track {download_url}: {e}")
                return False

            content_length = int(response.headers.get("Content-Length", 0))
            if content_length > 0:
                self.logger.debug(
                    f"{file_path.name}: {content_length / 1024 / 1024:.1f} MiB"
                )

            try:
                if self.config.chunk_size is None:
                    # Single write
                    await f.write(await response.read())
                else:
                    async for chunk in response.content.iter_chunked(
                        self.config.chunk_size
                    ):
                        await f.write(chunk)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                self.logger.error(f"Failed to write to file {file_path}: {e!r}")
                return False

        return True

    async def download_tracks(
        self,
        session: aiohttp.ClientSession,
        album: Album,
        album_dir: Path,
    ) -> DownloadSummary:
        """Download every available track of an album in listing order."""
        summary = DownloadSummary()
        if not album.tracks:
            self.logger.warning("No tracks found in album")
            return summary

        self._display_tracklist(album.tracks)

        for track in album.tracks:
            if track.file is None:
                self.logger.debug(f"Skipping unavailable track: {track.title}")
                summary.skipped += 1
                continue

            file_path = album_dir / PathBuilder.track_filename(track, self.logger)
            self.logger.info(f"Downloading track: {file_path.name}")

            if await self._download_file(session, track.file.mp3_128, file_path):
                self.logger.info(f"Successfully downloaded track: {file_path.name}")
                summary.downloaded += 1
            else:
                summary.failed += 1

        self.logger.info(
            f"Tracks completed: {summary.downloaded}/{len(album.tracks)} downloaded successfully"
        )
        if summary.skipped > 0:
            self.logger.info(f"{summary.skipped} track(s) not available for download")
        if summary.failed > 0:
            self.logger.warning(f"{summary.failed} track(s) failed to download")

        return summary


# -----------------------------------------------------------------------------
# Main Downloader
# -----------------------------------------------------------------------------


class BandcampDownloader:
    """Main downloader class for Bandcamp albums."""

    def __init__(self, config: Config, logger: logging.Logger | None = None) -> None:
        """Initialize the downloader."""
        self.config = config
        self.logger = logger or logging.getLogger(LOGGER_NAME)

        self.page_fetcher = PageFetcher(config, self.logger)
        self.track_downloader = TrackDownloader(config, self.logger)

        # Bounds connect and each read, not the whole transfer
        self.timeout = ClientTimeout(
            total=None,
            connect=config.connection_timeout,
            sock_read=config.read_timeout,
        )
        self.headers = {
            "User-Agent": config.user_agent,
            "Accept-Language": "en-US,en;q=0.5",
        }

    def _display_album_info(self, album: Album, album_dir: Path) -> None:
        """Display album information and configuration."""
        available = sum(1 for track in album.tracks if track.downloadable)

        lines = []
        lines.append(("=" * 60, "separator"))
        lines.append(("ALBUM INFORMATION", "header"))
        lines.append(("=" * 60, "separator"))
        lines.append(("Album", album.name, "key_value"))
        lines.append(("Artist", album.artist, "key_value"))
        lines.append(("Output", str(album_dir), "key_value"))
        lines.append(
            ("Tracks", f"{available}/{len(album.tracks)} available", "key_value")
        )
        lines.append(("-" * 60, "separator"))
        lines.append(("CONFIGURATION", "header"))
        lines.append(("-" * 60, "separator"))
        lines.append(("Embed Album Art", str(self.config.embed_album_art), "key_value"))
        lines.append(
            ("Chunk Size", str(self.config.chunk_size or "Single write"), "key_value")
        )
        lines.append(("HTML Parser", self.config.html_parser, "key_value"))
        lines.append(("=" * 60, "separator"))

        log_block(self.logger, lines)

    async def download_album(self, album_url: str) -> DownloadSummary:
        """Fetch the album page and download its tracks.

        Page, parse and directory errors propagate as BandscrapeError
        before any track is downloaded. Track failures are only counted.
        """
        self.logger.info(f"Processing album: {album_url}")

        async with aiohttp.ClientSession(
            headers=self.headers, timeout=self.timeout
        ) as session:
            html = await self.page_fetcher.fetch_page(session, album_url)
            album = self.page_fetcher.extract_album(html)

            album_dir = PathBuilder.destination_dir(self.config, album)
            PathBuilder.ensure_directory(album_dir)

            self._display_album_info(album, album_dir)

            summary = await self.track_downloader.download_tracks(
                session, album, album_dir
            )

        log_block(
            self.logger, [("Cover Image Link", album.cover_image_link, "key_value")]
        )
        return summary


# -----------------------------------------------------------------------------
# Command Line Interface
# -----------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    default_html_parser = Config.__dataclass_fields__["html_parser"].default_factory()

    parser = argparse.ArgumentParser(
        description="Bandcamp Album Downloader",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s https://artist.bandcamp.com/album/some-album
  %(prog)s artist/album/some-album
  %(prog)s --output "$HOME/Music" artist/album/some-album
        """,
    )

    parser.add_argument(
        "album", help="Album URL, or <artist>/album/<name> on bandcamp.com"
    )

    parser.add_argument(
        "--embed-album-art",
        action="store_true",
        default=Config.__dataclass_fields__["embed_album_art"].default,
        help="Embed the album art into tracks? (default: false)",
    )

    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help=f"Base output directory (default: ~/{DEFAULT_DIRECTORY})",
    )

    parser.add_argument(
        "-s",
        "--chunk-size",
        type=int,
        default=Config.__dataclass_fields__["chunk_size"].default,
        help=f"Chunk size in bytes, 0 for single write (default: {Config.__dataclass_fields__['chunk_size'].default})",
    )

    parser.add_argument(
        "-b",
        "--html-parser",
        type=str,
        choices=["html.parser", "lxml", "html5lib"],
        help=f"HTML parser to use (default: {default_html_parser})",
    )

    parser.add_argument(
        "-d", "--debug", action="store_true", help="Enable debug output"
    )

    parser.add_argument(
        "-v", "--version", action="version", version=f"%(prog)s {__version__}"
    )

    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns the process exit code."""
    args = parse_args(argv)

    # Set up logging for CLI usage
    logger = setup_logging(args.debug)

    if "album" not in args.album:
        logger.error("No album is provided.")
        return 1

    try:
        config = Config(
            base_dir=args.output,
            embed_album_art=args.embed_album_art,
            chunk_size=args.chunk_size if args.chunk_size != 0 else None,
            html_parser=(
                args.html_parser
                if args.html_parser
                else Config.__dataclass_fields__["html_parser"].default_factory()
            ),
            debug=args.debug,
        )
    except ValueError as e:
        print(f"{Fore.RED}Configuration error: {e}", file=sys.stderr)
        return 1

    downloader = BandcampDownloader(config, logger)

    try:
        summary = await downloader.download_album(build_album_url(args.album))
    except BandscrapeError as e:
        logger.error(str(e))
        return 1

    log_block(
        logger,
        [
            ("=" * 60, "separator"),
            ("SUMMARY", "header"),
            ("=" * 60, "separator"),
            ("Downloaded", str(summary.downloaded), "key_value"),
            ("Failed", str(summary.failed), "key_value"),
            ("Unavailable", str(summary.skipped), "key_value"),
            ("=" * 60, "separator"),
        ],
    )
    return 0


def main_sync() -> None:
    """Synchronous entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    main_sync()
