"""
HTTP downloads with streaming SHA-256 verification.

- Streams the response body to disk in chunks
- Computes the checksum while writing
- Retries transport failures (connection errors, timeouts) with backoff
- Fails immediately on a non-2xx status
- Removes the partial or corrupt file on any failure
"""

import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

import requests
from requests.exceptions import ChunkedEncodingError, ConnectionError, Timeout

from npmkit import __version__
from npmkit.core.exceptions import DownloadError, IntegrityError

logger = logging.getLogger(__name__)

USER_AGENT = f"npmkit/{__version__}"
CHUNK_SIZE = 64 * 1024

_TRANSIENT_ERRORS = (ConnectionError, Timeout, ChunkedEncodingError)


@dataclass
class DownloadProgress:
    """Progress information for a download."""

    bytes_downloaded: int
    total_bytes: int
    percentage: float
    speed_bps: float  # bytes per second
    eta_seconds: float

    def __str__(self) -> str:
        return format_progress(self)


class StreamingHasher:
    """Compute a SHA-256 digest incrementally."""

    def __init__(self):
        self.hasher = hashlib.sha256()

    def update(self, data: bytes) -> None:
        self.hasher.update(data)

    def finalize(self) -> str:
        return self.hasher.hexdigest()

    def verify(self, expected_hash: str) -> bool:
        return self.finalize().lower() == expected_hash.strip().lower()


def download_file(
    url: str,
    destination: Path,
    expected_sha256: Optional[str] = None,
    progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
    timeout: float = 30,
    max_retries: int = 3,
) -> Path:
    """
    Download a URL to a file.

    Args:
        url: URL to download
        destination: File to write
        expected_sha256: Expected SHA-256 hex digest, verified while streaming
        progress_callback: Optional callback, called at most twice per second
        timeout: Connect/read timeout in seconds
        max_retries: Attempts for transport failures

    Returns:
        destination

    Raises:
        DownloadError: On a non-2xx response or when every attempt failed
        IntegrityError: If the digest does not match expected_sha256

    Example:
        >>> download_file(
        ...     "https://nodejs.org/dist/v20.11.0/node-v20.11.0-linux-x64.tar.xz",
        ...     Path("/tmp/node.tar.xz"),
        ...     expected_sha256="822780369d0ea309e7d218e41debbd1a03f8cdf354ebf8a4420e89f39cc2e612",
        ... )
    """
    if not url:
        raise ValueError("URL cannot be empty")

    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    attempts = max(1, max_retries)

    for attempt in range(attempts):
        try:
            return _download_once(
                url, destination, expected_sha256, progress_callback, timeout
            )
        except _TRANSIENT_ERRORS as e:
            destination.unlink(missing_ok=True)
            if attempt == attempts - 1:
                raise DownloadError(
                    url, f"failed after {attempts} attempt(s): {e}"
                ) from e
            backoff_seconds = 2**attempt
            logger.warning(
                f"Download attempt {attempt + 1} failed: {e}. "
                f"Retrying in {backoff_seconds}s..."
            )
            time.sleep(backoff_seconds)
        except requests.RequestException as e:
            destination.unlink(missing_ok=True)
            raise DownloadError(url, str(e) or type(e).__name__) from e
        except OSError as e:
            destination.unlink(missing_ok=True)
            raise DownloadError(url, f"cannot write {destination}: {e}") from e
        except BaseException:
            destination.unlink(missing_ok=True)
            raise

    raise DownloadError(url, "no download attempt was made")


def _download_once(
    url: str,
    destination: Path,
    expected_sha256: Optional[str],
    progress_callback: Optional[Callable[[DownloadProgress], None]],
    timeout: float,
) -> Path:
    logger.info(f"Downloading {url}")

    with requests.get(
        url,
        headers={"User-Agent": USER_AGENT},
        stream=True,
        timeout=timeout,
        allow_redirects=True,
    ) as response:
        if not response.ok:
            raise DownloadError(url, f"HTTP {response.status_code} {response.reason}")

        total_size = int(response.headers.get("content-length") or 0)
        hasher = StreamingHasher()
        downloaded = 0
        start_time = time.monotonic()
        last_report = start_time
        reported = 0

        with open(destination, "wb") as f:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                f.write(chunk)
                hasher.update(chunk)
                downloaded += len(chunk)

                now = time.monotonic()
                if progress_callback and (
                    now - last_report >= 0.5 or downloaded == total_size
                ):
                    progress_callback(
                        _progress(downloaded, total_size, now - start_time)
                    )
                    last_report = now
                    reported = downloaded

        if progress_callback and reported != downloaded:
            elapsed = time.monotonic() - start_time
            progress_callback(_progress(downloaded, total_size, elapsed))

    if expected_sha256:
        if not hasher.verify(expected_sha256):
            destination.unlink(missing_ok=True)
            raise IntegrityError(
                destination.name, expected_sha256.lower(), hasher.finalize()
            )
        logger.debug(f"Checksum verified for {destination.name}")

    logger.info(f"Download complete: {destination.name} ({downloaded} bytes)")
    return destination


def _progress(downloaded: int, total: int, elapsed: float) -> DownloadProgress:
    speed = downloaded / elapsed if elapsed > 0 else 0.0
    remaining = total - downloaded if total > 0 else 0
    return DownloadProgress(
        bytes_downloaded=downloaded,
        total_bytes=total if total > 0 else downloaded,
        percentage=(downloaded / total * 100) if total > 0 else 0.0,
        speed_bps=speed,
        eta_seconds=remaining / speed if speed > 0 else 0.0,
    )


def fetch_text(url: str, timeout: float = 30, headers: Optional[Dict] = None) -> str:
    """
    GET a small text document (checksum lists, version indexes).

    Raises:
        DownloadError: On a non-2xx response or transport failure
    """
    request_headers = {"User-Agent": USER_AGENT}
    request_headers.update(headers or {})
    try:
        response = requests.get(url, headers=request_headers, timeout=timeout)
    except requests.RequestException as e:
        raise DownloadError(url, str(e)) from e

    if not response.ok:
        raise DownloadError(url, f"HTTP {response.status_code} {response.reason}")
    return response.text


def compute_sha256(file_path: Path) -> str:
    hasher = StreamingHasher()
    with open(file_path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            hasher.update(chunk)
    return hasher.finalize()


def verify_checksum(file_path: Path, expected_sha256: str) -> bool:
    """
    Check a file on disk against a SHA-256 digest.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    if not Path(file_path).exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    return compute_sha256(file_path) == expected_sha256.strip().lower()


def format_progress(progress: DownloadProgress) -> str:
    """
    Format progress for display.

    Example:
        >>> print(format_progress(DownloadProgress(52428800, 104857600, 50.0, 1048576, 50)))
        50.0/100.0 MB (50.0%) at 1.0 MB/s ETA: 50s
    """
    mb_downloaded = progress.bytes_downloaded / 1024 / 1024
    mb_total = progress.total_bytes / 1024 / 1024
    speed_mbps = progress.speed_bps / 1024 / 1024

    if progress.percentage > 0:
        return (
            f"{mb_downloaded:.1f}/{mb_total:.1f} MB ({progress.percentage:.1f}%) "
            f"at {speed_mbps:.1f} MB/s ETA: {progress.eta_seconds:.0f}s"
        )
    return f"{mb_downloaded:.1f} MB at {speed_mbps:.1f} MB/s"
