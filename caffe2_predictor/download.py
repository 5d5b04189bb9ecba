"""
ARTIFACT DOWNLOAD MANAGER

Fetches model graphs, weights, label files and archives over HTTP.

SEMANTICS:
- Files already present on disk are reused (no network I/O)
- Downloads stream to "<target>.part" and are renamed on success
- Checksums are MD5 hex digests, verified only when enabled
- Failures raise DownloadError; nothing is retried
"""

import asyncio
import hashlib
import os
import shutil
import tarfile
import zipfile

import aiohttp
from loguru import logger

from .errors import ChecksumMismatchError, DownloadError

_CHUNK_SIZE = 1 << 16


def md5sum(path: str) -> str:
    """Return the MD5 hex digest of a file."""
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class DownloadManager:
    """
    HTTP artifact downloader with an on-disk cache.

    The cache key is the target path: one model's artifacts live in that
    model's work directory.
    """

    def __init__(self, timeout_seconds: float = 300.0, verify_checksums: bool = False):
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.verify_checksums = verify_checksums

    def _checksum_ok(self, path: str, checksum: str) -> bool:
        if not self.verify_checksums or not checksum:
            return True
        return md5sum(path).lower() == checksum.lower()

    async def download_file(self, url: str, target_path: str, checksum: str = "") -> str:
        """
        Download ``url`` to ``target_path`` unless it is already cached.

        Args:
            url: Source URL
            target_path: Destination file path
            checksum: Expected MD5 digest ("" = unknown)

        Returns:
            The target path

        Raises:
            DownloadError: On empty URL, HTTP error or transport failure
            ChecksumMismatchError: If verification is enabled and fails
        """
        if not url:
            raise DownloadError(f"empty url for {target_path}")

        if os.path.exists(target_path):
            if self._checksum_ok(target_path, checksum):
                logger.debug(f"Using cached {target_path}")
                return target_path
            logger.warning(f"Cached {target_path} failed checksum, downloading again")
            os.remove(target_path)

        directory = os.path.dirname(target_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        partial_path = target_path + ".part"

        logger.info(f"Downloading {url} -> {target_path}")
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise DownloadError(
                            f"failed to download {url}: HTTP {response.status}"
                        )
                    with open(partial_path, "wb") as f:
                        async for chunk in response.content.iter_chunked(_CHUNK_SIZE):
                            f.write(chunk)
        except aiohttp.ClientError as e:
            self._discard(partial_path)
            raise DownloadError(f"failed to download {url}: {e}") from e
        except DownloadError:
            self._discard(partial_path)
            raise
        except asyncio.TimeoutError as e:
            self._discard(partial_path)
            raise DownloadError(f"timed out downloading {url}") from e

        os.replace(partial_path, target_path)

        if self.verify_checksums and checksum:
            actual = md5sum(target_path)
            if actual.lower() != checksum.lower():
                os.remove(target_path)
                raise ChecksumMismatchError(target_path, checksum, actual)

        return target_path

    async def download_archive(self, url: str, target_dir: str, checksum: str = "") -> str:
        """
        Download an archive into ``target_dir`` and unpack it there.

        Supported formats: .tar, .tar.gz, .tgz, .zip

        Returns:
            The target directory
        """
        archive_name = os.path.basename(url.split("?", 1)[0].rstrip("/")) or "archive"
        archive_path = os.path.join(target_dir, archive_name)
        await self.download_file(url, archive_path, checksum)
        unpack_archive(archive_path, target_dir)
        return target_dir

    @staticmethod
    def _discard(path: str) -> None:
        if os.path.exists(path):
            os.remove(path)


def unpack_archive(archive_path: str, target_dir: str) -> None:
    """
    Unpack a tar or zip archive, refusing members that escape ``target_dir``.

    Raises:
        DownloadError: If the archive format is unknown or a member is unsafe
    """
    root = os.path.realpath(target_dir)

    def _safe(member_name: str) -> str:
        dest = os.path.realpath(os.path.join(root, member_name))
        if dest != root and not dest.startswith(root + os.sep):
            raise DownloadError(f"unsafe path {member_name!r} in {archive_path}")
        return dest

    if zipfile.is_zipfile(archive_path):
        with zipfile.ZipFile(archive_path) as zf:
            for name in zf.namelist():
                _safe(name)
            zf.extractall(root)
        return

    if tarfile.is_tarfile(archive_path):
        with tarfile.open(archive_path) as tf:
            members = tf.getmembers()
            for member in members:
                _safe(member.name)
                if member.issym() or member.islnk():
                    raise DownloadError(f"links not allowed in {archive_path}: {member.name}")
            for member in members:
                dest = os.path.join(root, member.name)
                if member.isdir():
                    os.makedirs(dest, exist_ok=True)
                    continue
                source = tf.extractfile(member)
                if source is None:
                    continue
                os.makedirs(os.path.dirname(dest), exist_ok=True)
                with source, open(dest, "wb") as out:
                    shutil.copyfileobj(source, out)
        return

    raise DownloadError(f"unsupported archive format: {archive_path}")

