"""
Download cache for the promdump extraction artifact.
"""

import hashlib
import logging
import os
import tempfile
import time
from typing import BinaryIO, Optional
from urllib.parse import urlparse

import requests
from urllib3.exceptions import ReadTimeoutError

from ..errors import ChecksumMismatch, ConfigurationError, RemoteTimeout, TransportError
from ..metrics import CHECKSUM_FAILURES, DOWNLOAD_CACHE_HITS, DOWNLOAD_DURATION
from ..models import CachedArtifact

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def sha256_file(f: BinaryIO) -> str:
    hasher = hashlib.sha256()
    for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
        hasher.update(chunk)
    return hasher.hexdigest()


class ArtifactDistributor:
    """Downloads artifacts into a local cache directory and verifies them.

    A cached file is trusted as-is unless a re-download is forced; only
    verified downloads are ever moved into the cache.
    """

    def __init__(self, cache_dir: str, timeout: float, session: Optional[requests.Session] = None):
        self.cache_dir = cache_dir
        self.timeout = timeout
        self.session = session or requests.Session()

    def local_path(self, remote_uri: str) -> str:
        filename = os.path.basename(urlparse(remote_uri).path)
        if not filename:
            raise ConfigurationError(f"can't derive an artifact name from {remote_uri!r}")
        return os.path.join(self.cache_dir, filename)

    def cached(self, remote_uri: str, checksum_uri: str = "") -> Optional[CachedArtifact]:
        """Return the cache entry for remote_uri, if there is one."""
        path = self.local_path(remote_uri)
        if not os.path.isfile(path):
            return None
        return CachedArtifact(remote_uri=remote_uri, local_path=path, checksum_uri=checksum_uri)

    def fetch(self, force: bool, remote_uri: str, checksum_uri: str) -> BinaryIO:
        """Return an open file for the artifact, downloading it if needed.

        The caller is responsible for closing the returned file.

        Raises:
            ChecksumMismatch: if the download doesn't match the published checksum
            TransportError: on connection failures and non-success responses
            RemoteTimeout: if a request exceeds the timeout
        """
        if not checksum_uri:
            raise ConfigurationError("a checksum URI is required to verify the artifact")

        saved_path = self.local_path(remote_uri)
        if not force:
            try:
                f = open(saved_path, "rb")
                DOWNLOAD_CACHE_HITS.inc()
                logger.info(f"Using cached artifact {saved_path}")
                return f
            except FileNotFoundError:
                pass

        os.makedirs(self.cache_dir, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".download-", dir=self.cache_dir)
        try:
            with os.fdopen(fd, "w+b") as tmp:
                self._download(remote_uri, tmp)
                tmp.seek(0)
                self._verify(tmp, checksum_uri)
            os.replace(tmp_path, saved_path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        return open(saved_path, "rb")

    def _get(self, uri: str) -> requests.Response:
        try:
            response = self.session.get(uri, stream=True, timeout=self.timeout)
        except requests.Timeout as e:
            raise RemoteTimeout(f"request to {uri} timed out after {self.timeout}s: {str(e)}")
        except requests.RequestException as e:
            raise TransportError(f"request to {uri} failed: {str(e)}")

        if not 200 <= response.status_code < 300:
            response.close()
            raise TransportError(
                f"download failed. reason: {response.status_code} {response.reason}"
            )
        return response

    def _download(self, remote_uri: str, dest: BinaryIO):
        logger.info(f"Downloading {remote_uri} (timeout {self.timeout}s)")
        start_time = time.time()

        response = self._get(remote_uri)
        written = 0
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    dest.write(chunk)
                    written += len(chunk)
        except requests.Timeout as e:
            raise RemoteTimeout(f"download of {remote_uri} timed out: {str(e)}")
        except requests.ConnectionError as e:
            # iter_content reports read timeouts as connection errors
            if any(isinstance(arg, ReadTimeoutError) for arg in e.args):
                raise RemoteTimeout(f"download of {remote_uri} timed out: {str(e)}")
            raise TransportError(f"download of {remote_uri} failed: {str(e)}")
        except requests.RequestException as e:
            raise TransportError(f"download of {remote_uri} failed: {str(e)}")
        finally:
            response.close()

        DOWNLOAD_DURATION.observe(time.time() - start_time)
        logger.info(f"Download completed: {written} bytes")

    def _verify(self, f: BinaryIO, checksum_uri: str):
        logger.info(f"Verifying checksum from {checksum_uri}")
        response = self._get(checksum_uri)
        try:
            document = response.text
        finally:
            response.close()

        tokens = document.split()
        if not tokens:
            raise TransportError(f"checksum document at {checksum_uri} is empty")
        expected = tokens[0].lower()

        actual = sha256_file(f)
        if actual != expected:
            CHECKSUM_FAILURES.inc()
            raise ChecksumMismatch(expected, actual)

        logger.info("Confirmed checksum")
