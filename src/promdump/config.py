"""
Configuration settings for promdump.
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

# Load environment variables from .env file
load_dotenv()

DEFAULT_VERSION = "v0.2.0"

# The upload is only skipped when the program already in the container
# answers -version with this package's __version__. The release tarball's
# program has no -version flag, so with this default it is uploaded on
# every run. Point PROMDUMP_DOWNLOAD_URI at a build of promdump.cli.extractor
# to reuse it.
DEFAULT_DOWNLOAD_URI = (
    "https://github.com/ihcsim/promdump/releases/download/"
    f"{DEFAULT_VERSION}/promdump-{DEFAULT_VERSION}.tar.gz"
)


@dataclass
class PromdumpConfig:
    namespace: str
    container: str
    data_dir: str
    request_timeout: float
    transfer_timeout: float
    cache_dir: str
    download_uri: str
    checksum_uri: str
    force_download: bool
    debug: bool
    log_level: str
    metrics_file: Optional[str] = None

    @property
    def extractor_path(self) -> str:
        return f"{self.data_dir.rstrip('/')}/promdump"


def _float_env(name: str, default: str) -> float:
    value = os.getenv(name, default)
    try:
        timeout = float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number of seconds, got {value!r}")
    if timeout <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")
    return timeout


def load_config() -> PromdumpConfig:
    """Load promdump configuration from environment variables."""
    download_uri = os.getenv('PROMDUMP_DOWNLOAD_URI', DEFAULT_DOWNLOAD_URI)

    return PromdumpConfig(
        namespace=os.getenv('PROMDUMP_NAMESPACE', 'default'),
        container=os.getenv('PROMDUMP_CONTAINER', 'prometheus-server'),
        data_dir=os.getenv('PROMDUMP_DATA_DIR', '/data'),
        request_timeout=_float_env('PROMDUMP_REQUEST_TIMEOUT', '10'),
        transfer_timeout=_float_env('PROMDUMP_TRANSFER_TIMEOUT', '600'),
        cache_dir=os.path.expanduser(os.getenv('PROMDUMP_CACHE_DIR', '~/.cache/promdump')),
        download_uri=download_uri,
        checksum_uri=os.getenv('PROMDUMP_CHECKSUM_URI', f"{download_uri}.sha256"),
        force_download=os.getenv('PROMDUMP_FORCE_DOWNLOAD', 'false').lower() == 'true',
        debug=os.getenv('PROMDUMP_DEBUG', 'false').lower() == 'true',
        log_level=os.getenv('LOG_LEVEL', 'ERROR').upper(),
        metrics_file=os.getenv('PROMDUMP_METRICS_FILE') or None,
    )
