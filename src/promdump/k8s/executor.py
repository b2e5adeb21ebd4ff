"""
Kubernetes transport for remote commands.

RemoteExecutor is the capability the channel depends on; KubernetesExecutor
implements it on top of the pod exec subresource.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Tuple

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream
from kubernetes.stream.ws_client import ERROR_CHANNEL
from urllib3.exceptions import HTTPError as Urllib3HTTPError
from urllib3.exceptions import MaxRetryError
from urllib3.exceptions import TimeoutError as Urllib3Timeout
from websocket import WebSocketException, WebSocketTimeoutException

from ..errors import ConfigurationError, RemoteCommandError, RemoteTimeout, TransportError
from ..models import RemoteTarget

logger = logging.getLogger(__name__)

STDIN_CHUNK_SIZE = 32 * 1024
STDIN_CHUNKS_PER_CYCLE = 8
STDERR_TAIL_SIZE = 4096
MIN_SOCKET_TIMEOUT = 0.01


@dataclass
class AccessReview:
    allowed: bool
    reason: str = ""


class RemoteExecutor(ABC):
    """Runs commands in a remote container."""

    @abstractmethod
    def review_access(self, namespace: str, timeout: float) -> AccessReview:
        """Check whether the current user may create pods/exec in namespace."""

    @abstractmethod
    def stream(self, target: RemoteTarget, argv: List[str],
               stdin: Optional[BinaryIO] = None,
               stdout: Optional[BinaryIO] = None,
               stderr: Optional[BinaryIO] = None,
               tty: bool = False,
               timeout: Optional[float] = None) -> None:
        """Run argv in target, wiring up the given streams.

        Raises:
            RemoteCommandError: if the command exits with a non-zero status
            RemoteTimeout: if timeout expires before the command completes
            TransportError: if the stream can't be set up or breaks
        """


def load_kube_config(context: Optional[str] = None):
    """Load in-cluster config, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        try:
            config.load_kube_config(context=context)
        except config.ConfigException as e:
            raise ConfigurationError(f"can't load kubernetes configuration: {str(e)}")


def _transport_error(action: str, e: Exception) -> TransportError:
    if isinstance(e, ApiException):
        return TransportError(f"{action} failed: {e.status} {e.reason}")
    if isinstance(e, (Urllib3Timeout, WebSocketTimeoutException)):
        return RemoteTimeout(f"{action} timed out: {str(e)}")
    if isinstance(e, MaxRetryError) and isinstance(e.reason, Urllib3Timeout):
        return RemoteTimeout(f"{action} timed out: {str(e.reason)}")
    return TransportError(f"{action} failed: {str(e)}")


class KubernetesExecutor(RemoteExecutor):
    """Executes commands through the Kubernetes API server."""

    def __init__(self, core_api: Optional[client.CoreV1Api] = None,
                 authz_api: Optional[client.AuthorizationV1Api] = None,
                 poll_interval: float = 0.1):
        self.core_api = core_api or client.CoreV1Api()
        self.authz_api = authz_api or client.AuthorizationV1Api()
        self.poll_interval = poll_interval

    def review_access(self, namespace: str, timeout: float) -> AccessReview:
        review = client.V1SelfSubjectAccessReview(
            spec=client.V1SelfSubjectAccessReviewSpec(
                resource_attributes=client.V1ResourceAttributes(
                    namespace=namespace,
                    verb="create",
                    group="",
                    resource="pods",
                    subresource="exec",
                )
            )
        )

        try:
            response = self.authz_api.create_self_subject_access_review(
                body=review, _request_timeout=timeout
            )
        except (ApiException, Urllib3HTTPError) as e:
            raise _transport_error("access review", e)

        status = response.status
        return AccessReview(allowed=bool(status.allowed), reason=status.reason or "")

    def stream(self, target: RemoteTarget, argv: List[str],
               stdin: Optional[BinaryIO] = None,
               stdout: Optional[BinaryIO] = None,
               stderr: Optional[BinaryIO] = None,
               tty: bool = False,
               timeout: Optional[float] = None) -> None:
        deadline = time.monotonic() + timeout if timeout else None
        resp = self._connect(target, argv, stdin is not None, stdout is not None, tty,
                             timeout or target.timeout)

        stderr_tail = bytearray()
        pending = stdin
        try:
            sock = getattr(resp, "sock", None)
            if sock is not None:
                # bounds blocking sends on a stalled connection
                remaining = deadline - time.monotonic() if deadline is not None else target.timeout
                sock.settimeout(max(remaining, MIN_SOCKET_TIMEOUT))

            while resp.is_open():
                if deadline is not None and time.monotonic() > deadline:
                    raise RemoteTimeout(f"command {argv[0]!r} in {target} exceeded {timeout}s")

                # don't wait on output while there is still input to send
                resp.update(timeout=0 if pending is not None else self.poll_interval)
                self._drain(resp, stdout, stderr, stderr_tail)

                if pending is not None:
                    for _ in range(STDIN_CHUNKS_PER_CYCLE):
                        chunk = pending.read(STDIN_CHUNK_SIZE)
                        if not chunk:
                            pending = None
                            break
                        resp.write_stdin(chunk)

            self._drain(resp, stdout, stderr, stderr_tail)
            exit_code, message = self._exit_status(resp)
        except (WebSocketException, OSError) as e:
            raise _transport_error(f"exec stream to {target}", e)
        finally:
            resp.close()

        if exit_code != 0:
            stderr_text = stderr_tail.decode("utf-8", errors="replace").strip()
            raise RemoteCommandError(argv, exit_code, stderr_text or message)

    def _connect(self, target: RemoteTarget, argv: List[str], stdin: bool, stdout: bool,
                 tty: bool, timeout: float):
        """Open the exec stream, giving up after timeout seconds.

        The websocket handshake has no timeout of its own, so it runs on a
        worker thread. A stream that connects after the caller gave up is
        closed by the worker.
        """
        lock = threading.Lock()
        outcome = {}

        def connect():
            try:
                resp = stream(
                    self.core_api.connect_get_namespaced_pod_exec,
                    target.pod_name,
                    target.namespace,
                    container=target.container_name,
                    command=list(argv),
                    stdin=stdin,
                    stdout=stdout,
                    stderr=True,
                    tty=tty,
                    binary=True,
                    _preload_content=False,
                    _request_timeout=target.timeout,
                )
            except Exception as e:
                with lock:
                    outcome["error"] = e
                return

            with lock:
                if outcome.get("abandoned"):
                    logger.debug(f"Closing exec stream to {target} opened after the timeout")
                    resp.close()
                else:
                    outcome["resp"] = resp

        worker = threading.Thread(target=connect, name=f"exec-connect-{target.pod_name}",
                                  daemon=True)
        worker.start()
        worker.join(timeout)

        with lock:
            if "resp" in outcome:
                return outcome["resp"]
            error = outcome.get("error")
            if error is None:
                outcome["abandoned"] = True
                raise RemoteTimeout(f"exec into {target} not established within {timeout}s")

        if isinstance(error, (ApiException, Urllib3HTTPError, WebSocketException, OSError)):
            raise _transport_error(f"exec into {target}", error)
        raise error

    def _drain(self, resp, stdout, stderr, stderr_tail: bytearray):
        if resp.peek_stdout():
            data = resp.read_stdout()
            if stdout is not None:
                stdout.write(data)
        if resp.peek_stderr():
            data = resp.read_stderr()
            stderr_tail.extend(data)
            del stderr_tail[:-STDERR_TAIL_SIZE]
            if stderr is not None:
                stderr.write(data)

    def _exit_status(self, resp) -> Tuple[int, str]:
        """Parse the v1.Status the API server sends on the error channel.

        Failures without an exit code, such as a missing executable, are
        reported as status 126 with the server's message.
        """
        status = yaml.safe_load(resp.read_channel(ERROR_CHANNEL) or "")
        if not isinstance(status, dict):
            raise TransportError("exec stream closed without reporting a status")

        if status.get("status") == "Success":
            return 0, ""

        message = status.get("message") or ""
        causes = (status.get("details") or {}).get("causes") or []
        for cause in causes:
            if cause.get("reason") == "ExitCode":
                try:
                    return int(cause.get("message")), message
                except (TypeError, ValueError):
                    break
        return 126, message
