"""
Authorization-gated channel for running commands in a container.
"""

import logging
import time
from enum import Enum
from typing import BinaryIO, Optional

from ..errors import PermissionDenied
from ..metrics import EXEC_DURATION, EXEC_TOTAL
from ..models import RemoteTarget
from .executor import RemoteExecutor

logger = logging.getLogger(__name__)


class ChannelState(Enum):
    IDLE = "idle"
    AUTHORIZING = "authorizing"
    DENIED = "denied"
    AUTHORIZED = "authorized"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


# states from which a new exec may start
_EXEC_READY = (ChannelState.AUTHORIZED, ChannelState.COMPLETED, ChannelState.FAILED)


class RemoteChannel:
    """Runs typed commands against one target after an access review.

    No exec request is sent before authorize() has succeeded. Failed
    commands are not retried.
    """

    def __init__(self, executor: RemoteExecutor, target: RemoteTarget):
        self.executor = executor
        self.target = target
        self.state = ChannelState.IDLE

    def authorize(self):
        """Check that the current user can create pods/exec in the target namespace.

        Raises:
            PermissionDenied: if the access review denies the request
            TransportError: if the review itself fails
        """
        self.state = ChannelState.AUTHORIZING
        logger.debug(f"Reviewing exec access to namespace {self.target.namespace}")
        try:
            review = self.executor.review_access(self.target.namespace, self.target.timeout)
        except Exception:
            self.state = ChannelState.IDLE
            raise

        if not review.allowed:
            self.state = ChannelState.DENIED
            logger.error(f"Exec access to {self.target} denied: {review.reason or 'no reason given'}")
            raise PermissionDenied(review.reason or None)

        self.state = ChannelState.AUTHORIZED
        logger.info(f"Exec access to {self.target} granted")

    def exec(self, command, stdin: Optional[BinaryIO] = None,
             stdout: Optional[BinaryIO] = None,
             stderr: Optional[BinaryIO] = None,
             timeout: Optional[float] = None,
             tty: bool = False):
        """Run command in the target container, wiring up the given streams."""
        if self.state not in _EXEC_READY:
            raise PermissionDenied(f"channel is {self.state.value}, not authorized")

        argv = command.argv()
        timeout = timeout or self.target.timeout
        logger.debug(f"Running {command.name} in {self.target}: {argv}")

        self.state = ChannelState.STREAMING
        start_time = time.time()
        try:
            self.executor.stream(self.target, argv, stdin=stdin, stdout=stdout,
                                 stderr=stderr, tty=tty, timeout=timeout)
        except Exception as e:
            self.state = ChannelState.FAILED
            EXEC_TOTAL.labels(command=command.name, status="failed").inc()
            logger.debug(f"{command.name} failed in {self.target}: {str(e)}")
            raise
        finally:
            EXEC_DURATION.labels(command=command.name).observe(time.time() - start_time)

        self.state = ChannelState.COMPLETED
        EXEC_TOTAL.labels(command=command.name, status="success").inc()
