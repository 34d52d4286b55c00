"""Microphone permission gate.

:class:`CaptureGate` answers "may we record?" and always leaves the status in
one of ``unknown``, ``granted``, ``denied`` or ``prompt``.  Failures are never
raised to the caller; they are normalised into a :class:`CaptureError`
kept on :attr:`CaptureGate.last_error` together with remediation text.
"""

from enum import Enum
from typing import Optional

from loguru import logger

from .backend import CaptureBackend, classify_capture_exception
from .errors import CaptureError, FailureKind


class PermissionStatus(str, Enum):
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"


# Status reported after an explicit request fails with a given kind
REQUEST_STATUS = {
    FailureKind.ACCESS_DENIED: PermissionStatus.DENIED,
    FailureKind.NO_DEVICE: PermissionStatus.DENIED,
    FailureKind.DEVICE_BUSY: PermissionStatus.DENIED,
    FailureKind.UNSUPPORTED_CONSTRAINTS: PermissionStatus.PROMPT,
    FailureKind.NOT_SUPPORTED: PermissionStatus.DENIED,
    FailureKind.CANCELLED: PermissionStatus.PROMPT,
    FailureKind.INSECURE_CONTEXT: PermissionStatus.DENIED,
    FailureKind.UNKNOWN: PermissionStatus.PROMPT,
}

# Probe constraints for the non-prompting check: raw input, no processing
CHECK_CONSTRAINTS = {'channels': 1, 'echo_cancellation': False, 'noise_suppression': False}


class CaptureGate:
    """Negotiates microphone access through a :class:`CaptureBackend`."""

    def __init__(self, backend: CaptureBackend) -> None:
        self._backend = backend
        self.status = PermissionStatus.UNKNOWN
        self.last_error: Optional[CaptureError] = None
        self.checking = False

    @property
    def granted(self) -> bool:
        return self.status is PermissionStatus.GRANTED

    def _preflight(self) -> None:
        """Raise when capture is impossible regardless of permission."""
        if not self._backend.is_secure_context():
            raise CaptureError(FailureKind.INSECURE_CONTEXT)

    def check_permissions(self) -> PermissionStatus:
        """Probe availability, preferring the non-intrusive query."""
        self.checking = True
        self.last_error = None
        try:
            try:
                self._preflight()
                queried = self._backend.query_permission()
            except CaptureError as error:
                self.last_error = error
                self.status = PermissionStatus.DENIED
                return self.status

            if queried is not None:
                self.status = PermissionStatus(queried)
                logger.debug(f'Permission query answered: {self.status.value}')
                return self.status

            try:
                self._backend.probe(CHECK_CONSTRAINTS)
                self.status = PermissionStatus.GRANTED
            except (CaptureError, OSError, KeyboardInterrupt) as error:
                kind = classify_capture_exception(error)
                if kind in (FailureKind.ACCESS_DENIED, FailureKind.NO_DEVICE):
                    self.status = PermissionStatus.DENIED
                else:
                    self.status = PermissionStatus.PROMPT
                logger.debug(f'Permission probe failed ({kind.value}): {error}')
            return self.status
        finally:
            self.checking = False

    def request_permissions(self) -> bool:
        """Open and release a minimal capture stream.

        Returns:
            ``True`` when access is granted.  On failure :attr:`last_error`
            holds the classified error and its remediation message.
        """
        self.checking = True
        self.last_error = None
        try:
            self._preflight()
            logger.info('Requesting microphone access...')
            self._backend.probe()
            self.status = PermissionStatus.GRANTED
            logger.info('Microphone access granted')
            return True
        except (CaptureError, OSError, KeyboardInterrupt) as error:
            if isinstance(error, CaptureError):
                capture_error = error
            else:
                capture_error = CaptureError(classify_capture_exception(error), str(error))
            self.last_error = capture_error
            self.status = REQUEST_STATUS[capture_error.kind]
            logger.warning(f'Permission request failed ({capture_error.kind.value}): {error}')
            return False
        finally:
            self.checking = False
