"""Deterministic runtime bridge exception hierarchy."""


class RuntimeBridgeError(Exception):
    """Base error type carrying stable taxonomy class/code fields."""

    error_class = "runtime"
    error_code = "RUNTIME_ERROR"

    def __init__(self, message: str, *, error_class: str | None = None, error_code: str | None = None):
        super().__init__(message)
        if error_class is not None:
            self.error_class = error_class
        if error_code is not None:
            self.error_code = error_code

    @property
    def message(self) -> str:
        return str(self)


class RuntimeProcessError(RuntimeBridgeError):
    """Transport-level failure talking to the supervised process."""

    error_class = "runtime_transport"
    error_code = "RUNTIME_TRANSPORT_FAILED"


class RuntimeSpawnError(RuntimeProcessError):
    """The operating system refused to start the runtime process."""

    error_code = "RUNTIME_SPAWN_FAILED"


class RuntimeNotRunningError(RuntimeProcessError):
    """No live process instance is available to write to."""

    error_code = "RUNTIME_NOT_RUNNING"


class RuntimeWriteError(RuntimeProcessError):
    """Writing a request line to the process stdin failed."""

    error_code = "RUNTIME_WRITE_FAILED"


class RuntimeExitedError(RuntimeProcessError):
    """Process exited while the request was still pending."""

    error_code = "RUNTIME_EXITED"


class RuntimeDisposedError(RuntimeProcessError):
    """Supervisor has been disposed and accepts no more work."""

    error_code = "RUNTIME_DISPOSED"


class RuntimeProtocolError(RuntimeBridgeError):
    """Well-formed exchange that ended in a protocol-level failure."""

    error_class = "runtime_protocol"
    error_code = "RUNTIME_PROTOCOL_FAILED"


class RuntimeCommandError(RuntimeProtocolError):
    """Response line explicitly reported ``success: false``."""

    error_code = "RUNTIME_COMMAND_FAILED"


class RuntimeCallTimeoutError(RuntimeProtocolError):
    """No matching response arrived before the call deadline."""

    error_code = "RUNTIME_TIMEOUT"
