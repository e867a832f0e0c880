"""The single failure type for provisioning runs."""


class FatalAbort(Exception):
    """Abort the whole run with a one-line diagnosis.

    Every failure path (unsupported platform, package install, clone/pull,
    invalid wallet selection, supervisor start, ...) converges here. The CLI
    prints the message to stderr and exits with status 1.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message
