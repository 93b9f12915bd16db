from __future__ import annotations


class RucheError(Exception):
    """Base for every error raised by the node lifecycle core."""


class CapacityExceeded(RucheError):
    pass


class IdUnavailable(RucheError):
    pass


class InvalidTemplate(RucheError):
    pass


class DirectoryAlreadyExists(RucheError):
    pass


class NodeNotFound(RucheError):
    pass


class ConfirmationRequired(RucheError):
    pass


class UpstreamFailure(RucheError):
    """A registry, filesystem, container runtime or lookup call failed.

    `origin` names the collaborator; the original exception is chained as
    `__cause__`.
    """

    def __init__(self, origin: str, message: str):
        super().__init__(f"{origin}: {message}")
        self.origin = origin
        self.message = message
