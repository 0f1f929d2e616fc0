"""Failure taxonomy of the session client.

Nothing here is fatal: the controller catches every one of these at its public
operations and turns it into a state transition plus a notice.
"""


class ClientError(Exception):
    """Base class for everything the session client raises on purpose."""


class ConnectionFailedError(ClientError, ConnectionError):
    """A room or ranked-queue channel could not be opened."""


class ProtocolError(ClientError):
    """An inbound frame was not a well-formed envelope for its action."""


class RejectedMoveError(ClientError):
    """The authority declined a move (illegal, malformed state, or server error)."""


class AuthenticationRequired(ClientError):
    """A privileged action was attempted without a valid credential."""


class UserCancelled(ClientError):
    """The user backed out of an in-flight action (promotion prompt, queue)."""
