"""Helpers for presenting errors to users."""

from ..models.errors import ClusterTransportError

# Messages produced when a request never reached the server
_IGNORABLE_NETWORK_MESSAGES = {"load failed", "failed to fetch"}


def is_ignorable_network_error(error: BaseException | None) -> bool:
    """Check whether an error is a generic connectivity blip.

    These happen routinely while a laptop sleeps or a VPN reconnects and the
    watch loop recovers from them on its own, so they are not worth showing.
    """
    if error is None:
        return False

    if isinstance(error, ClusterTransportError) and error.is_network_error:
        return True

    normalized = str(error).strip().lower()
    if not normalized:
        return False

    return normalized in _IGNORABLE_NETWORK_MESSAGES


def get_displayable_error(error: BaseException | None) -> BaseException | None:
    """Return the error unless it is an ignorable network failure."""
    if is_ignorable_network_error(error):
        return None
    return error


def describe_error(error: BaseException) -> str:
    """Short human readable description for notifications."""
    if isinstance(error, ClusterTransportError):
        return error.message
    return str(error) or type(error).__name__
