"""Exception hierarchy shared by the discovery, rendezvous and punching layers."""


class PunchHubError(Exception):
    """Base class for every error raised by punchhub."""


# --- Transport ---

class TransportError(PunchHubError):
    """The local UDP socket could not be created, written to or read from."""


class PeerUnreachableError(TransportError):
    """The kernel reported an ICMP port-unreachable for a datagram we sent."""


# --- Discovery (STUN) ---

class StunDecodeError(PunchHubError):
    """The discovery server answered, but the answer is unusable."""


class TruncatedError(StunDecodeError):
    pass


class MalformedHeaderError(StunDecodeError):
    pass


class IncompleteMessageError(StunDecodeError):
    pass


class TrailingDataError(StunDecodeError):
    pass


class TransactionMismatchError(StunDecodeError):
    pass


class AttributeTruncatedError(StunDecodeError):
    pass


class UnknownRequiredAttributeError(StunDecodeError):
    def __init__(self, attr_type: int):
        super().__init__(f"Unknown comprehension-required attribute: {attr_type:#06x}")
        self.attr_type = attr_type


class InvalidAddressLengthError(StunDecodeError):
    pass


class UnknownAddressFamilyError(StunDecodeError):
    pass


class NoAddressAttributeError(StunDecodeError):
    pass


class OversizedResponseError(StunDecodeError):
    pass


class NoResponseError(PunchHubError):
    """The retry budget ran out without a single answer from the server."""

    def __init__(self, attempts: int):
        super().__init__(f"No response from server after {attempts} retries")
        self.attempts = attempts


# --- Rendezvous ---

class HandshakeParseError(PunchHubError):
    """A channel entry does not carry a usable hub message."""


class RendezvousError(PunchHubError):
    """The rendezvous channel is unreachable or refused the request."""
