"""
Error taxonomy for discovery and synchronization
"""


class FanBridgeError(Exception):
    """Base class for all fan bridge errors"""


class NoInterfaceError(FanBridgeError):
    """No usable local network interface"""


class ProbeFailure(FanBridgeError):
    """Host did not answer a reachability check"""


class FanRequestError(FanBridgeError):
    """Transport, HTTP or payload error talking to a fan"""


class VerificationFailure(FanBridgeError):
    """Candidate address did not answer the fan protocol"""


class PollFailure(FanBridgeError):
    """Status request failed during a poll cycle"""


class PushFailure(FanBridgeError):
    """Update request was rejected or the fan was unreachable"""


class RelayConfigError(FanBridgeError):
    """Message bus connection string is malformed"""
