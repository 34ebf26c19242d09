"""
PAX Error Types
Exceptions raised by the PAX terminal client and the bridge service
"""


class PaxError(Exception):
    """Base class for all PAX terminal errors"""


class ConfigurationError(PaxError, ValueError):
    """Terminal address, port or timeout is missing or invalid"""


class InvalidFieldError(PaxError, ValueError):
    """A sale field cannot be framed (bad amount, unknown key, control byte in value)"""


class TransportError(PaxError):
    """No usable reply reached us: refused, unreachable, HTTP error or empty body.

    No transaction result is known when this is raised.
    """


class TerminalTimeoutError(TransportError):
    """The terminal did not answer before the configured timeout.

    The terminal may still complete the card transaction after we stopped
    waiting, so any retry needs a fresh reference number.
    """


class TerminalBusyError(PaxError):
    """Another sale is already in flight on the same terminal"""


class LicenseError(PaxError):
    """License validation was rejected or could not be performed"""
