"""Exceptions raised by libdetect."""


class LibDetectError(Exception):
    """Base class for libdetect errors."""


class InterfaceEnumerationError(LibDetectError):
    """The local network interfaces could not be listed."""


class ListenerError(LibDetectError):
    """The inbound listener could not bind its port."""
