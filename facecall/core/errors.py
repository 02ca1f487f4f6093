# facecall/core/errors.py


class FacecallError(Exception):
    """Base class for every error raised by facecall."""


class MediaError(FacecallError):
    """Local media used incorrectly (e.g. acquired twice)."""


class MediaAcquisitionError(MediaError):
    """Camera or microphone could not be opened (no device, permission denied)."""


class NegotiationError(FacecallError):
    """
    Offer/answer generation or description setting failed.

    The attempted connection is abandoned; the user must start again.
    """


class ProtocolError(FacecallError):
    """An inbound frame is not valid JSON or not a known message kind."""
