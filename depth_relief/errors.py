"""Typed failures raised by the synthesis and export steps."""


class ReliefError(RuntimeError):
    """Base class for every failure raised by depth_relief."""


class DecodeFailure(ReliefError):
    """An image could not be read or decoded."""


class DimensionMismatch(ReliefError):
    """Color and depth buffers could not be reconciled to equal dimensions."""


class ExportNotReady(ReliefError):
    """Export was requested before any mesh was built."""


class SerializationFailure(ReliefError):
    """The binary glTF encoder failed."""


class DepthEstimationError(ReliefError):
    """The depth model is unavailable or failed on an image."""


class InvalidParameter(ReliefError, ValueError):
    """A tunable synthesis parameter is out of range."""
