"""
Error taxonomy for Attendance Service.

Per-tick detection errors are recovered inside the scanning loop,
persistence errors abort only the current cycle, acquisition errors
end the session.
"""


class AttendanceServiceError(Exception):
    """Base class for all service errors."""


class NoGalleryData(AttendanceServiceError):
    """The gallery holds zero enrolled identities."""


class DetectionTransientError(AttendanceServiceError):
    """The detector failed for a single frame."""


class PersistenceFailure(AttendanceServiceError):
    """A store read or write failed."""


class AcquisitionFailure(AttendanceServiceError):
    """The camera or detector is unavailable for the whole session."""
