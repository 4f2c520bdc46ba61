"""
Photobooth Error Taxonomy

Every service raises one of these (or lets an OSError / sqlite3.Error
propagate untouched). The HTTP layer maps them to status codes; nothing
in the core logs-and-swallows.

    PhotoboothError
    ├── InitializationError     database cannot be opened or migrated (fatal)
    ├── ValidationError         bad input (unknown field, bad layout, bad quality)
    │   └── InvalidLayoutError
    ├── NotFoundError           missing photo / template / session / group
    │   └── TemplateNotFoundError  (also a CompositionError)
    ├── DeviceError             frame source unavailable (retryable)
    ├── CaptureError            frame not ready at grab time; run aborted
    │   └── CaptureCancelled    user aborted the run
    └── CompositionError        missing template, malformed overlay data
"""


class PhotoboothError(Exception):
    """Base class for all photobooth errors"""


class InitializationError(PhotoboothError):
    """Database could not be opened or migrated"""


class ValidationError(PhotoboothError):
    """Caller supplied invalid data"""


class InvalidLayoutError(ValidationError):
    """Unknown layout tag"""

    def __init__(self, layout):
        self.layout = layout
        super().__init__(f"Unknown layout: {layout!r}")


class NotFoundError(PhotoboothError):
    """Referenced record does not exist"""

    def __init__(self, kind, record_id):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind.capitalize()} not found: {record_id}")


class DeviceError(PhotoboothError):
    """Frame source could not be started (missing device, permission denied)"""


class CaptureError(PhotoboothError):
    """A capture run was aborted before every shot was taken"""


class CaptureCancelled(CaptureError):
    """The user aborted the capture run"""


class CompositionError(PhotoboothError):
    """Frames could not be composed into the final image"""


class TemplateNotFoundError(NotFoundError, CompositionError):
    """Composition referenced a template id that does not exist"""

    def __init__(self, template_id):
        super().__init__('template', template_id)
