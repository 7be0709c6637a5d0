"""Face redaction for photo archives.

This package exposes the pipeline used by the Azure Functions app and the
local command line runner: faces are located with an object detector,
pixelated or blurred, and the photo is downscaled and re-encoded.
"""

from .archive import archive_entries, download_all, download_one  # noqa: F401
from .batch import BatchRunner, process_batch  # noqa: F401
from .detector import DetrDetector, StaticDetector  # noqa: F401
from .errors import (  # noqa: F401
    ConfigurationError,
    DecodeError,
    DetectionError,
    EncodeError,
    PipelineError,
    RedactionError,
    ResampleError,
)
from .pipeline import RedactionPipeline, process_one  # noqa: F401
from .redaction_types import (  # noqa: F401
    AnonymizeMode,
    BatchOutcome,
    BoundingBox,
    FaceRegion,
    ItemFailure,
    PixelBuffer,
    ProcessedResult,
)
from .settings import RedactionSettings, settings_from_env  # noqa: F401
