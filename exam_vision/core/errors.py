class VisionPipelineError(Exception):
    """Base class for every error raised by the exam vision pipeline."""


class DocumentError(VisionPipelineError):
    """The document could not be parsed or one of its pages failed to render."""


class PageRangeError(VisionPipelineError, IndexError):
    def __init__(self, page_number: int, page_count: int):
        super().__init__(f"Page {page_number} out of range (1-{page_count})")
        self.page_number = page_number
        self.page_count = page_count


class ModelUnavailableError(VisionPipelineError):
    """The remote detection model did not answer the availability probe.

    Recoverable: the detector stays uninitialized and ``initialize()`` may be
    called again later.
    """


class ModelLoadError(VisionPipelineError):
    """Downloading the model or building the inference session failed."""


class ModelOutputError(ModelLoadError):
    """The inference output does not match the configured class taxonomy."""


class NotInitializedError(VisionPipelineError, RuntimeError):
    pass


class RecognitionError(VisionPipelineError):
    """The text-recognition engine failed to load or to recognize a region."""
