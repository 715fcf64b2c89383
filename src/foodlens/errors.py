"""Error taxonomy for model lifecycle and inference failures."""


class FoodLensError(Exception):
    """Base class for all package errors."""


class LifecycleError(FoodLensError):
    """A download or load of a model artifact failed."""


class DownloadError(LifecycleError):
    pass


class ModelLoadError(LifecycleError):
    pass


class InferenceError(FoodLensError):
    """Liveness was withdrawn around a generation session."""


class NotActiveError(InferenceError):
    def __init__(self):
        super().__init__("Cannot start analysis while app is not active")


class WentInactiveError(InferenceError):
    def __init__(self):
        super().__init__("Analysis stopped because app went to background")


class EngineFailure(FoodLensError):
    """The generation engine raised while producing fragments."""

    def __init__(self, underlying: BaseException):
        super().__init__(str(underlying) or underlying.__class__.__name__)
        self.underlying = underlying
