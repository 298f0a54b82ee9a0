class OasBenchError(Exception):
    """Base class for every error raised by oasbench."""


class SpecLoadError(OasBenchError):
    pass


class OperationNotFoundError(OasBenchError):
    def __init__(self, path: str, method: str):
        self.path = path
        self.method = method
        super().__init__(f"operation not found: {method} {path}")


class GenerationError(OasBenchError):
    """Raised when a schema is present but no value can be produced from it."""


class RequestBuildError(OasBenchError):
    pass


class ParameterGenerationError(RequestBuildError):
    def __init__(self, name: str, location: str, cause: Exception):
        self.name = name
        self.location = location
        self.cause = cause
        super().__init__(f"failed to generate {location} parameter {name}: {cause}")


class BodyGenerationError(RequestBuildError):
    def __init__(self, reason: str):
        super().__init__(f"failed to generate request body: {reason}")


class ConfigError(OasBenchError):
    pass


class RunCancelled(OasBenchError):
    """Raised inside the executor once the run's cancel scope has fired."""
