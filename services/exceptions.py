class ImportValidationError(Exception):
    """Raised when imported data fails validation (e.g., empty file, row missing name and SKU)."""
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class DataProcessingError(Exception):
    """Raised when something goes wrong in a processing pipeline or a backend call."""
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class FabricPoolError(Exception):
    """Raised when a fabric pool change is rejected (unknown project, overdrawn pool, bad amounts)."""
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ImportStateError(Exception):
    """Raised when a batch import is asked to do something its current state does not allow."""
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class PricingGridError(Exception):
    """Raised when pricing grid data or a grid rule is invalid."""
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ProjectNotFoundError(FabricPoolError):
    """Raised when a fabric pool operation names a project that does not exist."""
