# jd_refiner/errors.py


class RefinementError(Exception):
    """Base for failures that the HTTP layer turns into an error envelope."""

    status_code = 500
    public_message = "Failed to refine analysis"

    def __init__(self, message: str | None = None, *, details: str | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.details = details


class InvalidRequest(RefinementError):
    status_code = 400
    public_message = "Message is required"


class NotFound(RefinementError):
    status_code = 404
    public_message = "Analysis not found"


class ProviderError(RefinementError):
    """The model call failed, or came back empty, unparseable or incomplete."""

    status_code = 500
    public_message = "Failed to refine analysis"


class PersistenceError(RefinementError):
    status_code = 500
    public_message = "Failed to save refinement"


class ConflictError(PersistenceError):
    """The analysis moved on between our read and our commit."""

    status_code = 409
    public_message = "Analysis was modified by another refinement"
