class EmergencyRequestError(Exception):
    """Base for every error the request repository raises to its callers."""

    status_code = 400

    def __init__(self, message=""):
        super().__init__(message)
        self.message = message


class RequestValidationError(EmergencyRequestError):
    """Input failed the create/update form checks. `errors` maps field -> messages."""

    def __init__(self, errors, message="Please correct the highlighted fields."):
        super().__init__(message)
        self.errors = errors


class RequestNotFound(EmergencyRequestError):
    status_code = 404

    def __init__(self, request_id):
        super().__init__(f"Emergency request {request_id} was not found.")
        self.request_id = request_id


class RequestStateError(EmergencyRequestError):
    """The request's lifecycle state does not allow the operation."""

    status_code = 409


class RequestMutationError(EmergencyRequestError):
    """The backend rejected or failed a write; local state was rolled back."""

    status_code = 503


class SessionClosedError(EmergencyRequestError):
    status_code = 401

    def __init__(self, message="Your session has ended. Please sign in again."):
        super().__init__(message)
