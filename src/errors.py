"""Domain errors raised by the portal submission services.

Each error carries the HTTP-class status code the API layer should answer with.
"""


class PortalError(Exception):
    """Base class for portal submission errors"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SubmissionNotFoundError(PortalError):
    status_code = 404

    def __init__(self, submission_id: str):
        super().__init__("Portal submission not found")
        self.submission_id = submission_id


class FormSubmissionNotFoundError(PortalError):
    status_code = 404

    def __init__(self, form_submission_id: str):
        super().__init__("Form submission not found")
        self.form_submission_id = form_submission_id


class FormTemplateNotFoundError(PortalError):
    status_code = 404

    def __init__(self, template_id: str):
        super().__init__("Form template not found")
        self.template_id = template_id


class FieldMappingNotFoundError(PortalError):
    status_code = 404

    def __init__(self, mapping_id: str):
        super().__init__("Field mapping not found")
        self.mapping_id = mapping_id


class InvalidSubmissionStateError(PortalError):
    """Requested transition is not allowed from the current status"""
    status_code = 400


class PortalRoutingError(PortalError):
    """No portal type could be derived for a form template"""
    status_code = 400


class DuplicateFieldMappingError(PortalError):
    status_code = 409


class ConcurrentUpdateError(PortalError):
    """Optimistic version check failed: someone else wrote the record first"""
    status_code = 409

    def __init__(self, submission_id: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Portal submission {submission_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.submission_id = submission_id
        self.expected_version = expected_version
        self.actual_version = actual_version
