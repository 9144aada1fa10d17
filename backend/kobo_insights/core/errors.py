"""
Error message constants, domain exceptions and utilities for user-friendly error handling.
"""
from typing import Dict, Optional

# Error codes
class ErrorCodes:
    INVALID_DATASET = "INVALID_DATASET"
    DATASET_NOT_FOUND = "DATASET_NOT_FOUND"
    NO_SUBMISSIONS = "NO_SUBMISSIONS"
    CHART_NOT_FOUND = "CHART_NOT_FOUND"
    INVALID_CHART_CONFIG = "INVALID_CHART_CONFIG"
    UNSUPPORTED_EXPORT_FORMAT = "UNSUPPORTED_EXPORT_FORMAT"
    KOBO_API_ERROR = "KOBO_API_ERROR"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    INVALID_TOKEN = "INVALID_TOKEN"
    SYNC_IN_PROGRESS = "SYNC_IN_PROGRESS"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class AnalysisError(Exception):
    """Raised when a dataset cannot be analyzed at all (missing records or columns)."""


class ChartRenderError(Exception):
    """Raised when a chart configuration has no usable column bindings."""


class DatasetNotFound(Exception):
    """Raised when a dataset id has no stored submissions."""


class ChartNotFound(Exception):
    """Raised when a chart config id is unknown."""


class TokenNotFound(Exception):
    """Raised when a stored API token id is unknown."""


class SyncInProgress(Exception):
    """Raised when a project is already being synced."""


class KoboAPIError(Exception):
    """Raised when the KoboToolbox API returns an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# User-friendly error messages
ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    ErrorCodes.INVALID_DATASET: {
        "message": "We couldn't read this dataset",
        "detail": "The submissions or the column list were missing or not in the expected shape.",
        "suggestion": "💡 Send the submissions as a list of objects and, if you pass columns, a list of column names."
    },
    ErrorCodes.DATASET_NOT_FOUND: {
        "message": "We couldn't find that project",
        "detail": "No submissions have been stored for this project yet.",
        "suggestion": "💡 Sync the project from KoboToolbox first, then try again."
    },
    ErrorCodes.NO_SUBMISSIONS: {
        "message": "This project has no submissions yet",
        "detail": "There is nothing to analyze or export until the form receives data.",
        "suggestion": "💡 Collect a few submissions, sync the project again and come back!"
    },
    ErrorCodes.CHART_NOT_FOUND: {
        "message": "That chart doesn't exist anymore",
        "detail": "The chart may have been deleted or replaced by a newer analysis.",
        "suggestion": "💡 Reload the chart list for this project."
    },
    ErrorCodes.INVALID_CHART_CONFIG: {
        "message": "This chart can't be drawn",
        "detail": "The chart configuration does not point at any column we can plot.",
        "suggestion": "💡 Pick a column for the chart, or run the analysis again to get fresh suggestions."
    },
    ErrorCodes.UNSUPPORTED_EXPORT_FORMAT: {
        "message": "We can't export in that format",
        "detail": "Exports are available as CSV, Excel or JSON.",
        "suggestion": "💡 Choose csv, excel or json."
    },
    ErrorCodes.KOBO_API_ERROR: {
        "message": "KoboToolbox didn't accept the request",
        "detail": "We couldn't fetch your projects from KoboToolbox.",
        "suggestion": "💡 Check that your API token is correct and still active, then try again."
    },
    ErrorCodes.TOKEN_NOT_FOUND: {
        "message": "We couldn't find that API token",
        "detail": "The token may have been deleted.",
        "suggestion": "💡 Add your KoboToolbox API token again from the token list."
    },
    ErrorCodes.INVALID_TOKEN: {
        "message": "That token entry isn't complete",
        "detail": "A token needs a non-empty name and value.",
        "suggestion": "💡 Paste the token from your KoboToolbox account settings and give it a name."
    },
    ErrorCodes.SYNC_IN_PROGRESS: {
        "message": "This project is already syncing",
        "detail": "A sync for this project is still running.",
        "suggestion": "💡 Wait for it to finish, then reload the project."
    },
    ErrorCodes.PROCESSING_ERROR: {
        "message": "Something went wrong while processing",
        "detail": "We hit a snag while analyzing your submissions.",
        "suggestion": "💡 Try syncing the project again. If the problem persists, check the form for unusual fields."
    },
    ErrorCodes.RATE_LIMIT_EXCEEDED: {
        "message": "Whoa there! Slow down a bit",
        "detail": "You're sending requests faster than we can keep up! We limit requests to keep the service fast for everyone.",
        "suggestion": "💡 Take a quick break and try again in about a minute. Your data will still be there!"
    },
    ErrorCodes.TIMEOUT: {
        "message": "This is taking longer than expected",
        "detail": "Your project is taking a while to process. This usually happens with very large forms.",
        "suggestion": "💡 Select fewer columns or try again in a moment."
    },
    ErrorCodes.UNKNOWN_ERROR: {
        "message": "Hmm, something unexpected happened",
        "detail": "We encountered an issue we weren't expecting. Don't worry - it's not your fault!",
        "suggestion": "💡 Give it another try in a moment."
    }
}

def get_error_response(error_code: str, additional_detail: Optional[str] = None) -> Dict[str, str]:
    """
    Get user-friendly error response for an error code.

    Args:
        error_code: One of the ErrorCodes constants
        additional_detail: Optional additional detail to append

    Returns:
        Dictionary with code, message, detail, and suggestion
    """
    error_info = ERROR_MESSAGES.get(error_code, ERROR_MESSAGES[ErrorCodes.UNKNOWN_ERROR])

    response = {
        "code": error_code,
        "message": error_info["message"],
        "detail": error_info["detail"],
        "suggestion": error_info["suggestion"]
    }

    if additional_detail:
        response["detail"] = f"{response['detail']} {additional_detail}"

    return response
