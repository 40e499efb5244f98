"""
Error taxonomy for the chart query pipeline.
str(err) is always the user-safe message; `detail` holds internal text for the logs only.
"""
from typing import Optional


class ChartQueryError(Exception):
    """Base for every error the pipeline surfaces to callers."""

    default_message = "Something went wrong while building this chart."
    recoverable = False

    def __init__(self, user_message: Optional[str] = None, detail: Optional[str] = None):
        self.user_message = user_message or self.default_message
        self.detail = detail or ""
        super().__init__(self.user_message)


class DataSourceUnreadable(ChartQueryError):
    default_message = "The dataset file could not be read. It may be missing, empty or corrupt."


class IntentParseError(ChartQueryError):
    default_message = "I couldn't understand that request. Try rephrasing it with the column names you want to see."
    recoverable = True


class IntentValidationError(ChartQueryError):
    default_message = "That request doesn't match the columns in this dataset."
    recoverable = True


class IntentTimeoutError(ChartQueryError):
    default_message = "The assistant took too long to answer. Please try again."
    recoverable = True


class QueryExecutionError(ChartQueryError):
    default_message = "The chart query could not be run against this dataset."
