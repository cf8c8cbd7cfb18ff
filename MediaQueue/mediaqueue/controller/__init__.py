from .error_policy import (
    FailureCategory,
    classify_failure,
    describe_failure,
    is_unsupported_url_error,
)
from .manager_bridge import DownloadManagerBridge

__all__ = [
    "DownloadManagerBridge",
    "FailureCategory",
    "classify_failure",
    "describe_failure",
    "is_unsupported_url_error",
]
