from pushrelay.services.dispatch.queue import (
    DEAD_LETTER_KEY,
    DISPATCH_TASK_NAME,
    DispatchJobPayload,
    DispatchQueue,
    dispatch_job_id,
    retry_backoff_s,
)
from pushrelay.services.dispatch.fanout import (
    DISPATCH_STATUS_COMPLETED,
    DISPATCH_STATUS_DUPLICATE,
    DispatchReport,
    dispatch_campaign,
)

__all__ = [
    "DEAD_LETTER_KEY",
    "DISPATCH_TASK_NAME",
    "DispatchJobPayload",
    "DispatchQueue",
    "dispatch_job_id",
    "retry_backoff_s",
    "DISPATCH_STATUS_COMPLETED",
    "DISPATCH_STATUS_DUPLICATE",
    "DispatchReport",
    "dispatch_campaign",
]
