"""
Reliability Module: Dual-read tolerance, bounded retry, result cache.
"""

from .dual_read import (
    DualReadConfig,
    DualReadingSource,
    reliable_reading,
)
from .retry import (
    RetryPolicy,
    connect_with_retry,
    retry_call,
)
from .result_cache import (
    CacheFlushScheduler,
    CachedResult,
    Performance,
    ResultCache,
    ResultPayload,
    ResultServerConfig,
    ResultSubmitter,
    SubmissionStatus,
)

__all__ = [
    'DualReadConfig',
    'DualReadingSource',
    'reliable_reading',
    'RetryPolicy',
    'connect_with_retry',
    'retry_call',
    'CacheFlushScheduler',
    'CachedResult',
    'Performance',
    'ResultCache',
    'ResultPayload',
    'ResultServerConfig',
    'ResultSubmitter',
    'SubmissionStatus',
]
