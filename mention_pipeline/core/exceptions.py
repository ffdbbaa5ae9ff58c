"""
Pipeline exception taxonomy

Each stage decides locally whether an error is retried, swallowed into a
fallback, or recorded for manual review.
"""


class PipelineError(Exception):
    """Base exception for mention pipeline operations"""
    pass


class TransientFetchError(PipelineError):
    """Source page could not be fetched (timeout, network failure); retryable"""
    pass


class PermanentParseError(PipelineError):
    """Source page loaded but yielded no parseable items; never retried"""
    pass


class AnalyzerError(PipelineError):
    """Analyzer call failed or returned unusable output"""
    pass


class ResponderError(PipelineError):
    """Reply generation failed or returned unusable output"""
    pass


class NotifierError(PipelineError):
    """Delivery to a single recipient failed"""
    pass


class InvalidStatusTransition(PipelineError):
    """Requested mention status change is not allowed by the state machine"""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition mention from {current} to {target}")


class RateLimitExceeded(PipelineError):
    """External-call rate limit window is full"""

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded, retry after {retry_after}s")
