"""
Verification of after-cleanup photos.

The claim workflow only sees the `VerificationService` interface. A failed
verification is a normal result (`success=False` with a reason), never an
exception, so callers can keep the user on the photo step and invite a retake.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import List, Optional
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class ImpactMetrics(BaseModel):
    waste_removed_kg: float = 0.0
    co2_saved_kg: float = 0.0
    recyclables_recovered: int = 0


class VerificationResult(BaseModel):
    success: bool
    quality_score: Optional[int] = Field(default=None, ge=0, le=100)
    completeness: Optional[str] = None
    impact: Optional[ImpactMetrics] = None
    improvements: List[str] = []
    reason: Optional[str] = None

    @classmethod
    def passed(cls, quality_score, completeness='Excellent', impact=None, improvements=None):
        return cls(
            success=True,
            quality_score=quality_score,
            completeness=completeness,
            impact=impact or ImpactMetrics(),
            improvements=improvements or [],
        )

    @classmethod
    def failed(cls, reason):
        return cls(success=False, quality_score=0, completeness='Failed', reason=reason)


class VerificationService(ABC):
    """Judges whether an after-photo shows a sufficiently cleaned area."""

    @abstractmethod
    def verify(self, after_photo: str, before_photo: Optional[str] = None) -> VerificationResult:
        raise NotImplementedError

    def health_check(self):
        return {"status": "OK", "details": f"{type(self).__name__} configured."}


class ScriptedVerificationService(VerificationService):
    """
    Deterministic verification double. Returns queued outcomes in order and
    repeats the last one once the queue is exhausted.
    """

    def __init__(self, outcomes=None):
        self._outcomes = list(outcomes or [VerificationResult.passed(92)])
        self.calls = []

    def script(self, *outcomes):
        """Replaces whatever is still pending."""
        if not outcomes:
            raise ValueError("script() needs at least one outcome")
        self._outcomes = list(outcomes)

    def verify(self, after_photo, before_photo=None):
        self.calls.append((before_photo, after_photo))
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def guarded_verify(service: VerificationService, after_photo: str, before_photo: Optional[str] = None,
                   timeout: float = DEFAULT_TIMEOUT_SECONDS) -> VerificationResult:
    """
    Calls the verification service with a bounded wait. Timeouts and errors
    raised by the service both come back as failed results.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='verify')
    future = executor.submit(service.verify, after_photo, before_photo)
    try:
        result = future.result(timeout=timeout)
    except FutureTimeoutError:
        logger.warning(f"Verification timed out after {timeout}s")
        return VerificationResult.failed("Verification timed out. Please retake the photo and try again.")
    except Exception as e:
        logger.error(f"Verification service error: {e}", exc_info=True)
        return VerificationResult.failed("Verification is unavailable right now. Please try again.")
    finally:
        executor.shutdown(wait=False)

    if not isinstance(result, VerificationResult):
        logger.error(f"Verification service returned unexpected type: {type(result).__name__}")
        return VerificationResult.failed("Verification returned an unreadable result.")
    return result
