from typing import Optional

from fastapi import status


class WaitlistError(Exception):
    """Base class for waitlist failures. ``kind`` is stable for API clients."""

    kind = "waitlist_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StoreUnavailable(WaitlistError):
    kind = "store_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class UniquenessFailure(WaitlistError):
    kind = "uniqueness_failure"

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class NoAdjacentEntries(WaitlistError):
    kind = "no_adjacent_entries"
    status_code = status.HTTP_409_CONFLICT


class EntryNotFound(WaitlistError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class PartialBatchFailure(WaitlistError):
    kind = "partial_batch_failure"

    def __init__(self, message: str, stage: str, batch_index: int, cause: Optional[Exception] = None):
        super().__init__(message)
        self.stage = stage
        self.batch_index = batch_index
        self.cause = cause


class AlreadyEnrolled(WaitlistError):
    kind = "already_enrolled"
    status_code = status.HTTP_400_BAD_REQUEST


class AlreadyPromoted(WaitlistError):
    kind = "already_promoted"
    status_code = status.HTTP_400_BAD_REQUEST


class ReferralAlreadyUsed(WaitlistError):
    kind = "referral_already_used"
    status_code = status.HTTP_400_BAD_REQUEST


class SelfReferral(WaitlistError):
    kind = "self_referral"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidReferralCode(WaitlistError):
    kind = "invalid_referral_code"
    status_code = status.HTTP_400_BAD_REQUEST
