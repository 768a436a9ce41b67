from referral_waitlist.features.waitlist.models.waitlist import CodeType, OffWaitlistEntry, WaitlistEntry

__all__ = ["CodeType", "OffWaitlistEntry", "WaitlistEntry"]
