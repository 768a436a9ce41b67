from referral_waitlist.features.users.models.user import User

__all__ = ["User"]
