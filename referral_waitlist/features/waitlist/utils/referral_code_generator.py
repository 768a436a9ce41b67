import re
import secrets
import string

from referral_waitlist.platform.config import settings

ALPHABET = string.ascii_uppercase + string.digits


def generate_referral_code(length: int | None = None) -> str:
    length = length or settings.WAITLIST_REFERRAL_CODE_LENGTH
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def code_fragments(phone_number: str, length: int | None = None) -> tuple[str, str]:
    """
    First and last ``length`` digits of a phone number, the two personal
    codes offered before falling back to random ones.

    >>> code_fragments("+1 (415) 555-0132")
    ('141555', '550132')
    """
    length = length or settings.WAITLIST_REFERRAL_CODE_LENGTH
    digits = re.sub(r"\D", "", phone_number or "")
    if len(digits) < length:
        return "", ""
    return digits[:length], digits[-length:]
