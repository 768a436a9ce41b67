import enum

from sqlalchemy import BigInteger, Boolean, Column, Enum, Integer, String, false

from referral_waitlist.platform.db.base import BaseModel


class CodeType(str, enum.Enum):
    """How a referral code was derived"""

    FIRST_SIX = "firstSix"
    LAST_SIX = "lastSix"
    RANDOM = "random"


code_type_enum = Enum(
    CodeType,
    name="referral_code_type",
    values_callable=lambda members: [member.value for member in members],
)


class WaitlistEntry(BaseModel):
    __tablename__ = "waitlist"

    users_user_id = Column(String, unique=True, nullable=False, index=True)

    # Cached rank, refreshed by recompute_positions. Ordering comes from timestamp.
    position = Column(Integer, nullable=False, index=True)
    timestamp = Column(BigInteger, nullable=False, index=True)

    referral_code = Column(String(32), unique=True, nullable=False, index=True)
    code_type = Column(code_type_enum, nullable=False)
    referrals = Column(Integer, nullable=False, default=0, server_default="0")
    used_referral_code = Column(Boolean, nullable=False, default=False, server_default=false())

    creation_date = Column(BigInteger, nullable=False)

    def __repr__(self):
        return (
            f"<WaitlistEntry(id={self.id}, user={self.users_user_id}, "
            f"position={self.position}, timestamp={self.timestamp})>"
        )


class OffWaitlistEntry(BaseModel):
    __tablename__ = "off_waitlist"

    users_user_id = Column(String, unique=True, nullable=False, index=True)
    referrals = Column(Integer, nullable=False, default=0, server_default="0")
    referral_code = Column(String(32), nullable=False, index=True)
    code_type = Column(code_type_enum, nullable=False)
    used_referral_code = Column(Boolean, nullable=False, default=False, server_default=false())

    joined_waitlist_date = Column(BigInteger, nullable=False)
    creation_date = Column(BigInteger, nullable=False)

    def __repr__(self):
        return f"<OffWaitlistEntry(id={self.id}, user={self.users_user_id}, referrals={self.referrals})>"
