from sqlalchemy import Column, String

from referral_waitlist.platform.db.base import BaseModel


class User(BaseModel):
    __tablename__ = "users"
    phone_number = Column(String(20), unique=True, nullable=True, index=True)
    waitlist_referral_link = Column(String(500), nullable=True)

    def __repr__(self):
        return f"<User(id={self.id}, phone_number={self.phone_number})>"
