from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from contact_segments.database import Base


class Organization(Base):
    """Tenant that owns contacts and segments."""

    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    contacts = relationship("Contact", back_populates="organization")
    lists = relationship("ContactList", back_populates="organization")

    def __repr__(self):
        return f"<Organization id={self.id} name='{self.name}'>"
