from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from contact_segments.database import Base


class Contact(Base):
    """Contact record.

    Only the attributes declared in the segment field registry are
    filterable; custom_fields is free-form and never filtered on.
    """

    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    email = Column(String(255), nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    company_name = Column(String(255))
    job_title = Column(String(255))
    custom_fields = Column(JSON)
    source = Column(String(100))

    # Naive UTC, matches the timestamp boundaries built by the segment compiler
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    # Relationships
    organization = relationship("Organization", back_populates="contacts")

    __table_args__ = (
        Index("ix_contacts_org_created", "organization_id", "created_at"),
    )

    def __repr__(self):
        return f"<Contact id={self.id} email={self.email}>"
