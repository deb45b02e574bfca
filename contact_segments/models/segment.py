"""
Segment models.

Segments are stored as rows of the ``lists`` table. Dynamic lists carry
their criteria as JSON in the shape::

    {
        "conditions": [
            {"id": "c1", "field": "companyName", "operator": "equals",
             "value": "Acme", "logicalOperator": null}
        ]
    }

Static lists carry no criteria; their members live in
``contact_list_memberships``.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, JSON, Enum as SQLEnum,
    PrimaryKeyConstraint, UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from contact_segments.database import Base


class ContactList(Base):
    """A named segment owned by one organization."""

    __tablename__ = "lists"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    type = Column(
        SQLEnum('static', 'dynamic', name='list_type_enum'),
        nullable=False,
        default='dynamic',
    )

    # Only meaningful for dynamic lists
    criteria = Column(JSON)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    # Relationships
    organization = relationship("Organization", back_populates="lists")
    memberships = relationship(
        "ContactListMembership",
        back_populates="contact_list",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_lists_org_name"),
    )

    def __repr__(self):
        return f"<ContactList id={self.id} name='{self.name}' type={self.type}>"


class ContactListMembership(Base):
    """Explicit membership of a contact in a static list."""

    __tablename__ = "contact_list_memberships"

    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False)
    list_id = Column(Integer, ForeignKey("lists.id", ondelete="CASCADE"), nullable=False, index=True)
    added_at = Column(DateTime, nullable=False, server_default=func.now())

    # Relationships
    contact_list = relationship("ContactList", back_populates="memberships")
    contact = relationship("Contact")

    __table_args__ = (
        PrimaryKeyConstraint("contact_id", "list_id"),
    )

    def __repr__(self):
        return f"<ContactListMembership contact_id={self.contact_id} list_id={self.list_id}>"
