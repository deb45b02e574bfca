from contact_segments.models.organization import Organization
from contact_segments.models.contact import Contact
from contact_segments.models.segment import ContactList, ContactListMembership

__all__ = [
    "Organization",
    "Contact",
    "ContactList",
    "ContactListMembership",
]
