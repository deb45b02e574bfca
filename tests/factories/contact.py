"""
Contact test factory.

Generates attribute dicts for Contact rows; the organization is always
supplied by the caller.
"""

import factory
from faker import Faker

fake = Faker()


class ContactFactory(factory.Factory):
    """
    Factory for generating Contact test data.

    Usage:
        Contact(**ContactFactory(organization_id=org.id))
        Contact(**ContactFactory(organization_id=org.id, company_name=None))
    """

    class Meta:
        model = dict

    organization_id = None
    email = factory.LazyFunction(lambda: fake.unique.email().lower())
    first_name = factory.LazyFunction(fake.first_name)
    last_name = factory.LazyFunction(fake.last_name)
    company_name = factory.LazyFunction(fake.company)
    job_title = factory.LazyFunction(fake.job)
    source = factory.LazyFunction(
        lambda: fake.random_element(["import", "website", "manual", "integration"])
    )
    custom_fields = None
    created_at = factory.LazyFunction(fake.date_time_this_year)
