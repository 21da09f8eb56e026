"""
User test factory.

Generates realistic user data for testing authentication and authorization.
"""

import factory
from faker import Faker

fake = Faker()


class UserFactory(factory.Factory):
    """
    Factory for generating User test data.

    Usage:
        user = User(**UserFactory())
        user = User(**UserFactory(email="custom@example.com"))
    """

    class Meta:
        model = dict

    email = factory.LazyFunction(lambda: fake.unique.email().lower())
    first_name = factory.LazyFunction(fake.first_name)
    last_name = factory.LazyFunction(fake.last_name)
    hashed_password = "$2b$12$test.hash.for.testing.only"  # noqa: S105
    is_active = True
    is_superuser = False
    is_admin = False


class AdminUserFactory(UserFactory):
    """Factory for admin users."""

    is_admin = True
