"""Database fixtures for nestql tests (shared)."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from .models import AuditLog, Child, Customer, Employee, Parent, Profile, User


async def create_sample_parents(session: AsyncSession):
    """Two parents; parent 9 owns children 3 and 5, parent 4 owns child 6."""
    parents = [
        Parent(id=9, name="Nine", email="nine@example.com"),
        Parent(id=4, name="Four", email="four@example.com"),
    ]
    session.add_all(parents)
    await session.flush()
    session.add_all([
        Child(id=3, parent_id=9, label="c3"),
        Child(id=5, parent_id=9, label="c5"),
        Child(id=6, parent_id=4, label="c6"),
        Child(id=8, parent_id=None, label="orphan"),
        AuditLog(id=1, parent_id=9, message="created"),
    ])
    await session.flush()
    await session.commit()
    return parents


@pytest.fixture(scope="function")
async def sample_parents(db_session: AsyncSession):
    return await create_sample_parents(db_session)


async def create_sample_customers(session: AsyncSession):
    customers = [
        Customer(id=7, email="seven@example.com", name="Seven"),
        Customer(id=8, email="eight@example.com", name="Eight"),
    ]
    session.add_all(customers)
    await session.flush()
    await session.commit()
    return customers


@pytest.fixture(scope="function")
async def sample_customers(db_session: AsyncSession):
    return await create_sample_customers(db_session)


async def create_sample_users(session: AsyncSession):
    """User 1 has profile 10; user 2 has none; profile 11 is unattached."""
    users = [User(id=1, username="alice"), User(id=2, username="bob")]
    session.add_all(users)
    await session.flush()
    session.add_all([
        Profile(id=10, user_id=1, bio="alice bio"),
        Profile(id=11, user_id=None, bio="spare"),
    ])
    await session.flush()
    await session.commit()
    return users


@pytest.fixture(scope="function")
async def sample_users(db_session: AsyncSession):
    return await create_sample_users(db_session)


async def create_sample_employees(session: AsyncSession):
    boss = Employee(id=1, name="Boss", manager_id=None)
    session.add(boss)
    await session.flush()
    session.add(Employee(id=2, name="Worker", manager_id=1))
    await session.flush()
    await session.commit()
    return boss


@pytest.fixture(scope="function")
async def sample_employees(db_session: AsyncSession):
    return await create_sample_employees(db_session)


@pytest.fixture(scope="function")
async def populated_db(db_session: AsyncSession):
    return {
        'parents': await create_sample_parents(db_session),
        'customers': await create_sample_customers(db_session),
        'users': await create_sample_users(db_session),
        'employees': await create_sample_employees(db_session),
    }
