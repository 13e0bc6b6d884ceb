"""Database models for nestql tests (shared)."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class Parent(Base):
    __tablename__ = 'parents'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    email = Column(String(200), unique=True, nullable=True)


class Child(Base):
    __tablename__ = 'children'

    id = Column(Integer, primary_key=True)
    parent_id = Column(Integer, ForeignKey('parents.id'), nullable=True)
    label = Column(String(100), nullable=False)


class AuditLog(Base):
    """Append-only: rows may not be deleted through mutations."""

    __tablename__ = 'audit_logs'
    __table_args__ = {'info': {'nestql': {'delete': False}}}

    id = Column(Integer, primary_key=True)
    parent_id = Column(Integer, ForeignKey('parents.id'), nullable=True)
    message = Column(String(200), nullable=False)
    created_at = Column(DateTime, server_default=func.now(), info={'nestql': {'insert': False, 'update': False}})


class Customer(Base):
    __tablename__ = 'customers'

    id = Column(Integer, primary_key=True)
    email = Column(String(200), nullable=False, unique=True)
    name = Column(String(100), nullable=True)


class Order(Base):
    __tablename__ = 'orders'

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False)
    total = Column(Integer, nullable=False, default=0)


class OrderItem(Base):
    __tablename__ = 'order_items'
    __table_args__ = (UniqueConstraint('order_id', 'sku', name='uq_order_items_order_sku'),)

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False)
    sku = Column(String(50), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    username = Column(String(50), nullable=False, unique=True)


class Profile(Base):
    """One profile per user: the FK column is itself unique."""

    __tablename__ = 'profiles'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), unique=True, nullable=True)
    bio = Column(String(200), nullable=True)


class Employee(Base):
    __tablename__ = 'employees'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    manager_id = Column(Integer, ForeignKey('employees.id'), nullable=True)
