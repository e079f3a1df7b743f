"""
SQLAlchemy models for the CRM client directory.

This module defines the tables the bulk upload pipeline reads and writes,
matching the schema defined in Alembic migrations. Users are owned by the
wider application and are only read here (reference-token resolution).
"""

from sqlalchemy import (
    Boolean, Column, Integer, String, Text, TIMESTAMP,
    ForeignKey, Index, text
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class User(Base):
    """Internal user that can be referenced as a client's referring partner."""

    __tablename__ = 'users'
    __table_args__ = (
        {'comment': 'Application users (read-only for bulk upload)'},
    )

    user_id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    name = Column(
        String(255),
        nullable=False
    )
    email = Column(
        String(255),
        nullable=False,
        unique=True
    )

    def __repr__(self):
        return f"<User(user_id={self.user_id}, email='{self.email}')>"


class ClientGroup(Base):
    """Represents a group of related clients (e.g. a corporate family)."""

    __tablename__ = 'client_groups'
    __table_args__ = (
        Index('client_groups_name_idx', 'name'),
        {'comment': 'Client groups, unique by name'}
    )

    group_id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    name = Column(
        String(255),
        nullable=False,
        unique=True,
        comment='Group name, unique case-insensitively by convention'
    )
    description = Column(
        Text,
        nullable=True
    )
    active_status = Column(
        Boolean,
        default=True,
        nullable=False
    )
    created_by = Column(
        Integer,
        ForeignKey('users.user_id', ondelete='SET NULL'),
        nullable=True,
        comment='User that created the group'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    # Relationships
    clients = relationship('Client', back_populates='group')

    def __repr__(self):
        return f"<ClientGroup(group_id={self.group_id}, name='{self.name}')>"


class Client(Base):
    """Represents a client organisation belonging to a group."""

    __tablename__ = 'clients'
    __table_args__ = (
        Index('clients_user_id_idx', 'user_id'),
        Index('clients_client_name_idx', 'client_name'),
        Index('clients_group_id_idx', 'group_id'),
        Index('clients_industry_idx', 'industry'),
        Index('clients_internal_reference_id_idx', 'internal_reference_id'),
        {'comment': 'Client organisations'}
    )

    client_id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    user_id = Column(
        Integer,
        ForeignKey('users.user_id', ondelete='RESTRICT'),
        nullable=False,
        comment='User that created the client'
    )
    client_name = Column(
        String(255),
        nullable=False
    )
    industry = Column(
        String(255),
        nullable=True
    )
    website_url = Column(
        String(500),
        nullable=True
    )
    address = Column(
        String(1000),
        nullable=True
    )
    group_id = Column(
        Integer,
        ForeignKey('client_groups.group_id', ondelete='SET NULL'),
        nullable=True
    )
    client_code = Column(
        String(50),
        nullable=True,
        unique=True,
        comment='Globally unique client code'
    )
    notes = Column(
        Text,
        nullable=True
    )
    internal_reference_id = Column(
        Integer,
        ForeignKey('users.user_id', ondelete='SET NULL'),
        nullable=True,
        comment='Referring partner (first id of the reference token)'
    )
    active_status = Column(
        Boolean,
        default=True,
        nullable=False
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    # Relationships
    group = relationship('ClientGroup', back_populates='clients')
    contacts = relationship('Contact', back_populates='client')

    def __repr__(self):
        return f"<Client(client_id={self.client_id}, client_name='{self.client_name}')>"


class Contact(Base):
    """Represents a person to contact at a client."""

    __tablename__ = 'contacts'
    __table_args__ = (
        Index('contacts_client_id_idx', 'client_id'),
        Index('contacts_email_idx', 'email'),
        {'comment': 'Client contacts'}
    )

    contact_id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    client_id = Column(
        Integer,
        ForeignKey('clients.client_id', ondelete='SET NULL'),
        nullable=True
    )
    name = Column(
        String(255),
        nullable=False
    )
    email = Column(
        String(255),
        nullable=True
    )
    number = Column(
        String(50),
        nullable=True,
        comment='Phone number'
    )
    designation = Column(
        String(255),
        nullable=True
    )
    is_primary = Column(
        Boolean,
        default=False,
        nullable=False
    )
    notes = Column(
        Text,
        nullable=True
    )
    linkedin_url = Column(
        String(500),
        nullable=True
    )
    twitter_handle = Column(
        String(100),
        nullable=True
    )
    created_by = Column(
        Integer,
        ForeignKey('users.user_id', ondelete='SET NULL'),
        nullable=True
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    # Relationships
    client = relationship('Client', back_populates='contacts')

    def __repr__(self):
        return f"<Contact(contact_id={self.contact_id}, name='{self.name}', primary={self.is_primary})>"
