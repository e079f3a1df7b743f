"""CRM client directory schema

Revision ID: 001_crm_schema
Revises: 
Create Date: 2025-10-14

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_crm_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create users table
    op.create_table(
        'users',
        sa.Column('user_id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
        sa.UniqueConstraint('email'),
        comment='Application users (read-only for bulk upload)'
    )

    # Create client_groups table
    op.create_table(
        'client_groups',
        sa.Column('group_id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False,
                  comment='Group name, unique case-insensitively by convention'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('active_status', sa.Boolean(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True, comment='User that created the group'),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['created_by'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('group_id'),
        sa.UniqueConstraint('name'),
        comment='Client groups, unique by name'
    )
    op.create_index('client_groups_name_idx', 'client_groups', ['name'])

    # Create clients table
    op.create_table(
        'clients',
        sa.Column('client_id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='User that created the client'),
        sa.Column('client_name', sa.String(length=255), nullable=False),
        sa.Column('industry', sa.String(length=255), nullable=True),
        sa.Column('website_url', sa.String(length=500), nullable=True),
        sa.Column('address', sa.String(length=1000), nullable=True),
        sa.Column('group_id', sa.Integer(), nullable=True),
        sa.Column('client_code', sa.String(length=50), nullable=True, comment='Globally unique client code'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('internal_reference_id', sa.Integer(), nullable=True,
                  comment='Referring partner (first id of the reference token)'),
        sa.Column('active_status', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['group_id'], ['client_groups.group_id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['internal_reference_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('client_id'),
        sa.UniqueConstraint('client_code'),
        comment='Client organisations'
    )
    op.create_index('clients_user_id_idx', 'clients', ['user_id'])
    op.create_index('clients_client_name_idx', 'clients', ['client_name'])
    op.create_index('clients_group_id_idx', 'clients', ['group_id'])
    op.create_index('clients_industry_idx', 'clients', ['industry'])
    op.create_index('clients_internal_reference_id_idx', 'clients', ['internal_reference_id'])

    # Create contacts table
    op.create_table(
        'contacts',
        sa.Column('contact_id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('number', sa.String(length=50), nullable=True, comment='Phone number'),
        sa.Column('designation', sa.String(length=255), nullable=True),
        sa.Column('is_primary', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('linkedin_url', sa.String(length=500), nullable=True),
        sa.Column('twitter_handle', sa.String(length=100), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['clients.client_id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['created_by'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('contact_id'),
        comment='Client contacts'
    )
    op.create_index('contacts_client_id_idx', 'contacts', ['client_id'])
    op.create_index('contacts_email_idx', 'contacts', ['email'])


def downgrade() -> None:
    op.drop_index('contacts_email_idx', table_name='contacts')
    op.drop_index('contacts_client_id_idx', table_name='contacts')
    op.drop_table('contacts')

    op.drop_index('clients_internal_reference_id_idx', table_name='clients')
    op.drop_index('clients_industry_idx', table_name='clients')
    op.drop_index('clients_group_id_idx', table_name='clients')
    op.drop_index('clients_client_name_idx', table_name='clients')
    op.drop_index('clients_user_id_idx', table_name='clients')
    op.drop_table('clients')

    op.drop_index('client_groups_name_idx', table_name='client_groups')
    op.drop_table('client_groups')

    op.drop_table('users')
