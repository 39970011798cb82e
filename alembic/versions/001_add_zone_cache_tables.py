"""Add zone cache, geocoding cache and PostGIS zone tables

Revision ID: 001
Revises: 
Create Date: 2026-10-16 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Snapshot store: a single latest row
    op.create_table('zone_cache_snapshots',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('version', sa.String(length=40), nullable=False),
        sa.Column('data_hash', sa.String(length=64), nullable=False),
        sa.Column('feature_count', sa.Integer(), nullable=False),
        sa.Column('last_updated', sa.DateTime(), nullable=False),
        sa.Column('next_refresh', sa.DateTime(), nullable=False),
        sa.Column('geojson_data', sa.LargeBinary(), nullable=False),
        sa.Column('spatial_index', sa.LargeBinary(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_zone_cache_snapshots_data_hash', 'zone_cache_snapshots', ['data_hash'], unique=False)
    op.create_index('idx_zone_cache_created', 'zone_cache_snapshots', ['created_at'], unique=False)

    # Geocoding cache
    op.create_table('geocoding_cache',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('address', sa.String(length=512), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('display_name', sa.Text(), nullable=False),
        sa.Column('not_found', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('address')
    )
    op.create_index('idx_geocoding_cache_expires', 'geocoding_cache', ['expires_at'], unique=False)

    # PostGIS engine geometry table
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")
    op.execute("""
        CREATE TABLE opportunity_zones (
            dataset_hash VARCHAR(64) NOT NULL,
            feature_index INTEGER NOT NULL,
            geoid TEXT NOT NULL,
            geom geometry(Geometry, 4326) NOT NULL,
            simplified_geom geometry(Geometry, 4326) NOT NULL,
            bbox geometry(Geometry, 4326) NOT NULL,
            PRIMARY KEY (dataset_hash, feature_index)
        )
    """)
    op.execute("CREATE INDEX idx_opportunity_zones_bbox ON opportunity_zones USING GIST (bbox)")
    op.execute("CREATE INDEX idx_opportunity_zones_geom ON opportunity_zones USING GIST (geom)")
    op.execute("CREATE INDEX idx_opportunity_zones_geoid ON opportunity_zones (geoid)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS opportunity_zones")
    op.drop_index('idx_geocoding_cache_expires', table_name='geocoding_cache')
    op.drop_table('geocoding_cache')
    op.drop_index('idx_zone_cache_created', table_name='zone_cache_snapshots')
    op.drop_index('ix_zone_cache_snapshots_data_hash', table_name='zone_cache_snapshots')
    op.drop_table('zone_cache_snapshots')
