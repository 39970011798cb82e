"""Command-line interface for Opportunity Zone locator management"""

import asyncio
import json
import sys

import click
import structlog

from oz_locator.config import settings
from oz_locator.database import Base, engine
from oz_locator.engines.postgis import PostGISZoneEngine
from oz_locator.errors import CacheUnavailableError, ZoneLocatorError
from oz_locator.ingestion.seeder import ZoneSeeder
from oz_locator.log_config import configure_logging
from oz_locator.services.geocoding import GeocodingCache
from oz_locator.services.zone_cache import SnapshotFreshness, ZoneCacheStore
from oz_locator.services.zone_service import ZoneService

logger = structlog.get_logger()


def _fail(message: str, error: Exception):
    click.echo(f"❌ {message}: {error}")
    logger.error(message, error=str(error))
    sys.exit(1)


@click.group()
def cli():
    """Opportunity Zone Locator Management CLI"""
    configure_logging(settings)
    Base.metadata.create_all(bind=engine)


@cli.command()
@click.option('--force', is_flag=True, help='Reprocess even if fresh artifacts exist')
@click.option('--check', is_flag=True, help='Only report whether fresh artifacts exist')
def preprocess(force: bool, check: bool):
    """Download, simplify and save the zone dataset to disk"""
    seeder = ZoneSeeder.from_settings(settings)

    if check:
        metadata = seeder.artifacts.check_existing()
        if metadata is None:
            click.echo("⏰ No fresh processed data found")
            sys.exit(1)
        click.echo(f"📦 Fresh processed data: {metadata['stats']['feature_count']} features, hash {metadata['data_hash'][:12]}")
        return

    try:
        metadata = asyncio.run(seeder.preprocess(force=force))
    except ZoneLocatorError as e:
        _fail("Preprocessing failed", e)

    stats = metadata["stats"]
    click.echo("✅ Preprocessing complete")
    click.echo(f"   Features: {stats['feature_count']} ({stats['skipped_count']} skipped)")
    click.echo(f"   Compression: {stats['compression_ratio']}%")
    click.echo(f"   Data hash: {metadata['data_hash']}")


@cli.command()
@click.option('--force', is_flag=True, help='Seed even if the stored snapshot is fresh')
@click.option('--check', is_flag=True, help='Only run the health check')
@click.option('--postgis', is_flag=True, help='Also load geometries into PostGIS')
def seed(force: bool, check: bool, postgis: bool):
    """Seed the zone cache store"""
    seeder = ZoneSeeder.from_settings(settings, with_postgis=postgis)

    try:
        if check:
            freshness = seeder.check_health()
            click.echo(f"Zone cache: {freshness.value}")
            if freshness != SnapshotFreshness.FRESH:
                sys.exit(1)
            return

        if force:
            written = asyncio.run(seeder.seed())
        else:
            written = asyncio.run(seeder.check_and_seed())
    except ZoneLocatorError as e:
        _fail("Seeding failed", e)

    click.echo("✅ Snapshot written" if written else "📦 Zone cache already up to date")


@cli.command()
def status():
    """Show the stored snapshot"""
    store = ZoneCacheStore()
    try:
        metadata = store.latest_metadata()
        freshness = store.check_health()
    except ZoneLocatorError as e:
        _fail("Status check failed", e)

    if metadata is None:
        click.echo("No snapshot stored")
        return

    click.echo(json.dumps({**metadata.to_dict(), "freshness": freshness.value}, indent=2))


@cli.command()
def refresh():
    """Download the dataset and replace the stored snapshot if it changed"""

    async def run_refresh():
        service = ZoneService.from_settings(settings)
        return await service.force_refresh()

    try:
        metadata = asyncio.run(run_refresh())
    except ZoneLocatorError as e:
        _fail("Refresh failed", e)

    click.echo(f"✅ Refreshed: {metadata.feature_count} features, hash {metadata.data_hash[:12]}")


@cli.command()
@click.argument('lat', type=float)
@click.argument('lon', type=float)
def check(lat: float, lon: float):
    """Check whether a point is inside an opportunity zone"""

    async def run_check():
        service = ZoneService.from_settings(settings)
        return await service.resolve_point(lat, lon)

    try:
        result = asyncio.run(run_check())
    except (ValueError, ZoneLocatorError) as e:
        _fail("Lookup failed", e)

    click.echo(json.dumps(result.to_dict(), indent=2))


@cli.command()
@click.confirmation_option(prompt='Delete every stored zone snapshot?')
def reset():
    """Delete all stored snapshots"""
    deleted = ZoneCacheStore().reset()
    click.echo(f"🧹 Deleted {deleted} snapshot(s)")


@cli.group()
def postgis():
    """PostGIS engine commands"""
    pass


def _stored_data_hash() -> str:
    metadata = ZoneCacheStore().latest_metadata()
    if metadata is None:
        raise CacheUnavailableError("No zone snapshot stored; run `seed --postgis` first")
    return metadata.data_hash


@postgis.command('stats')
def postgis_stats():
    """Show vertex reduction statistics for the stored snapshot"""
    try:
        stats = PostGISZoneEngine().get_optimization_stats(_stored_data_hash())
    except ZoneLocatorError as e:
        _fail("PostGIS stats failed", e)

    click.echo(json.dumps(stats, indent=2))


@postgis.command('benchmark')
@click.option('--point', '-p', 'points', multiple=True, nargs=2, type=float, help='LAT LON (repeatable)')
def postgis_benchmark(points):
    """Time point lookups against PostGIS"""
    if not points:
        points = [(40.7128, -74.0060), (34.0522, -118.2437), (41.8781, -87.6298)]

    try:
        result = PostGISZoneEngine().benchmark(list(points), _stored_data_hash())
    except ZoneLocatorError as e:
        _fail("PostGIS benchmark failed", e)

    click.echo(json.dumps(result, indent=2))


@cli.group('geocode-cache')
def geocode_cache():
    """Geocoding cache maintenance"""
    pass


@geocode_cache.command('clear-expired')
def clear_expired():
    """Delete expired geocoding cache entries"""
    deleted = GeocodingCache().clear_expired()
    click.echo(f"🧹 Deleted {deleted} expired entries")


@geocode_cache.command('stats')
def cache_stats():
    """Show geocoding cache statistics"""
    click.echo(json.dumps(GeocodingCache().stats(), indent=2))


if __name__ == '__main__':
    cli()
