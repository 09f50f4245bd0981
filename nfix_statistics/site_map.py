"""
Sampling-site map.

Site coordinates are drawn over a base world polygon table (long, lat, group
[, order]), one marker shape and colour per ecosystem type.
"""

import logging

import pandas as pd
import geopandas as gpd
from shapely.geometry import Polygon

from . import config, plots

logger = logging.getLogger(__name__)

SITE_COLUMNS = ["Longitude", "Latitude", "Type"]
WORLD_COLUMNS = ["long", "lat", "group"]


def _require_columns(df: pd.DataFrame, columns: list, source: str):
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"{source}: missing required columns {missing}")


def load_sites(path=config.MAP_CSV) -> pd.DataFrame:
    """Load the site table (Longitude, Latitude, Type)."""
    sites = pd.read_csv(path)
    _require_columns(sites, SITE_COLUMNS, str(path))
    return sites


def load_world_polygons(path=config.WORLD_CSV) -> gpd.GeoDataFrame:
    """Build one polygon per ``group`` from a long/lat vertex table."""
    table = pd.read_csv(path)
    _require_columns(table, WORLD_COLUMNS, str(path))
    return world_table_to_geodataframe(table)


def world_table_to_geodataframe(table: pd.DataFrame) -> gpd.GeoDataFrame:
    """Convert vertex rows into polygons; groups with < 3 vertices are dropped."""
    if "order" in table.columns:
        table = table.sort_values(["group", "order"], kind="mergesort")

    groups, geoms = [], []
    for group, rows in table.groupby("group", sort=False):
        coords = list(zip(rows["long"], rows["lat"]))
        if len(coords) < 3:
            logger.warning("Polygon group %s has %d vertices, skipped", group, len(coords))
            continue
        groups.append(group)
        geoms.append(Polygon(coords))

    return gpd.GeoDataFrame({"group": groups}, geometry=geoms, crs="EPSG:4326")


def sites_to_geodataframe(sites: pd.DataFrame) -> gpd.GeoDataFrame:
    """Point layer for the sampling sites (WGS84)."""
    return gpd.GeoDataFrame(
        sites.copy(),
        geometry=gpd.points_from_xy(sites["Longitude"], sites["Latitude"]),
        crs="EPSG:4326",
    )


def count_sites_by_type(sites: pd.DataFrame) -> pd.DataFrame:
    """Number of sites per ecosystem type, in style order."""
    counts = sites["Type"].value_counts()
    order = [t for t in config.ECOSYSTEM_TYPES if t in counts.index]
    order += sorted((t for t in counts.index if t not in order), key=str)
    return pd.DataFrame({"Type": order, "n_sites": [int(counts[t]) for t in order]})


def run(sites: pd.DataFrame, world: gpd.GeoDataFrame,
        shapes: dict = config.ECOSYSTEM_SHAPES,
        colors: dict = config.ECOSYSTEM_COLORS) -> dict:
    """Render the site map to ``map_clean.pdf``."""
    points = sites_to_geodataframe(sites)
    fig = plots.plot_site_map(world, points, shapes, colors)
    path = plots._save(fig, config.MAP_PDF)
    logger.info("Site map written to %s (%d sites)", path, len(points))

    return {
        "figure": fig,
        "figure_path": path,
        "site_counts": count_sites_by_type(sites),
    }
