"""
Configuration settings for the Workforce Mapper application.

Loads environment variables and provides centralized configuration
for the record source, map layers, drawing feedback and export.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Tuple

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

class Config:
    """Application configuration settings."""

    # ============================================================================
    # DATA SOURCE CONFIGURATION
    # ============================================================================
    # Path to the processed workbook/CSV, or an http(s) URL returning {"data": [...]}
    DATA_SOURCE = os.getenv('WORKFORCE_DATA_SOURCE', 'data/agentdataprocessed.xlsx')
    DATA_SHEET = os.getenv('WORKFORCE_DATA_SHEET', 'Geocoded Addresses')
    HTTP_TIMEOUT = float(os.getenv('WORKFORCE_HTTP_TIMEOUT', '30'))  # seconds

    # ============================================================================
    # APPLICATION SETTINGS
    # ============================================================================
    APP_TITLE = "Workforce Mapper"
    APP_ICON = "🗺️"
    APP_DESCRIPTION = "Locate, filter and select personnel on an interactive map"

    # ============================================================================
    # MAP SETTINGS
    # ============================================================================
    # Default map center (Australia)
    DEFAULT_MAP_CENTER = (-25.2744, 133.7751)  # (lat, lon)
    DEFAULT_MAP_ZOOM = 4

    # Map tile provider
    MAP_TILES = "OpenStreetMap"

    # Hit-testing tolerance around a click, in screen pixels
    CLICK_TOLERANCE_PX = 10

    # ============================================================================
    # MARKER SETTINGS
    # ============================================================================
    MARKER_COLOR = '#3B82F6'
    MARKER_SIZE = 6

    # Marker cluster settings
    ENABLE_CLUSTERING = True
    CLUSTER_RADIUS = 50  # pixels
    CLUSTER_MAX_ZOOM = 14

    # Cluster colors by point count: (minimum count, color)
    CLUSTER_COLOR_STEPS = [
        (0, '#51bbd6'),
        (100, '#f1f075'),
        (750, '#f28cb1'),
    ]

    # ============================================================================
    # HEATMAP SETTINGS
    # ============================================================================
    HEATMAP_RADIUS = 80
    HEATMAP_OPACITY = 0.7
    HEATMAP_MAX_ZOOM = 15
    # Zoom at which the heatmap has fully faded out (must be below HEATMAP_MAX_ZOOM)
    HEATMAP_FADE_ZOOM = 13

    # Density -> color ramp
    HEATMAP_COLOR_RAMP = [
        (0.0, 'rgba(33,102,172,0)'),
        (0.2, 'rgb(103,169,207)'),
        (0.4, 'rgb(209,229,240)'),
        (0.6, 'rgb(253,219,199)'),
        (0.8, 'rgb(239,138,98)'),
        (1.0, 'rgb(178,24,43)'),
    ]

    # ============================================================================
    # AREA SELECTION SETTINGS
    # ============================================================================
    DRAWING_COLOR = '#3B82F6'
    # Delay before drawing feedback is removed after a polygon is closed
    DRAWING_GRACE_PERIOD_MS = 100

    # ============================================================================
    # EXPORT SETTINGS
    # ============================================================================
    EXPORT_FILENAME_PREFIX = "selected_employees"

    # ============================================================================
    # LOGGING SETTINGS
    # ============================================================================
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_DIR = os.getenv('WORKFORCE_LOG_DIR', str(Path(__file__).resolve().parent.parent / "logs"))

    @classmethod
    def validate(cls) -> List[str]:
        """
        Validate the configuration.

        Returns:
            List of problems found (empty if valid)
        """
        problems = []

        if not cls.DATA_SOURCE:
            problems.append("WORKFORCE_DATA_SOURCE must be set")

        if cls.HEATMAP_FADE_ZOOM >= cls.HEATMAP_MAX_ZOOM:
            problems.append("HEATMAP_FADE_ZOOM must be below HEATMAP_MAX_ZOOM")

        if cls.CLUSTER_RADIUS <= 0:
            problems.append("CLUSTER_RADIUS must be positive")

        if cls.HTTP_TIMEOUT <= 0:
            problems.append("WORKFORCE_HTTP_TIMEOUT must be positive")

        return problems

    @classmethod
    def layer_options(cls) -> Dict[str, Any]:
        """
        Get keyword arguments for the layer manager.

        Returns:
            Dictionary of layer options
        """
        return {
            'enable_clustering': cls.ENABLE_CLUSTERING,
            'cluster_radius': cls.CLUSTER_RADIUS,
            'cluster_max_zoom': cls.CLUSTER_MAX_ZOOM,
            'marker_color': cls.MARKER_COLOR,
            'marker_size': cls.MARKER_SIZE,
            'heatmap_radius': cls.HEATMAP_RADIUS,
            'heatmap_opacity': cls.HEATMAP_OPACITY,
            'heatmap_max_zoom': cls.HEATMAP_MAX_ZOOM,
            'heatmap_fade_zoom': cls.HEATMAP_FADE_ZOOM,
        }

    @classmethod
    def get_cluster_color(cls, point_count: int) -> str:
        """
        Get color for a cluster of the given size.

        Args:
            point_count: Number of points in the cluster

        Returns:
            Hex color code
        """
        color = cls.CLUSTER_COLOR_STEPS[0][1]
        for threshold, step_color in cls.CLUSTER_COLOR_STEPS:
            if point_count >= threshold:
                color = step_color
        return color

    @classmethod
    def default_view(cls) -> Tuple[Tuple[float, float], int]:
        """Initial (center, zoom) of the map, center as (lat, lon)."""
        return cls.DEFAULT_MAP_CENTER, cls.DEFAULT_MAP_ZOOM


# Create a singleton config instance
config = Config()
