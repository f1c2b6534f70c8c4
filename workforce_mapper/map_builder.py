"""
Map building utilities for the Workforce Mapper.

Translates the live state of a MapSurface (visible sources and layers,
view, popups) into a Folium map for display.
"""

import logging
import traceback
from typing import Any, Dict, List, Optional, Sequence, Tuple

import folium
from branca.element import MacroElement
from folium.plugins import HeatMap
from jinja2 import Template

from .config import Config
from .drawing import LINE_LAYER, POINTS_LAYER, POLYGON_FILL_LAYER, POLYGON_OUTLINE_LAYER
from .features import feature_coordinates
from .layer_manager import CLUSTER_COUNT_LAYER, CLUSTER_LAYER, HEATMAP_LAYER, POINT_LAYER
from .surface import MapSurface, evaluate_expression

logger = logging.getLogger(__name__)

def _latlon(coordinates: Sequence[float]) -> Tuple[float, float]:
    # Surface coordinates are (lon, lat); Folium wants (lat, lon)
    return (coordinates[1], coordinates[0])

def create_base_map(
    center: Optional[Tuple[float, float]] = None,
    zoom: Optional[float] = None
) -> folium.Map:
    """
    Create a base Folium map.

    Args:
        center: (latitude, longitude) tuple for map center
        zoom: Initial zoom level

    Returns:
        Folium Map object
    """
    if center is None:
        center = Config.DEFAULT_MAP_CENTER

    if zoom is None:
        zoom = Config.DEFAULT_MAP_ZOOM

    # Create map; double click is reserved for finishing area selection
    m = folium.Map(
        location=center,
        zoom_start=zoom,
        tiles=Config.MAP_TILES,
        control_scale=True,
        double_click_zoom=False
    )

    return m

def cluster_label_icon(text: str, size: int = 12, color: str = '#ffffff') -> folium.DivIcon:
    """
    Build the count label drawn on top of a cluster circle.

    Args:
        text: Label text (abbreviated point count)
        size: Font size in pixels
        color: Text color

    Returns:
        Folium DivIcon centered on its location
    """
    width = 40
    return folium.DivIcon(
        html=f'''
        <div style="width:{width}px; text-align:center; color:{color};
                    font-size:{size}px; font-weight:bold; line-height:{size + 4}px;">{text}</div>
        ''',
        icon_size=(width, size + 4),
        icon_anchor=(width // 2, (size + 4) // 2)
    )

def add_agents_to_map(
    map_obj: folium.Map,
    surface: MapSurface
) -> folium.Map:
    """
    Add personnel markers to a Folium map.

    Draws exactly what the surface renders at its current zoom: one circle
    per cluster (sized and colored by point count, with a count label) and
    one pin per unclustered point. Clicks on either reach the map, so the
    page and the surface hit-test the same features.

    Args:
        map_obj: Folium Map object
        surface: Map surface holding the marker layers

    Returns:
        Updated Folium Map object
    """
    try:
        show_clusters = surface.is_layer_rendered(CLUSTER_LAYER)
        show_points = surface.is_layer_rendered(POINT_LAYER)
        if not show_clusters and not show_points:
            return map_obj

        clusters = surface.rendered_layer_features(CLUSTER_LAYER) if show_clusters else []
        points = surface.rendered_layer_features(POINT_LAYER) if show_points else []

        if not clusters and not points:
            logger.warning("No personnel features to draw")
            return map_obj

        group = folium.FeatureGroup(name='Location Pins').add_to(map_obj)

        if clusters:
            paint = surface.get_layer(CLUSTER_LAYER)['paint']
            label = surface.get_layer(CLUSTER_COUNT_LAYER) if surface.is_layer_rendered(CLUSTER_COUNT_LAYER) else None

            for feature in clusters:
                properties = feature['properties']
                location = _latlon(feature_coordinates(feature))
                color = evaluate_expression(paint['circle-color'], surface.zoom, properties)

                folium.CircleMarker(
                    location=location,
                    radius=evaluate_expression(paint['circle-radius'], surface.zoom, properties),
                    tooltip=f"{properties['point_count']} people",
                    color=color,
                    weight=1,
                    fill=True,
                    fillColor=color,
                    fillOpacity=0.85
                ).add_to(group)

                if label is not None:
                    layout = label.get('layout', {})
                    folium.Marker(
                        location=location,
                        icon=cluster_label_icon(
                            layout['text-field'].format(**properties),
                            size=layout.get('text-size', 12),
                            color=label.get('paint', {}).get('text-color', '#ffffff')
                        ),
                        interactive=False
                    ).add_to(group)

        if points:
            paint = surface.get_layer(POINT_LAYER)['paint']
            radius = evaluate_expression(paint.get('circle-radius'), surface.zoom)
            opacity = evaluate_expression(paint.get('circle-opacity'), surface.zoom)

            # Add each agent as a marker
            for feature in points:
                properties = feature.get('properties') or {}
                name = properties.get('emp_name') or 'Unnamed'

                folium.CircleMarker(
                    location=_latlon(feature_coordinates(feature)),
                    radius=radius,
                    tooltip=str(name),
                    color=paint.get('circle-stroke-color', '#ffffff'),
                    weight=paint.get('circle-stroke-width', 2),
                    fill=True,
                    fillColor=paint.get('circle-color', Config.MARKER_COLOR),
                    fillOpacity=opacity
                ).add_to(group)

        logger.info(f"Drew {len(clusters)} clusters and {len(points)} pins at zoom {surface.zoom}")
        return map_obj

    except Exception as e:
        logger.error(f"Error adding agents to map: {e}")
        logger.error(traceback.format_exc())
        return map_obj

def add_heatmap_to_map(
    map_obj: folium.Map,
    surface: MapSurface
) -> folium.Map:
    """
    Add the density heatmap to a Folium map.

    Skipped once the zoom-dependent opacity has faded to zero.

    Args:
        map_obj: Folium Map object
        surface: Map surface holding the heatmap layer

    Returns:
        Updated Folium Map object
    """
    try:
        if not surface.is_layer_rendered(HEATMAP_LAYER):
            return map_obj

        layer = surface.get_layer(HEATMAP_LAYER)
        paint = layer['paint']
        opacity = evaluate_expression(paint['heatmap-opacity'], surface.zoom)

        if opacity <= 0:
            return map_obj

        source = surface.get_source(layer['source'])
        heat_data = [list(_latlon(feature_coordinates(f))) for f in source.features]

        if not heat_data:
            return map_obj

        gradient = {
            density: color
            for density, color in Config.HEATMAP_COLOR_RAMP
            if density > 0
        }

        HeatMap(
            heat_data,
            name='Heatmap',
            radius=evaluate_expression(paint['heatmap-radius'], surface.zoom),
            min_opacity=opacity,
            max_zoom=layer.get('maxzoom', Config.HEATMAP_MAX_ZOOM),
            gradient=gradient
        ).add_to(map_obj)

        logger.info(f"Added heatmap with {len(heat_data)} points")
        return map_obj

    except Exception as e:
        logger.error(f"Error adding heatmap to map: {e}")
        logger.error(traceback.format_exc())
        return map_obj

def add_drawing_to_map(
    map_obj: folium.Map,
    surface: MapSurface
) -> folium.Map:
    """
    Add area-selection feedback (vertices, guide line, polygon) to a Folium map.

    Args:
        map_obj: Folium Map object
        surface: Map surface holding the drawing layers

    Returns:
        Updated Folium Map object
    """
    try:
        if surface.is_layer_rendered(POLYGON_FILL_LAYER):
            paint = surface.get_layer(POLYGON_FILL_LAYER)['paint']
            for feature in surface.rendered_layer_features(POLYGON_FILL_LAYER):
                ring = feature['geometry']['coordinates'][0]
                folium.Polygon(
                    locations=[_latlon(c) for c in ring],
                    color=paint['fill-color'],
                    weight=0,
                    fill=True,
                    fill_color=paint['fill-color'],
                    fill_opacity=paint['fill-opacity']
                ).add_to(map_obj)

        if surface.is_layer_rendered(POLYGON_OUTLINE_LAYER):
            paint = surface.get_layer(POLYGON_OUTLINE_LAYER)['paint']
            for feature in surface.rendered_layer_features(POLYGON_OUTLINE_LAYER):
                ring = feature['geometry']['coordinates'][0]
                folium.PolyLine(
                    locations=[_latlon(c) for c in ring],
                    color=paint['line-color'],
                    weight=paint['line-width'],
                    dash_array=', '.join(str(d) for d in paint['line-dasharray'])
                ).add_to(map_obj)

        if surface.is_layer_rendered(LINE_LAYER):
            paint = surface.get_layer(LINE_LAYER)['paint']
            for feature in surface.rendered_layer_features(LINE_LAYER):
                folium.PolyLine(
                    locations=[_latlon(c) for c in feature['geometry']['coordinates']],
                    color=paint['line-color'],
                    weight=paint['line-width'],
                    dash_array=', '.join(str(d) for d in paint['line-dasharray'])
                ).add_to(map_obj)

        if surface.is_layer_rendered(POINTS_LAYER):
            paint = surface.get_layer(POINTS_LAYER)['paint']
            for feature in surface.rendered_layer_features(POINTS_LAYER):
                folium.CircleMarker(
                    location=_latlon(feature['geometry']['coordinates']),
                    radius=paint['circle-radius'],
                    color=paint['circle-stroke-color'],
                    weight=paint['circle-stroke-width'],
                    fill=True,
                    fillColor=paint['circle-color'],
                    fillOpacity=1.0
                ).add_to(map_obj)

        return map_obj

    except Exception as e:
        logger.error(f"Error adding drawing layers to map: {e}")
        logger.error(traceback.format_exc())
        return map_obj

def add_popups_to_map(
    map_obj: folium.Map,
    surface: MapSurface
) -> folium.Map:
    """
    Add the surface's open popups to a Folium map.

    Args:
        map_obj: Folium Map object
        surface: Map surface with open popups

    Returns:
        Updated Folium Map object
    """
    for popup in surface.popups:
        folium.CircleMarker(
            location=_latlon(popup.lng_lat),
            radius=1,
            opacity=0,
            fill_opacity=0,
            popup=folium.Popup(popup.html, max_width=300, show=True)
        ).add_to(map_obj)

    return map_obj

def create_legend(color_ramp: List[Tuple[float, str]]) -> str:
    """
    Create HTML legend for the heatmap density ramp.

    Args:
        color_ramp: (density, color) stops

    Returns:
        HTML string for legend
    """
    colors = ', '.join(color for density, color in color_ramp if density > 0)

    # Use absolute positioning within the map container
    legend_html = f'''
    <div id="map-legend" style="
        position: absolute;
        bottom: 30px;
        right: 10px;
        width: 180px;
        background-color: white;
        border: 2px solid #333;
        border-radius: 8px;
        padding: 10px 12px;
        font-family: 'Arial', sans-serif;
        font-size: 12px;
        z-index: 1000;
        box-shadow: 0 4px 6px rgba(0,0,0,0.3);
    ">
        <h4 style="margin: 0 0 8px 0; font-size: 13px; color: #333;">Personnel Density</h4>
        <div style="height: 12px; border-radius: 4px; background: linear-gradient(to right, {colors});"></div>
        <div style="display: flex; justify-content: space-between; color: #555; margin-top: 4px;">
            <span>Low</span><span>High</span>
        </div>
    </div>
    '''

    return legend_html

def add_legend_to_map(
    map_obj: folium.Map,
    color_ramp: List[Tuple[float, str]]
) -> folium.Map:
    """
    Add the density legend to the map.

    Args:
        map_obj: Folium Map object
        color_ramp: (density, color) stops

    Returns:
        Updated Folium Map object
    """
    try:
        if not color_ramp:
            logger.warning("No color ramp provided for legend")
            return map_obj

        legend_html = create_legend(color_ramp)

        # Wrap the legend in a template
        template = """
        {% macro html(this, kwargs) %}
        """ + legend_html + """
        {% endmacro %}
        """

        macro = MacroElement()
        macro._template = Template(template)

        # Add to the map's HTML
        map_obj.get_root().add_child(macro)

        return map_obj

    except Exception as e:
        logger.error(f"Error adding legend to map: {e}")
        logger.error(traceback.format_exc())
        return map_obj

def build_map(
    surface: MapSurface,
    bounds: Optional[Tuple[float, float, float, float]] = None,
    add_legend: bool = True
) -> folium.Map:
    """
    Create a complete map from the current surface state.

    Args:
        surface: Map surface to render
        bounds: Optional (min_lon, min_lat, max_lon, max_lat) to fit the view to
        add_legend: Whether to add the density legend when the heatmap shows

    Returns:
        Complete Folium Map object
    """
    try:
        m = create_base_map(center=_latlon(surface.center), zoom=surface.zoom)

        # Heatmap first so markers draw on top of it
        m = add_heatmap_to_map(m, surface)
        m = add_agents_to_map(m, surface)
        m = add_drawing_to_map(m, surface)
        m = add_popups_to_map(m, surface)

        if add_legend and surface.is_layer_rendered(HEATMAP_LAYER):
            m = add_legend_to_map(m, Config.HEATMAP_COLOR_RAMP)

        if bounds is not None:
            m.fit_bounds([
                [bounds[1], bounds[0]],  # Southwest
                [bounds[3], bounds[2]]   # Northeast
            ])

        # Add layer control
        folium.LayerControl().add_to(m)

        return m

    except Exception as e:
        logger.error(f"Error creating full map: {e}")
        # Return empty map on error
        return create_base_map()
