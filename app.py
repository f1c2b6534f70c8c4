"""
Workforce Mapper - Streamlit Application

A web application to locate personnel on an interactive map, filter them
by location, division, department and manager, and select everyone inside
a hand-drawn area for export.
"""

import logging
from typing import List

import streamlit as st
from streamlit_folium import st_folium

from workforce_mapper.config import Config
from workforce_mapper.controller import MapController
from workforce_mapper.export import export_filename, selection_to_csv, selection_to_dataframe
from workforce_mapper.geo_utils import get_bbox
from workforce_mapper.layer_manager import Visualization
from workforce_mapper.logger_config import setup_logging
from workforce_mapper.map_builder import build_map
from workforce_mapper.record_loader import load_records
from workforce_mapper.records import FILTER_ATTRIBUTES, FilterCriteria, Record, unique_values

# Configure logging
setup_logging()
logger = logging.getLogger(__name__)

# Page configuration
st.set_page_config(
    page_title=Config.APP_TITLE,
    page_icon=Config.APP_ICON,
    layout="wide",
    initial_sidebar_state="expanded"
)

# Custom CSS
st.markdown("""
    <style>
    .main-header {
        font-size: 2.5rem;
        font-weight: bold;
        color: #1E3A8A;
        text-align: center;
        margin-bottom: 0.5rem;
    }
    .sub-header {
        font-size: 1.1rem;
        color: #666;
        text-align: center;
        margin-bottom: 1.5rem;
    }
    .selection-box {
        background-color: #EFF6FF;
        border-left: 5px solid #3B82F6;
        padding: 1rem;
        border-radius: 0.5rem;
        margin: 1rem 0;
    }
    </style>
""", unsafe_allow_html=True)

FILTER_LABELS = {
    'location': "Location",
    'division': "Division",
    'department': "Department",
    'manager': "Manager",
}

@st.cache_data(show_spinner="Loading personnel records...")
def get_records(source: str) -> List[Record]:
    """Load records once per source."""
    return load_records(source)

def initialize_session_state():
    """Initialize session state variables."""
    if 'controller' not in st.session_state:
        controller = MapController()
        # Pins are on by default; they appear as soon as data arrives
        controller.set_visualization_enabled(Visualization.MARKERS, True)
        st.session_state.controller = controller
    if 'last_click' not in st.session_state:
        st.session_state.last_click = None
    if 'fit_bounds' not in st.session_state:
        st.session_state.fit_bounds = True
    for attribute in FILTER_ATTRIBUTES:
        if f"filter_{attribute}" not in st.session_state:
            st.session_state[f"filter_{attribute}"] = []

def get_controller() -> MapController:
    return st.session_state.controller

def load_data():
    """Push records into the controller on first run."""
    controller = get_controller()
    if controller.data_loaded:
        return

    problems = Config.validate()
    for problem in problems:
        logger.warning(f"Configuration problem: {problem}")

    records = get_records(Config.DATA_SOURCE)
    kept = controller.load_records(records)

    if not records:
        st.sidebar.error(f"Could not load personnel records from {Config.DATA_SOURCE}")
    elif controller.store.rejected_count:
        st.sidebar.warning(f"{controller.store.rejected_count} records have no usable location")

    logger.info(f"Map ready with {kept} personnel records")

def sync_widgets():
    """Mirror controller state into widget keys before widgets are drawn."""
    controller = get_controller()
    st.session_state.show_pins = controller.layers.is_enabled(Visualization.MARKERS)
    st.session_state.show_heatmap = controller.layers.is_enabled(Visualization.HEATMAP)
    st.session_state.area_select = controller.area_select_active

# ----------------------------------------------------------------------
# Widget callbacks
# ----------------------------------------------------------------------
def on_pins_toggled():
    get_controller().set_visualization_enabled(Visualization.MARKERS, st.session_state.show_pins)

def on_heatmap_toggled():
    get_controller().set_visualization_enabled(Visualization.HEATMAP, st.session_state.show_heatmap)

def on_area_select_toggled():
    get_controller().set_area_select(st.session_state.area_select)

def on_filters_changed():
    criteria = FilterCriteria.from_selections(
        **{attribute: st.session_state[f"filter_{attribute}"] for attribute in FILTER_ATTRIBUTES}
    )
    get_controller().set_filters(criteria)

def on_filters_cleared():
    for attribute in FILTER_ATTRIBUTES:
        st.session_state[f"filter_{attribute}"] = []
    get_controller().set_filters(None)

def on_finish_area():
    controller = get_controller()
    lon, lat = controller.surface.center
    controller.handle_double_click(lon, lat)

# ----------------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------------
def render_header():
    """Render the application header."""
    st.markdown(f'<div class="main-header">{Config.APP_ICON} {Config.APP_TITLE}</div>',
                unsafe_allow_html=True)
    st.markdown(f'<div class="sub-header">{Config.APP_DESCRIPTION}</div>',
                unsafe_allow_html=True)

def render_sidebar():
    """Render the sidebar with layer toggles and filters."""
    controller = get_controller()

    st.sidebar.header("🗺️ Map Layers")
    st.sidebar.toggle("Location pins", key="show_pins", on_change=on_pins_toggled)
    st.sidebar.toggle("Heatmap", key="show_heatmap", on_change=on_heatmap_toggled)
    st.sidebar.toggle("Area select", key="area_select", on_change=on_area_select_toggled,
                      help="Click the map to add vertices, then press Finish area")

    st.sidebar.divider()
    st.sidebar.header("🔎 Filters")

    records = controller.store.records
    for attribute in FILTER_ATTRIBUTES:
        st.sidebar.multiselect(
            FILTER_LABELS[attribute],
            options=unique_values(records, attribute),
            key=f"filter_{attribute}",
            on_change=on_filters_changed
        )

    st.sidebar.button(
        "Clear filters",
        use_container_width=True,
        disabled=controller.criteria.is_empty(),
        on_click=on_filters_cleared
    )

    # Display current data info if loaded
    if controller.data_loaded:
        st.sidebar.divider()
        st.sidebar.subheader("📊 Current Data")
        st.sidebar.markdown(f"**Loaded:** {len(controller.store)}")
        st.sidebar.markdown(f"**Matching filters:** {len(controller.filtered_records())}")

def render_map():
    """Render the interactive map and dispatch clicks."""
    controller = get_controller()

    if controller.area_select_active:
        vertex_count = len(controller.selector.vertices)
        col1, col2 = st.columns([4, 1])
        col1.info(f"Drawing area: {vertex_count} point(s) placed. Add at least 3, then press Finish area.")
        col2.button("Finish area", type="primary", use_container_width=True,
                    disabled=vertex_count < 3, on_click=on_finish_area)

    bounds = None
    if st.session_state.fit_bounds:
        bounds = get_bbox(controller.filtered_features())
        st.session_state.fit_bounds = False

    with st.spinner("Creating map..."):
        m = build_map(controller.surface, bounds=bounds)

        # Display map and capture clicks
        map_data = st_folium(
            m,
            height=650,
            use_container_width=True,
            returned_objects=["last_clicked", "center", "zoom"],
            key="main_map"
        )

    if not map_data:
        return

    # Keep the surface view in step with the browser map
    center = map_data.get('center')
    zoom = map_data.get('zoom')
    if center and zoom is not None:
        controller.surface.jump_to(center=(center['lng'], center['lat']), zoom=zoom)

    clicked = map_data.get('last_clicked')
    if not clicked:
        return

    click = (clicked['lng'], clicked['lat'])
    # Each distinct click is dispatched once
    if click == st.session_state.last_click:
        return

    st.session_state.last_click = click
    controller.handle_click(*click)
    st.rerun()

def render_selection():
    """Render the selected records and the CSV download."""
    controller = get_controller()
    selection = controller.selection

    if selection is None:
        return

    st.subheader("👥 Selected Personnel")

    if not selection:
        st.warning("No personnel found inside the selected area")
        return

    st.markdown(
        f'<div class="selection-box"><b>{len(selection)}</b> people inside the selected area</div>',
        unsafe_allow_html=True
    )
    st.dataframe(selection_to_dataframe(selection), use_container_width=True, hide_index=True)

    col1, col2 = st.columns(2)
    col1.download_button(
        "⬇️ Download CSV",
        data=selection_to_csv(selection),
        file_name=export_filename(),
        mime="text/csv",
        use_container_width=True
    )
    if col2.button("Clear selection", use_container_width=True):
        controller.clear_selection()
        st.rerun()

def main():
    """Main application function."""
    # Initialize
    initialize_session_state()

    load_data()
    sync_widgets()

    # Render UI
    render_header()
    render_sidebar()
    render_map()
    st.divider()
    render_selection()

    # Drawing feedback expiry falls due once the map has been drawn
    get_controller().run_deferred()

if __name__ == "__main__":
    main()
