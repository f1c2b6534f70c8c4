"""
Workforce Mapper.

This package contains modules for:
- Loading and filtering personnel records
- Projecting records onto map layers
- Drawing a selection area and querying the records inside it
- Building the Folium map and exporting selections
"""

from .records import (
    Record,
    FilterCriteria,
    matches,
    filter_records
)

from .features import (
    project,
    record_to_feature
)

from .geo_utils import (
    point_in_polygon,
    select_within
)

from .layer_manager import (
    LayerManager,
    Visualization
)

from .drawing import (
    AreaSelector,
    DrawingState
)

from .controller import MapController

__all__ = [
    # Records
    'Record',
    'FilterCriteria',
    'matches',
    'filter_records',

    # Features
    'project',
    'record_to_feature',

    # Spatial query
    'point_in_polygon',
    'select_within',

    # Map layers
    'LayerManager',
    'Visualization',
    'AreaSelector',
    'DrawingState',
    'MapController',
]
