"""
mapgen package - Core application logic for the BFC map generator.

This package provides:
- Geocoding with region validation and fallback (geocoding.py)
- System prompt assembly from reference documents (context_builder.py)
- Mistral client (llm.py)
- LLM response repair and payload typing (response_repair.py, payloads.py)
- CSV to geography joins (join_engine.py)
- Boundary files and layer styling (geodata.py, map_layers.py)
- Supabase table stores (stores.py)
- Shared map links (sharing.py)
- Generation pipeline (pipeline.py)
- Logging and analytics (logging_analytics.py)
- Settings (settings.py)
"""

# Re-export key functions for convenience
from .constants import (
    REGION_NAME,
    REGION_BOUNDS,
    FALLBACK_CITIES,
    BASE_LAYERS,
    BOUNDARY_FILES,
)

from .errors import (
    MapGenError,
    ConfigurationError,
    UpstreamError,
    AuthorizationError,
    ShareNotFound,
    ShareValidationError,
    JoinError,
)

from .logging_analytics import (
    logger,
    log_generation,
    log_error_to_cloud,
)

from .geocoding import (
    Geocoder,
    geocode,
    geocode_locations,
    in_region,
)

from .context_builder import (
    build_system_prompt,
    build_user_prompt,
)

from .response_repair import repair

from .payloads import (
    classify_payload,
    validate_payload,
)

from .join_engine import (
    parse_csv,
    analyze_csv_structure,
    join,
    join_csv_with_geography,
)

from .geodata import (
    load_feature_collection,
    load_boundaries,
    clear_cache,
)

from .map_layers import (
    get_base_layers,
    layers_for_data_level,
    apply_color_scheme,
)

from .stores import Stores

from .sharing import (
    ShareService,
    new_share_token,
    share_url,
)

from .pipeline import MapGenerationPipeline

__all__ = [
    # Constants
    'REGION_NAME',
    'REGION_BOUNDS',
    'FALLBACK_CITIES',
    'BASE_LAYERS',
    'BOUNDARY_FILES',
    # Errors
    'MapGenError',
    'ConfigurationError',
    'UpstreamError',
    'AuthorizationError',
    'ShareNotFound',
    'ShareValidationError',
    'JoinError',
    # Logging
    'logger',
    'log_generation',
    'log_error_to_cloud',
    # Geocoding
    'Geocoder',
    'geocode',
    'geocode_locations',
    'in_region',
    # Prompting
    'build_system_prompt',
    'build_user_prompt',
    'repair',
    'classify_payload',
    'validate_payload',
    # Joins
    'parse_csv',
    'analyze_csv_structure',
    'join',
    'join_csv_with_geography',
    # Geometry
    'load_feature_collection',
    'load_boundaries',
    'clear_cache',
    'get_base_layers',
    'layers_for_data_level',
    'apply_color_scheme',
    # Services
    'Stores',
    'ShareService',
    'new_share_token',
    'share_url',
    'MapGenerationPipeline',
]
