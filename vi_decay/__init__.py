"""
Decay-Weighted Vegetation Index Composites

Builds annual NDVI/EVI2/SAVI composites (full year, wet and dry season) from
MapBiomas Landsat mosaics, blending each year with its six predecessors using
exponential decay weights and filling spatial gaps from neighbouring years.
"""

__version__ = "1.0.0"

# Main entry points
from .processing import build_pipeline, process_year, process_years

# Core components
from .blend import GapFillBlender
from .compositor import DecayCompositor, lag_plan
from .registry import BandSet, DecayWeights, RunConfig, YearSensorRegistry
from .scene import Scene, SceneBuilder

__all__ = [
    'build_pipeline',
    'process_year',
    'process_years',
    'GapFillBlender',
    'DecayCompositor',
    'lag_plan',
    'BandSet',
    'DecayWeights',
    'RunConfig',
    'YearSensorRegistry',
    'Scene',
    'SceneBuilder',
]
