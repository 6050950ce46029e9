"""
Services module containing file handling and pipeline logic on top of the core arrays.
"""
from .grid_service import GridManager, NoiseGenerator, FFTProcessor
from .grid_io import (
    GridFile, ChunkSlice, chunk_side, chunk_slice, iter_chunks, create_grid_file,
    read_chunk, write_chunk, read_grid, write_grid, map_chunks
)
from .transfer_service import TransferService, read_transfer_table, write_transfer_table
from .perturbation_service import PerturbationCalculator, grid_path
from .spt_service import SPTSolver
from .particle_service import ParticleGenerator, ThermalSampler
from .output_service import ParticleWriter, read_particles
from .bias_service import VelocityBiasEstimator, read_matter_velocity_grids

__all__ = [
    'GridManager',
    'NoiseGenerator',
    'FFTProcessor',
    'GridFile',
    'ChunkSlice',
    'chunk_side',
    'chunk_slice',
    'iter_chunks',
    'create_grid_file',
    'read_chunk',
    'write_chunk',
    'read_grid',
    'write_grid',
    'map_chunks',
    'TransferService',
    'read_transfer_table',
    'write_transfer_table',
    'PerturbationCalculator',
    'grid_path',
    'SPTSolver',
    'ParticleGenerator',
    'ThermalSampler',
    'ParticleWriter',
    'read_particles',
    'VelocityBiasEstimator',
    'read_matter_velocity_grids'
]
