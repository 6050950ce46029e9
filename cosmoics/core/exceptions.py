"""
Exception classes for cosmoics.
"""

class CosmoICsError(Exception):
    """Base exception for cosmoics."""
    pass

class ConfigurationError(CosmoICsError):
    """Configuration validation errors."""
    pass

class GridError(CosmoICsError):
    """Grid dimension and compatibility errors."""
    pass

class GridFileError(CosmoICsError):
    """Failed reads and writes of grid, table, catalog and particle files."""
    pass

class NumericalError(CosmoICsError):
    """Non-finite or degenerate values that would corrupt a grid."""
    pass

class SimulationError(CosmoICsError):
    """Simulation execution errors."""
    pass
