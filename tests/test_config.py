#!/usr/bin/env python3
"""
Unit tests for configuration parsing and validation.
"""

import math
import unittest
import numpy as np

from cosmoics.core import ConfigurationError
from cosmoics.core.config import (
    SimulationConfig, CosmologicalParameters, GridConfiguration, ParticleType,
    BiasConfig, TransferConventions, Units, SPEED_OF_LIGHT_SI
)

TEST_CONFIG = {
    'grid': {'N': 16, 'boxlen': 100.0, 'chunks': 8},
    'cosmology': {'h': 0.7, 'A_s': 2.0e-9, 'n_s': 0.96, 'z_ini': 30.0, 'unused': 1},
    'transfer': {'format': 'CLASS'},
    'particle_types': [
        {'identifier': 'cdm', 'cube_root_number': 8, 'chunks': 4},
        {'identifier': 'nu', 'export_name': 'PartType6', 'total_number': 100, 'chunk_size': 30,
         'transfer_function_density': 'd_ncdm', 'transfer_function_velocity': 't_ncdm',
         'thermal_motion_type': 'fermion', 'microscopic_mass_eV': 0.1,
         'microscopic_temperature': 1.7e-4, 'first_id': 512},
    ],
}

class TestParticleType(unittest.TestCase):

    def test_infer_total_number(self):
        ptype = ParticleType('cdm', cube_root_number=8)
        self.assertEqual(ptype.total_number, 512)
        self.assertEqual(ptype.chunks, 1)
        self.assertEqual(ptype.chunk_size, 512)

    def test_infer_cube_root(self):
        self.assertEqual(ParticleType('a', total_number=64).cube_root_number, 4)
        self.assertEqual(ParticleType('b', total_number=100).cube_root_number, 5)

    def test_infer_chunks(self):
        self.assertEqual(ParticleType('a', total_number=100, chunk_size=30).chunks, 4)
        self.assertEqual(ParticleType('b', total_number=100, chunks=3).chunk_size, 34)

    def test_invalid(self):
        with self.assertRaises(ConfigurationError):
            ParticleType('empty')
        with self.assertRaises(ConfigurationError):
            ParticleType('small', total_number=100, chunks=2, chunk_size=10)
        with self.assertRaises(ConfigurationError):
            ParticleType('blind', cube_root_number=2, transfer_function_density='',
                         transfer_function_velocity=None)

    def test_optional_transfer_functions(self):
        ptype = ParticleType('b', cube_root_number=2, transfer_function_velocity=None)
        self.assertEqual(ptype.transfer_function_density, 'd_cdm')
        self.assertEqual(ptype.transfer_function_velocity, '')

class TestSections(unittest.TestCase):

    def test_grid_validation(self):
        self.assertAlmostEqual(GridConfiguration(16, 100.0).cell_volume, 6.25 ** 3)
        self.assertEqual(GridConfiguration(16, 100.0, small_grid_size=4).small_grid_size, 4)
        for args in ((15, 100.0), (0, 100.0), (16, -1.0), (16, 100.0, 4), (16, 100.0, 27),
                     (16, 100.0, 1, 3), (16, 100.0, 1, -2)):
            with self.assertRaises(ConfigurationError, msg=str(args)):
                GridConfiguration(*args)

    def test_bias_validation(self):
        with self.assertRaises(ConfigurationError):
            BiasConfig(num_samples=1)
        with self.assertRaises(ConfigurationError):
            BiasConfig(M_min=10.0, M_max=1.0)
        with self.assertRaises(ConfigurationError):
            BiasConfig(bins=0)

    def test_primordial_power(self):
        cosmo = CosmologicalParameters(A_s=2e-9, n_s=0.96, k_pivot=0.05)
        p = np.asarray(cosmo.primordial_power(np.array([0.0, 0.05, 0.5])))
        self.assertEqual(p[0], 0.0)
        self.assertAlmostEqual(p[1], 2e-9)
        self.assertAlmostEqual(p[2] / 2e-9, 10 ** 0.96, places=10)

    def test_units(self):
        units = Units()
        # One Mpc per Gyr is about 977.8 km/s
        self.assertAlmostEqual(SPEED_OF_LIGHT_SI / 1e3 / units.speed_of_light, 977.8, delta=0.5)
        # rho_crit = 2.775e11 h^2 M_sun / Mpc^3
        self.assertAlmostEqual(units.critical_density(1.0) / 27.75, 1.0, delta=2e-3)
        self.assertAlmostEqual(units.critical_density(0.5) / units.critical_density(1.0), 0.25)
        self.assertTrue(math.isclose(units.electron_volt / units.k_boltzmann, 11604.5, rel_tol=1e-4))

class TestSimulationConfig(unittest.TestCase):

    def test_from_dict(self):
        config = SimulationConfig.from_dict(TEST_CONFIG)
        self.assertEqual(config.grid.N, 16)
        self.assertEqual(config.grid.chunks, 8)
        self.assertEqual(config.cosmology.h, 0.7)
        self.assertEqual(config.cosmology.z_ini, 30.0)
        self.assertEqual(config.transfer, TransferConventions.from_format('CLASS'))
        self.assertIsNone(config.bias)

        cdm, nu = config.particle_types
        self.assertEqual(cdm.total_number, 512)
        self.assertEqual(cdm.chunk_size, 128)
        self.assertEqual(nu.chunks, 4)
        self.assertIs(config.find_type('nu'), nu)
        with self.assertRaises(ConfigurationError):
            config.find_type('photon')

    def test_sections(self):
        params = dict(TEST_CONFIG)
        params['transfer'] = {'h_exponent': 0.0, 'k_exponent': -2.0, 'sign': 1.0}
        params['bias'] = {'bins': 10, 'num_samples': 4, 'M_min': 1e2}
        params['simulation'] = {'seed': 7, 'spt_cycles': 2}
        config = SimulationConfig.from_dict(params)
        self.assertEqual(config.transfer, TransferConventions.from_format('Plain'))
        self.assertEqual(config.bias.bins, 10)
        self.assertEqual(config.simulation.seed, 7)
        self.assertEqual(config.simulation.spt_cycles, 2)

    def test_errors(self):
        with self.assertRaises(ConfigurationError):
            SimulationConfig.from_dict({'cosmology': {}})
        params = dict(TEST_CONFIG, transfer={'format': 'CMBFAST'})
        with self.assertRaises(ConfigurationError):
            SimulationConfig.from_dict(params)

if __name__ == '__main__':
    unittest.main(verbosity=2)
