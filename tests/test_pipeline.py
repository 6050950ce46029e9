#!/usr/bin/env python3
"""
Tests of the initial-conditions pipeline: perturbation theory corrections,
particle generation, the particle file and the workflow as a whole.

All runs use a small synthetic transfer function table, so no Boltzmann
code output is needed.
"""

import os
import shutil
import tempfile
import unittest
import h5py
import jax
import jax.numpy as jnp
import numpy as np

from cosmoics.core import NumericalError, ConfigurationError, SimulationError, GridFileError
from cosmoics.core.config import (
    SimulationConfig, CosmologicalParameters, GridConfiguration, ParticleType,
    SimulationParameters, OutputConfig, Units
)
from cosmoics.core.data_models import ParticleData
from cosmoics.api import InitialConditionsSimulation, SimulationFactory
from cosmoics.services import GridManager, SPTSolver, ThermalSampler, ParticleWriter, read_particles
from cosmoics.services.grid_io import read_grid, write_grid
from cosmoics.services.spt_service import next_order_coefficients
from cosmoics.services.particle_service import (
    ParticleGenerator, lattice_positions, periodic_wrap, particle_mass, thermal_velocities
)
from cosmoics.workflow import WorkflowEngine

from synthetic import make_transfer_table

TEST_CONFIG = {
    'N': 8,
    'boxlen': 100.0,
    'chunks': 8,
    'cube_root_number': 4,
    'particle_chunks': 2,
    'spt_cycles': 1,
    'seed': 12345,
}

def print_test_header(test_name):
    print(f"\n{'='*60}")
    print(f"TEST: {test_name}")
    print(f"{'='*60}")

def print_test_result(test_name, success, details=""):
    status = "PASSED" if success else "FAILED"
    print(f"{test_name}: {status}")
    if details:
        print(f"   {details}")

def make_config(output_dir, particle_types=None, **simulation):
    simulation.setdefault('seed', TEST_CONFIG['seed'])
    if particle_types is None:
        particle_types = [ParticleType('cdm', cube_root_number=TEST_CONFIG['cube_root_number'],
                                       chunks=TEST_CONFIG['particle_chunks'])]
    return SimulationConfig(
        cosmology=CosmologicalParameters(z_ini=40.0),
        grid=GridConfiguration(TEST_CONFIG['N'], TEST_CONFIG['boxlen'], TEST_CONFIG['chunks']),
        simulation=SimulationParameters(**simulation),
        output=OutputConfig(output_dir=output_dir),
        particle_types=particle_types
    )

class TestSPT(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix='cosmoics_spt_')
        self.N = TEST_CONFIG['N']
        self.grid_manager = GridManager(GridConfiguration(self.N, TEST_CONFIG['boxlen'], TEST_CONFIG['chunks']))
        x = np.arange(self.N) * 2 * np.pi / self.N
        wave = np.sin(x)[:, None, None] + 0.5 * np.cos(2 * x)[None, :, None] + np.zeros((1, 1, self.N))
        self.density = 0.01 * wave
        self.flux = -3.0 * self.density

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_coefficients(self):
        (d1, d2), (t1, t2) = next_order_coefficients(2)
        self.assertAlmostEqual(d1, 5.0 / 7.0)
        self.assertAlmostEqual(d2, 2.0 / 7.0)
        self.assertAlmostEqual(t1, 3.0 / 7.0)
        self.assertAlmostEqual(t2, 4.0 / 7.0)

    def test_zero_cycles(self):
        solver = SPTSolver(self.grid_manager, self.temp_dir)
        density, flux = solver.run(self.density, self.flux, 0)
        np.testing.assert_array_equal(np.asarray(density), self.density)
        np.testing.assert_array_equal(np.asarray(flux), self.flux)
        self.assertEqual(os.listdir(self.temp_dir), [])

    def test_zero_density(self):
        solver = SPTSolver(self.grid_manager, self.temp_dir)
        with self.assertRaises(NumericalError):
            solver.run(np.zeros_like(self.density), self.flux, 1)

    def test_one_cycle(self):
        print_test_header("One perturbation theory cycle")
        solver = SPTSolver(self.grid_manager, self.temp_dir)
        density, flux = solver.run(self.density, self.flux, 1)

        self.assertAlmostEqual(solver.aHf, 3.0, places=10)
        self.assertEqual(density.shape, (self.N,) * 3)
        self.assertTrue(bool(jnp.all(jnp.isfinite(density))))
        self.assertTrue(bool(jnp.all(jnp.isfinite(flux))))

        # Totals are the sum of the orders, the flux orders in units of -aHf
        d0, _ = read_grid(solver._path('density', 0))
        d1, _ = read_grid(solver._path('density', 1))
        f1, _ = read_grid(solver._path('flux', 1))
        np.testing.assert_allclose(np.asarray(density), d0 + d1, atol=1e-14)
        np.testing.assert_allclose(np.asarray(flux), self.flux - 3.0 * f1, atol=1e-13)

        # Second order corrections are quadratic in the amplitude
        self.assertLess(np.max(np.abs(d1)), 0.1 * np.max(np.abs(self.density)))
        self.assertGreater(np.max(np.abs(d1)), 0.0)
        print_test_result("SPT cycle", True, f"max |delta_2| = {np.max(np.abs(d1)):.3e}")

    def test_next_order_eps(self):
        """eps sums the squared weighted source terms separately."""
        solver = SPTSolver(self.grid_manager, self.temp_dir)
        shape = (self.N,) * 3
        source1 = os.path.join(self.temp_dir, 'source1.hdf5')
        source2 = os.path.join(self.temp_dir, 'source2.hdf5')
        write_grid(source1, np.full(shape, 2.0), TEST_CONFIG['boxlen'], TEST_CONFIG['chunks'])
        write_grid(source2, np.full(shape, -1.0), TEST_CONFIG['boxlen'], TEST_CONFIG['chunks'])

        eps_d, eps_t = solver.next_order(0, source1, source2)

        # Order 2 coefficients are (5/7, 2/7) and (3/7, 4/7)
        self.assertAlmostEqual(eps_d, np.sqrt(104.0) / 7.0, places=12)
        self.assertAlmostEqual(eps_t, np.sqrt(52.0) / 7.0, places=12)
        density, _ = read_grid(solver._path('density', 1))
        flux, _ = read_grid(solver._path('flux', 1))
        np.testing.assert_allclose(density, 8.0 / 7.0)
        np.testing.assert_allclose(flux, 2.0 / 7.0)

class TestParticles(unittest.TestCase):

    def test_lattice(self):
        ptype = ParticleType('cdm', cube_root_number=4, first_id=100)
        q, ids = lattice_positions(ptype, 100.0, 5, 3)
        np.testing.assert_array_equal(np.asarray(ids), [105, 106, 107])
        np.testing.assert_allclose(np.asarray(q[0]), [0.0, 25.0, 25.0])
        np.testing.assert_allclose(np.asarray(q[2]), [0.0, 25.0, 75.0])

    def test_periodic_wrap(self):
        x = jnp.array([-1e-17, 0.0, 100.0, 250.0, -30.0])
        wrapped = np.asarray(periodic_wrap(x, 100.0))
        self.assertTrue(np.all((wrapped >= 0) & (wrapped < 100.0)))
        np.testing.assert_allclose(wrapped[2:], [0.0, 50.0, 70.0])

    def test_particle_mass(self):
        units = Units()
        mass = particle_mass(0.3, units, 0.7, 100.0, 64)
        self.assertAlmostEqual(mass, 0.3 * units.critical_density(0.7) * 1e6 / 64)

    def test_zero_fields(self):
        """Without perturbations particles stay on the lattice at rest."""
        N, boxlen = 8, 100.0
        ptype = ParticleType('cdm', cube_root_number=4, chunks=3)
        zero = [np.zeros((N, N, N))] * 3
        generator = ParticleGenerator(ptype, zero, zero, boxlen, 2.0)

        chunks = list(generator.chunks())
        self.assertEqual([len(c) for c in chunks], [22, 22, 20])
        q, ids = lattice_positions(ptype, boxlen, 0, 64)
        positions = np.concatenate([np.asarray(c.positions) for c in chunks])
        np.testing.assert_allclose(positions, np.asarray(q), atol=1e-12)
        np.testing.assert_array_equal(np.concatenate([np.asarray(c.ids) for c in chunks]), np.asarray(ids))
        for c in chunks:
            np.testing.assert_array_equal(np.asarray(c.velocities), 0.0)
            np.testing.assert_array_equal(np.asarray(c.masses), 2.0)

    def test_uniform_displacement(self):
        N, boxlen = 8, 100.0
        ptype = ParticleType('cdm', cube_root_number=2)
        shift = [np.full((N, N, N), s) for s in (10.0, -5.0, 0.0)]
        velocity = [np.full((N, N, N), v) for v in (1.0, 2.0, 3.0)]
        particles = ParticleGenerator(ptype, shift, velocity, boxlen, 1.0, scheme='cic').chunk(0)
        np.testing.assert_allclose(np.asarray(particles.positions[0]), [90.0, 5.0, 0.0])
        np.testing.assert_allclose(np.asarray(particles.velocities), np.tile([1.0, 2.0, 3.0], (8, 1)))

class TestThermalMotion(unittest.TestCase):

    def test_fermion_mean_momentum(self):
        """<p> = 7 pi^4 / (180 zeta(3)) T for a relativistic Fermi-Dirac distribution."""
        T = 1.7e-4
        sampler = ThermalSampler('fermion', T)
        p = sampler.sample(jax.random.PRNGKey(0), 100000)
        self.assertTrue(np.all(p > 0))
        expected = 7 * np.pi ** 4 / (180 * 1.2020569031595942) * T
        self.assertAlmostEqual(np.mean(p) / expected, 1.0, delta=0.05)

    def test_boson_is_colder(self):
        key = jax.random.PRNGKey(1)
        fermion = ThermalSampler('fermion', 1.0).sample(key, 50000)
        boson = ThermalSampler('boson', 1.0).sample(key, 50000)
        self.assertLess(np.mean(boson), np.mean(fermion))

    def test_invalid_sampler(self):
        with self.assertRaises(ConfigurationError):
            ThermalSampler('anyon', 1.0)
        with self.assertRaises(ConfigurationError):
            ThermalSampler('fermion', 0.0)

    def test_velocity_norms(self):
        sampler = ThermalSampler('fermion', 1.0)
        key = jax.random.PRNGKey(2)
        v = np.asarray(thermal_velocities(key, sampler, 1000, 0.5, 4.0, 10.0))

        key_p, _ = jax.random.split(key)
        p = sampler.sample(key_p, 1000)
        np.testing.assert_allclose(np.linalg.norm(v, axis=1), p / 0.5 / 4.0 * 10.0, rtol=1e-10)

class TestParticleWriter(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix='cosmoics_out_')

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _particles(self, n, first_id, mass):
        return ParticleData(
            positions=np.full((n, 3), float(first_id)),
            velocities=np.zeros((n, 3)),
            masses=np.full(n, mass),
            ids=np.arange(first_id, first_id + n)
        )

    def test_shared_group(self):
        a = ParticleType('cdm', total_number=8, export_name='PartType1')
        b = ParticleType('b', total_number=4, export_name='PartType1', first_id=8)
        nu = ParticleType('nu', total_number=3, export_name='PartType6', first_id=12)
        path = os.path.join(self.temp_dir, 'particles.hdf5')

        with ParticleWriter(path, [a, b, nu], 100.0, 40.0) as writer:
            writer.write_chunk(b, 0, self._particles(4, 8, 2.0))
            writer.write_chunk(a, 4, self._particles(4, 4, 1.0))
            writer.write_chunk(a, 0, self._particles(4, 0, 1.0))
            writer.write_chunk(nu, 0, self._particles(3, 12, 0.1))

        with h5py.File(path, 'r') as f:
            np.testing.assert_array_equal(f['Header'].attrs['NumPart_Total'], [12, 3])
            self.assertEqual(f['Header'].attrs['BoxSize'], 100.0)
            self.assertEqual(f['Header'].attrs['Redshift'], 40.0)

        group = read_particles(path, 'PartType1')
        np.testing.assert_array_equal(group.ids, np.arange(12))
        np.testing.assert_array_equal(group.masses, [1.0] * 8 + [2.0] * 4)
        self.assertEqual(read_particles(path, 'PartType6').positions.shape, (3, 3))

    def test_missing_group(self):
        path = os.path.join(self.temp_dir, 'particles.hdf5')
        with ParticleWriter(path, [ParticleType('cdm', total_number=1)], 1.0, 0.0):
            pass
        with self.assertRaises(GridFileError):
            read_particles(path, 'PartType0')

class TestWorkflow(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix='cosmoics_workflow_')
        self.table = make_transfer_table()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_full_pipeline(self):
        print_test_header("Full pipeline with perturbation theory")
        config = make_config(self.temp_dir, spt_cycles=TEST_CONFIG['spt_cycles'])
        simulation = InitialConditionsSimulation(config, self.table)
        result = simulation.run()

        self.assertTrue(result.success)
        self.assertEqual(result.final_step, 'particles')
        self.assertEqual([r.step_name for r in result.step_results],
                         ['noise', 'perturbations', 'spt', 'potentials', 'particles'])

        path = simulation.get_particle_file()
        self.assertEqual(path, os.path.join(self.temp_dir, 'particles.hdf5'))
        particles = read_particles(path, 'PartType1')

        n = TEST_CONFIG['cube_root_number'] ** 3
        self.assertEqual(particles.positions.shape, (n, 3))
        self.assertEqual(particles.velocities.shape, (n, 3))
        self.assertTrue(np.all((particles.positions >= 0) & (particles.positions < TEST_CONFIG['boxlen'])))
        self.assertTrue(np.all(np.isfinite(particles.velocities)))
        np.testing.assert_array_equal(particles.ids, np.arange(n))
        self.assertTrue(np.all(particles.masses > 0))
        self.assertTrue(np.all(particles.masses == particles.masses[0]))

        for name in ('gaussian_pure.hdf5', 'density_cdm.hdf5', 'theta_cdm.hdf5',
                     'displacement_x_cdm.hdf5', 'velocity_z_cdm.hdf5'):
            self.assertTrue(os.path.exists(os.path.join(self.temp_dir, name)), name)
        self.assertTrue(os.path.isdir(os.path.join(self.temp_dir, 'spt_cdm')))
        print_test_result("Full pipeline", True, f"{n} particles written to {path}")

    def test_reproducible(self):
        paths = []
        for run in range(2):
            output_dir = os.path.join(self.temp_dir, f"run{run}")
            InitialConditionsSimulation(make_config(output_dir), self.table).run()
            paths.append(os.path.join(output_dir, 'particles.hdf5'))
        a, b = (read_particles(p, 'PartType1') for p in paths)
        np.testing.assert_array_equal(a.positions, b.positions)
        np.testing.assert_array_equal(a.velocities, b.velocities)

    def test_discard_grids(self):
        config = make_config(self.temp_dir)
        config.output.keep_grids = False
        InitialConditionsSimulation(config, self.table).run()
        self.assertEqual(sorted(os.listdir(self.temp_dir)), ['particles.hdf5'])

    def test_until_step(self):
        engine = WorkflowEngine(make_config(self.temp_dir))
        engine.context.set('transfer_table', self.table)
        result = engine.execute('perturbations')
        self.assertTrue(result.success)
        self.assertEqual(result.final_step, 'perturbations')
        self.assertTrue(engine.context.has('perturbation_grids'))
        self.assertFalse(os.path.exists(os.path.join(self.temp_dir, 'particles.hdf5')))

    def test_small_gaussian_grid(self):
        config = make_config(self.temp_dir)
        config.grid = GridConfiguration(TEST_CONFIG['N'], TEST_CONFIG['boxlen'], TEST_CONFIG['chunks'],
                                        small_grid_size=4)
        engine = WorkflowEngine(config)
        engine.context.set('transfer_table', self.table)
        self.assertTrue(engine.execute('noise').success)

        full, _ = read_grid(os.path.join(self.temp_dir, 'gaussian_pure.hdf5'))
        small, boxlen = read_grid(os.path.join(self.temp_dir, 'gaussian_pure_small.hdf5'))
        self.assertEqual(small.shape, (4, 4, 4))
        self.assertEqual(boxlen, TEST_CONFIG['boxlen'])
        self.assertAlmostEqual(small.mean(), full.mean(), places=12)
        self.assertAlmostEqual(small[1, 0, 3], full[2:4, 0:2, 6:8].mean(), places=12)

    def test_without_velocity_function(self):
        ptype = ParticleType('cdm', cube_root_number=TEST_CONFIG['cube_root_number'],
                             transfer_function_velocity=None)
        config = make_config(self.temp_dir, [ptype], spt_cycles=1)
        simulation = InitialConditionsSimulation(config, self.table)
        self.assertTrue(simulation.run().success)

        particles = read_particles(simulation.get_particle_file(), 'PartType1')
        np.testing.assert_array_equal(particles.velocities, 0.0)
        q, _ = lattice_positions(ptype, TEST_CONFIG['boxlen'], 0, ptype.total_number)
        self.assertGreater(np.max(np.abs(particles.positions - np.asarray(q))), 0.0)
        files = os.listdir(self.temp_dir)
        self.assertIn('displacement_x_cdm.hdf5', files)
        self.assertNotIn('theta_cdm.hdf5', files)
        self.assertNotIn('velocity_x_cdm.hdf5', files)
        self.assertNotIn('spt_cdm', files)

    def test_without_density_function(self):
        ptype = ParticleType('cdm', cube_root_number=TEST_CONFIG['cube_root_number'],
                             transfer_function_density='')
        simulation = InitialConditionsSimulation(make_config(self.temp_dir, [ptype]), self.table)
        self.assertTrue(simulation.run().success)

        particles = read_particles(simulation.get_particle_file(), 'PartType1')
        q, _ = lattice_positions(ptype, TEST_CONFIG['boxlen'], 0, ptype.total_number)
        np.testing.assert_allclose(particles.positions, np.asarray(q), atol=1e-12)
        self.assertGreater(np.max(np.abs(particles.velocities)), 0.0)
        self.assertTrue(np.all(particles.masses > 0))
        files = os.listdir(self.temp_dir)
        self.assertIn('velocity_x_cdm.hdf5', files)
        self.assertNotIn('density_cdm.hdf5', files)
        self.assertNotIn('displacement_x_cdm.hdf5', files)

    def test_unknown_step(self):
        simulation = InitialConditionsSimulation(make_config(self.temp_dir), self.table)
        with self.assertRaises(ConfigurationError):
            simulation.run('lensing')

    def test_missing_particle_types(self):
        with self.assertRaises(ConfigurationError):
            InitialConditionsSimulation(make_config(self.temp_dir, particle_types=[]), self.table).run()

    def test_unknown_transfer_function(self):
        ptype = ParticleType('nu', cube_root_number=2, transfer_function_density='d_ncdm')
        simulation = InitialConditionsSimulation(make_config(self.temp_dir, [ptype]), self.table)
        with self.assertRaises(SimulationError) as cm:
            simulation.run()
        self.assertIsInstance(cm.exception.__cause__, ConfigurationError)
        self.assertFalse(simulation.get_results().success)

    def test_factory(self):
        sim = SimulationFactory.create_initial_conditions(
            CosmologicalParameters(),
            GridConfiguration(8, 50.0),
            [ParticleType('cdm', cube_root_number=2)],
            self.table,
            seed=3,
            output_dir=self.temp_dir,
            keep_grids=False
        )
        self.assertEqual(sim.config.simulation.seed, 3)
        self.assertFalse(sim.config.output.keep_grids)
        self.assertEqual(sim.config.grid.boxlen, 50.0)

if __name__ == '__main__':
    unittest.main(verbosity=2)
