#!/usr/bin/env python3
"""
Unit tests for binned power spectra and bootstrap statistics.

Includes the shot-noise scenario: a single unit point at the centre of an
N = 16, boxlen = 100 box has P(k) = boxlen^3 W(k)^2, i.e. 1 / nbar up to
the assignment window.
"""

import unittest
import numpy as np
import jax.numpy as jnp

from cosmoics.core import (
    SpectralGrid, deposit, density_contrast, cross_power, auto_power,
    summarize_bootstrap, format_bias_report, generate_complex_grf, ConfigurationError
)
from cosmoics.core.power_spectrum import safe_ratio

TEST_CONFIG = {
    'N': 16,
    'boxlen': 100.0,
    'bins': 10,
    'shot_noise_tolerance': 0.1,
}

def print_test_header(test_name):
    print(f"\n{'='*60}")
    print(f"TEST: {test_name}")
    print(f"{'='*60}")

class TestCrossPower(unittest.TestCase):

    def setUp(self):
        self.N = TEST_CONFIG['N']
        self.boxlen = TEST_CONFIG['boxlen']
        self.grid = SpectralGrid(self.N, self.boxlen)

    def test_shot_noise_single_point(self):
        print_test_header("Shot noise of a single point")
        L, N = self.boxlen, self.N
        rho = deposit(jnp.array([[L / 2, L / 2, L / 2]]), jnp.ones(1), N, L, 'tsc')
        delta_k = self.grid.forward(density_contrast(rho, 1.0, L))

        pk = auto_power(self.grid, delta_k, TEST_CONFIG['bins'])
        shot_noise = L**3  # 1 / nbar

        # The first bin only holds k = 0, which is left out
        self.assertEqual(float(pk.counts[0]), 0.0)

        # Second bin: 6 modes at k_f and 12 at sqrt(2) k_f, damped by the TSC window
        w1 = 0.75 + 0.25 * np.cos(2 * np.pi / N)
        expected = (6 * w1**2 + 12 * w1**4) / 18
        ratio = float(pk.power[1]) / shot_noise
        print(f"   P(k) n_bar in the first filled bin: {ratio:.4f} (window {expected:.4f})")

        self.assertEqual(float(pk.counts[1]), 18.0)
        self.assertAlmostEqual(ratio, expected, places=8)
        self.assertAlmostEqual(ratio, 1.0, delta=TEST_CONFIG['shot_noise_tolerance'])
        self.assertAlmostEqual(float(pk.k[1]), (6 + 12 * np.sqrt(2)) / 18 * self.grid.dk, places=10)

    def test_mode_counts(self):
        """All modes with 0 < |k| <= k_Nyquist are counted once, conjugates included."""
        field_k = self.grid.forward(np.ones(self.grid.rshape))
        pk = auto_power(self.grid, field_k, 8)

        n = np.fft.fftfreq(self.N) * self.N
        kmag = np.sqrt(n[:, None, None]**2 + n[None, :, None]**2 + n[None, None, :]**2)
        expected = np.count_nonzero((kmag > 0) & (kmag <= self.N / 2))
        self.assertEqual(float(jnp.sum(pk.counts)), float(expected))

    def test_cross_is_symmetric(self):
        a = generate_complex_grf(self.N, self.boxlen, 1)
        b = generate_complex_grf(self.N, self.boxlen, 2)
        ab = cross_power(self.grid, a, b, 6)
        ba = cross_power(self.grid, b, a, 6)
        np.testing.assert_allclose(np.asarray(ab.power), np.asarray(ba.power), rtol=1e-12)

    def test_white_noise_power(self):
        """Unit-variance white noise has P = boxlen^3 / N^3 on average."""
        N = 32
        grid = SpectralGrid(N, self.boxlen)
        field_k = generate_complex_grf(N, self.boxlen, 11)
        pk = auto_power(grid, field_k, 4)
        mean = float(jnp.sum(pk.power * pk.counts) / jnp.sum(pk.counts))
        self.assertAlmostEqual(mean / grid.white_noise_power, 1.0, delta=0.05)

    def test_empty_bins_report_centre(self):
        field_k = self.grid.forward(np.ones(self.grid.rshape))
        pk = auto_power(self.grid, field_k, 40)
        width = self.grid.k_nyquist / 40
        self.assertEqual(float(pk.power[0]), 0.0)
        self.assertAlmostEqual(float(pk.k[0]), 0.5 * width, places=12)

    def test_invalid_bins(self):
        field_k = self.grid.forward(np.ones(self.grid.rshape))
        with self.assertRaises(ConfigurationError):
            auto_power(self.grid, field_k, 0)

class TestBootstrapStatistics(unittest.TestCase):

    def setUp(self):
        rng = np.random.default_rng(9)
        self.bins = 6
        self.k = np.linspace(0.1, 0.6, self.bins)
        self.counts = np.array([0.0, 1.0, 2.0, 10.0, 30.0, 60.0])
        self.halo = rng.uniform(1.0, 2.0, size=(8, self.bins))
        self.matter = rng.uniform(1.0, 2.0, size=(8, self.bins))
        self.cross = rng.uniform(0.5, 1.0, size=(8, self.bins))
        self.reconstructed = rng.uniform(0.5, 1.0, size=(8, self.bins))

    def test_bin_exclusion(self):
        stats = summarize_bootstrap(self.k, self.counts, self.cross, self.halo,
                                    self.matter, self.reconstructed)
        np.testing.assert_array_equal(stats.k, self.k[2:])
        for name in ('cross_mean', 'cross_var', 'halo_mean', 'matter_mean', 'reconstructed_mean',
                     'reconstructed_var', 'bias_mean', 'bias_var', 'correlation_mean', 'correlation_var'):
            self.assertEqual(getattr(stats, name).shape, (self.bins - 2,), name)

    def test_means_and_unbiased_variance(self):
        stats = summarize_bootstrap(self.k, self.counts, self.cross, self.halo,
                                    self.matter, self.reconstructed)
        keep = slice(2, None)
        np.testing.assert_allclose(stats.cross_mean, self.cross[:, keep].mean(axis=0), rtol=1e-12)
        np.testing.assert_allclose(stats.cross_var, self.cross[:, keep].var(axis=0, ddof=1), rtol=1e-10)

        bias = self.cross / self.reconstructed
        np.testing.assert_allclose(stats.bias_mean, bias[:, keep].mean(axis=0), rtol=1e-12)
        corr = self.cross / np.sqrt(self.halo * self.matter)
        np.testing.assert_allclose(stats.correlation_var, corr[:, keep].var(axis=0, ddof=1), rtol=1e-10)

    def test_identical_samples_have_zero_variance(self):
        print_test_header("Bootstrap variance of identical samples")
        row = lambda a: np.repeat(a[:1], 8, axis=0)
        stats = summarize_bootstrap(self.k, self.counts, row(self.cross), row(self.halo),
                                    row(self.matter), row(self.reconstructed))
        for name in ('cross_var', 'reconstructed_var', 'bias_var', 'correlation_var'):
            np.testing.assert_array_equal(getattr(stats, name), 0.0, err_msg=name)
        np.testing.assert_array_equal(stats.cross_mean, self.cross[0, 2:])

    def test_zero_denominators(self):
        self.reconstructed[:, 3] = 0.0
        self.halo[:, 4] = 0.0
        stats = summarize_bootstrap(self.k, self.counts, self.cross, self.halo,
                                    self.matter, self.reconstructed)
        self.assertEqual(stats.bias_mean[1], 0.0)
        self.assertEqual(stats.correlation_mean[2], 0.0)
        self.assertTrue(np.all(np.isfinite(stats.bias_mean)))

    def test_safe_ratio(self):
        out = safe_ratio(np.array([1.0, 2.0, 3.0]), np.array([2.0, 0.0, 1e-301]))
        np.testing.assert_array_equal(out, [0.5, 0.0, 0.0])

    def test_needs_two_samples(self):
        with self.assertRaises(ConfigurationError):
            summarize_bootstrap(self.k, self.counts, self.cross[:1], self.halo[:1],
                                self.matter[:1], self.reconstructed[:1])

    def test_report_format(self):
        stats = summarize_bootstrap(self.k, self.counts, self.cross, self.halo,
                                    self.matter, self.reconstructed)
        lines = format_bias_report(stats).split("\n")
        self.assertEqual(lines[0], "k Pk_cross_mean Pk_halo_mean Pk_matter_mean correlation_mean correlation_var")
        self.assertEqual(lines[6], "k Pk_reconstruct_mean Pk_bootstrap_mean Pk_reconstruct_var "
                                   "Pk_bootstrap_var bias_mean bias_var")
        self.assertEqual(len(lines), 2 * (self.bins - 2) + 3)
        self.assertEqual(len(lines[1].split()), 6)
        self.assertEqual(len(lines[7].split()), 7)
        self.assertAlmostEqual(float(lines[1].split()[0]), self.k[2], places=5)

if __name__ == '__main__':
    unittest.main(verbosity=2)
