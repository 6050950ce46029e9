# example for measuring the power spectrum of a particle file written by minimal_example.py

import h5py
import numpy as np
import jax.numpy as jnp

from cosmoics.core import SpectralGrid, deposit, density_contrast, auto_power
from cosmoics.services import read_particles

N = 128
bins = 64

particles = read_particles('./output/particles.hdf5', 'PartType1')

with h5py.File('./output/particles.hdf5', 'r') as f:
    boxlen = float(f['Header'].attrs['BoxSize'])

grid = SpectralGrid(N, boxlen)

# mass weighted CIC density contrast
masses = jnp.asarray(particles.masses)
rho = deposit(jnp.asarray(particles.positions), masses, N, boxlen, 'cic')
delta_k = grid.forward(density_contrast(rho, float(jnp.sum(masses)), boxlen))

pk = auto_power(grid, delta_k, bins)
np.savetxt('./output/pofk.txt',
           np.column_stack([np.asarray(pk.k), np.asarray(pk.power), np.asarray(pk.counts)]),
           header='k P(k) modes')
