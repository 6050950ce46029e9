# example for generating particles from a transfer function table made with CLASS

import cosmoics
from cosmoics.api import SimulationFactory
from cosmoics.core.config import CosmologicalParameters, GridConfiguration, ParticleType
from cosmoics.util.log_util import setup_logging

setup_logging('ICS_INFO')

zics = 40

cosmo = CosmologicalParameters(h=0.67, A_s=2.1e-9, n_s=0.965, z_ini=zics)
grid = GridConfiguration(N=128, boxlen=256.0, chunks=8)

# cold dark matter and baryons share one export group, ids follow each other
cdm = ParticleType('cdm', export_name='PartType1', cube_root_number=128, chunks=8,
                   transfer_function_density='d_cdm', transfer_function_velocity='t_cdm')
baryons = ParticleType('b', export_name='PartType1', cube_root_number=64, chunks=2,
                       transfer_function_density='d_b', transfer_function_velocity='t_b',
                       first_id=128**3)

sim = SimulationFactory.create_initial_conditions(
    cosmo, grid, [cdm, baryons],
    seed=13579,
    transfer_file='./perturb.hdf5',
    spt_cycles=1,
    output_dir='./output/'
)

# stop after the displacement grids with sim.run('potentials')
sim.run()
print(f"cosmoics {cosmoics.__version__}: particles written to {sim.get_particle_file()}")
