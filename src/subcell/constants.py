"""Numerical constants: tolerances and defaults shared across the package.

Machine precision values come from ``numpy.finfo`` for IEEE double.
Import from here instead of defining local constants.
"""

import numpy as _np

# Machine precision
EPS = float(_np.finfo(_np.float64).eps)        # 2.220446049250313e-16
TINY = float(_np.finfo(_np.float64).tiny)      # smallest normal double

# Zalesak regularization: |Q| / (|P| + ZALESAK_EPS_FACTOR * eps * |bound|)
ZALESAK_EPS_FACTOR = 100.0

# Ideal gas
GAMMA_AIR = 1.4

# Euler variable names in storage order
EULER_VARNAMES = ("rho", "rho_v1", "rho_v2", "rho_e")

# Spatial dimension of the mesh
NDIMS = 2
