"""
.. include:: ../README.md
"""
from isonurbs.spacing import (SpacingFunction,
                              UniformSpacing,
                              LinearSpacing,
                              GeometricSpacing,
                              get_spacing_function)
from isonurbs.knot_vector import KnotVector
from isonurbs.nurbs_patch import NURBSPatch, KnotRemovalResult, interpolate, revolve_3d
from isonurbs.patch_topology import PatchTopology
from isonurbs.patch_map import NURBSPatchMap
from isonurbs.table import Table
from isonurbs.nurbs_extension import NURBSExtension, Mode, InconsistentKnotVectorsError
from isonurbs.text_io import TokenStream
from isonurbs.parallel_utils import parallel_blocks
