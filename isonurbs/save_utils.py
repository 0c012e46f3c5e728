import os
import xml.dom.minidom
from functools import reduce
from typing import Iterable

import meshio as io
import numpy as np


def writePVD(fileName: str, groups: dict[str, dict], verbose: bool = True):
    """
    Write a Paraview collection file referencing the `.vtu` files of several
    groups, parts and time steps.

    Parameters
    ----------
    fileName : str
        Path of the collection without the `.pvd` extension. The referenced
        files are named `{fileName}_{group}_{part}_{step}.{ext}`.
    groups : dict[str, dict]
        For each group name, a dict with keys "ext", "npart" and "nstep".
    verbose : bool, optional
        If `True`, prints the written file name. By default, True.
    """
    fname = os.path.basename(fileName)
    pvd = xml.dom.minidom.Document()
    root = pvd.createElementNS("VTK", "VTKFile")
    root.setAttribute("type", "Collection")
    root.setAttribute("version", "0.1")
    root.setAttribute("byte_order", "LittleEndian")
    pvd.appendChild(root)
    collection = pvd.createElementNS("VTK", "Collection")
    root.appendChild(collection)
    for name, grp in groups.items():
        for jp in range(grp["npart"]):
            for js in range(grp["nstep"]):
                dataset = pvd.createElementNS("VTK", "DataSet")
                dataset.setAttribute("timestep", str(js))
                dataset.setAttribute("group", name)
                dataset.setAttribute("part", str(jp))
                dataset.setAttribute("file", f"{fname}_{name}_{jp}_{js}.{grp['ext']}")
                dataset.setAttribute("name", f"{name}_{jp}")
                collection.appendChild(dataset)
    with open(fileName + ".pvd", "w") as out:
        pvd.writexml(out, newl="\n")
    if verbose:
        print("VTK: " + fileName + ".pvd written")


def merge_meshes(meshes: Iterable[io.Mesh]) -> io.Mesh:
    """
    Concatenate meshes into one, keeping the cell types and point data
    present in all of them.
    """
    meshes = list(meshes)
    points = np.vstack([m.points for m in meshes])
    cell_types = reduce(lambda a, b: a & b, [m.cells_dict.keys() for m in meshes])
    cells = {}
    for cell_type in cell_types:
        offset = 0
        blocks = []
        for m in meshes:
            blocks.append(m.cells_dict[cell_type] + offset)
            offset += m.points.shape[0]
        cells[cell_type] = np.vstack(blocks)
    names = reduce(lambda a, b: a & b, [m.point_data.keys() for m in meshes])
    point_data = {n: np.concatenate([m.point_data[n] for m in meshes], axis=0) for n in names}
    return io.Mesh(points, cells, point_data=point_data)


def save_patch_meshes(
    path: str, name: str, meshes: list[io.Mesh], merged: bool = False, verbose: bool = True
):
    """
    Write one `.vtu` file per patch mesh, or a single merged one, and the
    `.pvd` collection referencing them.

    Parameters
    ----------
    path : str
        Output directory, created if missing.
    name : str
        Base name of the files.
    meshes : list[io.Mesh]
        One mesh per patch.
    merged : bool, optional
        If `True`, the patch meshes are merged into a single part. By default, False.
    verbose : bool, optional
        If `True`, prints the written collection. By default, True.
    """
    os.makedirs(path, exist_ok=True)
    filename = os.path.join(path, name)
    if merged:
        merge_meshes(meshes).write(f"{filename}_patches_0_0.vtu")
        npart = 1
    else:
        for p, mesh in enumerate(meshes):
            mesh.write(f"{filename}_patches_{p}_0.vtu")
        npart = len(meshes)
    writePVD(filename, {"patches": {"ext": "vtu", "npart": npart, "nstep": 1}}, verbose)
