import h5py
import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from pathlib import Path

def save_histogram_png(h5_path: str, out_png: str | None = None,
                       dataset: str = "/diagnostics/angles_passed/counts"):
    """Render a stored diagnostics histogram (1D or 2D) to a PNG."""
    h5_path = str(h5_path)
    with h5py.File(h5_path, "r") as f:
        if dataset not in f:
            raise KeyError(f"{dataset} not found in {h5_path}")
        counts = np.array(f[dataset])
        grp = f[dataset].parent
        title = str(grp.attrs.get("title", dataset))
        edges = np.array(grp["edges"]) if "edges" in grp else None
        xedges = np.array(grp["xedges"]) if "xedges" in grp else None
        yedges = np.array(grp["yedges"]) if "yedges" in grp else None

    if out_png is None:
        out_png = str(Path(h5_path).with_suffix(".png"))

    # "title;x label;y label"
    parts = title.split(";")
    plt.figure()
    if counts.ndim == 2:
        extent = None
        if xedges is not None and yedges is not None:
            extent = (xedges[0], xedges[-1], yedges[0], yedges[-1])
        plt.imshow(counts, origin="lower", extent=extent, aspect="auto")
        plt.colorbar()
    else:
        if edges is None:
            edges = np.arange(counts.size + 1, dtype=float)
        plt.stairs(counts, edges)
    if len(parts) > 1:
        plt.xlabel(parts[1])
    if len(parts) > 2:
        plt.ylabel(parts[2])
    plt.title(Path(h5_path).name + " : " + parts[0])
    plt.tight_layout()
    plt.savefig(out_png, dpi=150)
    plt.close()
    return out_png
