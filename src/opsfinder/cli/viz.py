from __future__ import annotations

import typer
from typing import Optional

from opsfinder.vis.hdf import save_histogram_png

app = typer.Typer(help="opsfinder diagnostics visualization tools")

@app.command("h5-to-png")
def h5_to_png(
    h5_path: str = typer.Argument(..., help="Path to HDF5 file written by the finder"),
    dataset: str = typer.Option("/diagnostics/angles_passed/counts", "--dataset", "-d", help="Histogram counts dataset"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Output PNG path (defaults to file.png)"),
):
    """Render a stored diagnostics histogram (default: selected 3-hit angles) to a PNG."""
    out_png = save_histogram_png(h5_path, out_png=out, dataset=dataset)
    typer.echo(f"Wrote {out_png}")

if __name__ == "__main__":
    app()
