import numpy as np
from matplotlib import pyplot as plt
from matplotlib.figure import Figure
from plotly import graph_objects as go

from plancomplexity.plans.control_point import BeamRecord


def plot_aperture_histogram(
    histogram: dict[int, float],
    title: str = "Aperture area histogram",
    show: bool = True,
) -> go.Figure:
    """Plot the aperture area histogram as a bar chart.

    Parameters
    ----------
    histogram : dict[int, float]
        Upper bound of the bin (mm^2) -> fraction of the aperture MU, as returned by ``aperture_area_histogram``.
    title : str
        The title of the figure.
    show : bool, optional
        Whether to show the plot. Default is True.
    """
    bounds = sorted(histogram)
    # trim the empty tail, the bins span the largest jaw opening
    nonzero = [b for b in bounds if histogram[b] > 0]
    if nonzero:
        bounds = [b for b in bounds if b <= nonzero[-1]]
    fig = go.Figure()
    fig.add_bar(x=bounds, y=[histogram[b] for b in bounds])
    fig.update_layout(
        title=title,
        xaxis=dict(title="Aperture area upper bound (mm²)"),
        yaxis=dict(title="Fraction of aperture MU"),
    )
    if show:
        fig.show()
    return fig


def plot_control_points(record: BeamRecord, show: bool = True) -> Figure:
    """Plot the control point data of a beam.
    Rows: apertures, dynamics
    Cols: MU, area/count, speeds
    """
    # This is used mostly for visual inspection
    aperture_cps = record.aperture_control_points
    cp_idx = np.array([cp.index for cp in aperture_cps])
    mu = np.array([cp.incremental_mu for cp in aperture_cps])
    count = np.array([cp.aperture_count for cp in aperture_cps])
    area = np.array([cp.total_area for cp in aperture_cps])

    dynamic_cps = record.dynamic_control_points
    interval_idx = np.array([dcp.interval_index for dcp in dynamic_cps])
    gantry_speed = np.array([dcp.gantry_speed for dcp in dynamic_cps])
    dose_rate = np.array([dcp.dose_rate for dcp in dynamic_cps])
    leaf_speed = np.array([dcp.avg_leaf_speed for dcp in dynamic_cps])

    num_rows, num_cols = 2, 3
    fig = plt.figure()
    fig.suptitle(f"Beam: {record.beam_id}")

    ax = fig.add_subplot(num_rows, num_cols, 1)
    ax.step(cp_idx, mu)
    ax.set_title("MU")
    ax.set_ylabel("Control point")
    ax = fig.add_subplot(num_rows, num_cols, 2)
    ax.step(cp_idx, count)
    ax.set_title("Apertures")
    ax = fig.add_subplot(num_rows, num_cols, 3)
    ax.plot(cp_idx, area)
    ax.set_title("Area (mm²)")

    ax = fig.add_subplot(num_rows, num_cols, 4)
    ax.step(interval_idx, dose_rate)
    ax.set_title("Dose rate (MU/min)")
    ax.set_ylabel("Interval")
    ax = fig.add_subplot(num_rows, num_cols, 5)
    ax.step(interval_idx, gantry_speed)
    ax.set_title("Gantry (deg/s)")
    ax = fig.add_subplot(num_rows, num_cols, 6)
    ax.step(interval_idx, leaf_speed)
    ax.set_title("Leaves (mm/s)")

    fig.tight_layout()
    if show:
        plt.show()
    return fig
