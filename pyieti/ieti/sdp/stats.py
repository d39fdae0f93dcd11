"""Timing and diagnostic reporting for the scaled-Dirichlet solver.

This module provides:
  - A small timing collector (`SdpStats`) that supports labeled timers.
  - Helpers to compute min/median/max summaries of per-subdomain quantities.
  - Compact, human-readable setup and solve summaries.

Typical usage
-------------
    stats = SdpStats(n_subdomains=K)
    with stats.timeit("schur"):
        ... restrict every subdomain to its skeleton ...
    with stats.timeit("scaling"):
        ... compute scaling weights ...
    _sdp_finalize_stats(stats=stats, skeleton_sizes=..., local_sizes=..., n_multipliers=...)
    _sdp_print_setup_summary(stats, print_info=print_info)

The caller decides which timer keys are used; this module simply stores them.
All printing in the `ieti` package happens here.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any
import time

import numpy as np


@dataclass(slots=True)
class SdpStats:
    """Setup/solve timings and summary statistics.

    Attributes
    ----------
    n_subdomains
        Number of registered subdomains.
    n_multipliers
        Number of Lagrange multipliers (filled in finalize).
    timings
        Dict mapping timer keys to elapsed seconds.
    extra
        Dict for derived metrics (min/med/max of sizes, scaling policy, etc.).
    """

    n_subdomains: int
    n_multipliers: int | None = None
    timings: dict[str, float] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @contextmanager
    def timeit(self, key: str):
        """Context manager that accumulates elapsed time under `timings[key]`."""
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.timings[key] = self.timings.get(key, 0.0) + (time.perf_counter() - t0)


def _store_mmx(extra: dict[str, Any], base: str, arr) -> None:
    """Store min/median/max of an array-like into `extra` under `<base>_{min,med,max}`."""
    a = np.asarray(arr, dtype=float)
    if a.size == 0:
        return
    extra[f"{base}_min"] = float(np.min(a))
    extra[f"{base}_med"] = float(np.median(a))
    extra[f"{base}_max"] = float(np.max(a))


def _sdp_finalize_stats(
    *,
    stats: SdpStats,
    skeleton_sizes,
    local_sizes=None,
    n_multipliers: int,
    scaling: str | None = None,
) -> None:
    """Populate derived size statistics after setup.

    Parameters
    ----------
    stats
        The stats object (mutated in-place).
    skeleton_sizes
        Number of skeleton dofs per subdomain.
    local_sizes
        Number of local dofs per subdomain, if known; interior sizes are derived
        as local - skeleton.
    n_multipliers
        Number of Lagrange multipliers.
    scaling
        Name of the scaling policy, for reporting.
    """
    stats.n_multipliers = int(n_multipliers)
    _store_mmx(stats.extra, "skeleton", skeleton_sizes)
    if local_sizes is not None:
        local = np.asarray(local_sizes, dtype=float)
        _store_mmx(stats.extra, "local", local)
        _store_mmx(stats.extra, "interior", local - np.asarray(skeleton_sizes, dtype=float))
    if scaling is not None:
        stats.extra["scaling"] = scaling


def _fmt(x) -> str:
    """Format a scalar for compact printing."""
    try:
        x = float(x)
    except Exception:
        return str(x)
    ax = abs(x)
    if ax != 0.0 and (ax < 1e-2 or ax >= 1e4):
        return f"{x:.2e}"
    return f"{x:.3g}"


def _mmx(extra: dict[str, Any], base: str) -> str:
    """Return `min/med/max` string for `base` as stored in `extra`."""
    a = extra.get(f"{base}_min")
    b = extra.get(f"{base}_med")
    c = extra.get(f"{base}_max")
    if a is None or b is None or c is None:
        return "n/a"
    return f"{_fmt(a)}/{_fmt(b)}/{_fmt(c)}"


def _fmt_ms(t: float) -> str:
    """Format a duration in seconds as either milliseconds or seconds."""
    return f"{t*1e3:7.1f}ms" if t < 1.0 else f"{t:7.2f}s"


def _sdp_print_setup_summary(
    stats: SdpStats,
    *,
    print_info: bool,
    prefix: str = "SDP",
    indent: str = "",
) -> None:
    """Print a compact summary of the preconditioner setup.

    Parameters
    ----------
    stats
        Stats object that has already been finalized.
    print_info
        If False, does nothing.
    prefix
        Short label prefix.
    indent
        Optional indentation string.
    """
    if not print_info:
        return

    n_mult = stats.n_multipliers if stats.n_multipliers is not None else "?"
    print(f"{indent}{prefix:<3}  subdomains={stats.n_subdomains:<4d} multipliers={n_mult}"
          f"  scaling={stats.extra.get('scaling', 'n/a')}")
    print(f"{indent}     sizes (min/med/max):")
    print(f"{indent}       local    : {_mmx(stats.extra, 'local')}")
    print(f"{indent}       skeleton : {_mmx(stats.extra, 'skeleton')}")
    print(f"{indent}       interior : {_mmx(stats.extra, 'interior')}")

    order = ["dual", "skeleton", "schur", "scaling", "assemble"]
    total = 0.0
    print(f"{indent}     timing:")
    for k in order:
        if k in stats.timings:
            v = stats.timings[k]
            total += v
            print(f"{indent}       {k:<9} {_fmt_ms(v)}")
    for k, v in sorted(stats.timings.items()):
        if k not in order and k != "solve":
            total += v
            print(f"{indent}       {k:<9} {_fmt_ms(v)}")
    print(f"{indent}       {'total':<9} {_fmt_ms(total)}")


def _sdp_print_solve_summary(
    result,
    *,
    print_info: bool,
    solve_time: float | None = None,
    prefix: str = "SDP",
    indent: str = "",
) -> None:
    """Print a one-block summary of a Krylov solve.

    Parameters
    ----------
    result
        A `pyieti.krylov.KrylovResult`.
    print_info
        If False, does nothing.
    solve_time
        Wall time of the solve in seconds, if measured.
    prefix, indent
        Formatting options as for `_sdp_print_setup_summary`.
    """
    if not print_info:
        return

    res = np.asarray(result.residuals, dtype=float)
    cf = "n/a"
    if res.size >= 2 and res[0] > 0.0 and res[-1] > 0.0:
        cf = _fmt(np.exp(np.log(res[-1] / res[0]) / (res.size - 1)))

    print(f"{indent}{prefix:<3}  solve: state={result.state.value}  iters={result.n_iter}"
          f"  rel_res={_fmt(result.rel_residual)}  conv_fac={cf}  restarts={result.n_restarts}")
    if solve_time is not None:
        print(f"{indent}       time      {_fmt_ms(float(solve_time))}")
    if result.message:
        print(f"{indent}       {result.message}")
