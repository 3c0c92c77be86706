#!/usr/bin/env python3
"""Shared means/bands primitives: reverse transforms and density bands."""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd


class MeansBandsError(RuntimeError):
    pass


class ConfigurationError(MeansBandsError):
    pass


class TransformError(ConfigurationError):
    pass


class DrawFileError(MeansBandsError):
    pass


class Transform(str, Enum):
    IDENTITY = "identity"
    QUARTERTOANNUAL = "quartertoannual"
    LOGTOPCT_ANNUALIZED = "logtopct_annualized"
    LOGTOPCT_ANNUALIZED_PERCAPITA = "logtopct_annualized_percapita"
    LOGLEVELTOPCT_ANNUALIZED = "logleveltopct_annualized"
    LOGLEVELTOPCT_ANNUALIZED_PERCAPITA = "logleveltopct_annualized_percapita"
    LOGTOPCT_4Q = "logtopct_4q"
    LOGTOPCT_4Q_PERCAPITA = "logtopct_4q_percapita"
    LOGLEVELTOPCT_4Q = "logleveltopct_4q"
    LOGLEVELTOPCT_4Q_PERCAPITA = "logleveltopct_4q_percapita"


TRANSFORM_4Q: Dict[Transform, Transform] = {
    Transform.IDENTITY: Transform.IDENTITY,
    Transform.QUARTERTOANNUAL: Transform.QUARTERTOANNUAL,
    Transform.LOGTOPCT_ANNUALIZED: Transform.LOGTOPCT_4Q,
    Transform.LOGTOPCT_ANNUALIZED_PERCAPITA: Transform.LOGTOPCT_4Q_PERCAPITA,
    Transform.LOGLEVELTOPCT_ANNUALIZED: Transform.LOGLEVELTOPCT_4Q,
    Transform.LOGLEVELTOPCT_ANNUALIZED_PERCAPITA: Transform.LOGLEVELTOPCT_4Q_PERCAPITA,
}

# Kinds that read historical data, and which slice of the data row they need.
HIST_SCALAR_Y0 = {Transform.LOGLEVELTOPCT_ANNUALIZED, Transform.LOGLEVELTOPCT_ANNUALIZED_PERCAPITA}
HIST_TAIL_AFTER_Y0 = {Transform.LOGTOPCT_4Q, Transform.LOGTOPCT_4Q_PERCAPITA}
HIST_TAIL_FROM_Y0 = {Transform.LOGLEVELTOPCT_4Q, Transform.LOGLEVELTOPCT_4Q_PERCAPITA}

PERCAPITA = {
    Transform.LOGTOPCT_ANNUALIZED_PERCAPITA,
    Transform.LOGLEVELTOPCT_ANNUALIZED_PERCAPITA,
    Transform.LOGTOPCT_4Q_PERCAPITA,
    Transform.LOGLEVELTOPCT_4Q_PERCAPITA,
}


def parse_transform(name: str) -> Transform:
    try:
        return Transform(str(name))
    except ValueError:
        raise ConfigurationError(f"Unrecognized transform: {name!r}") from None


def get_transform4q(transform: Transform) -> Transform:
    if transform not in TRANSFORM_4Q:
        raise ConfigurationError(f"No four-quarter variant for transform {transform.value}")
    return TRANSFORM_4Q[transform]


def _as_draws(y: np.ndarray) -> np.ndarray:
    x = np.asarray(y, dtype=float)
    if x.ndim == 1:
        return x.reshape(1, -1)
    return x


def _sum4(x: np.ndarray) -> np.ndarray:
    # Trailing four-period sums along the last axis; output drops the first 3 columns.
    c = np.cumsum(x, axis=-1)
    out = c[..., 3:].copy()
    out[..., 1:] -= c[..., :-4]
    return out


def _tile_history(hist: np.ndarray, ndraws: int) -> np.ndarray:
    return np.tile(np.asarray(hist, dtype=float).reshape(1, -1), (ndraws, 1))


def identity(y: np.ndarray) -> np.ndarray:
    return np.asarray(y, dtype=float).copy()


def quartertoannual(y: np.ndarray) -> np.ndarray:
    return 4.0 * np.asarray(y, dtype=float)


def logtopct_annualized(y: np.ndarray) -> np.ndarray:
    return 100.0 * (np.exp(np.asarray(y, dtype=float) / 100.0) ** 4 - 1.0)


def logtopct_annualized_percapita(y: np.ndarray, pop_growth: np.ndarray) -> np.ndarray:
    return 100.0 * (np.exp(np.asarray(y, dtype=float) / 100.0 + pop_growth) ** 4 - 1.0)


def _level_diff(y: np.ndarray, y0: float) -> np.ndarray:
    x = _as_draws(y)
    lagged = np.hstack([np.full((x.shape[0], 1), float(y0)), x[:, :-1]])
    return x - lagged


def logleveltopct_annualized(y: np.ndarray, y0: float) -> np.ndarray:
    return logtopct_annualized(_level_diff(y, y0))


def logleveltopct_annualized_percapita(y: np.ndarray, y0: float, pop_growth: np.ndarray) -> np.ndarray:
    return logtopct_annualized_percapita(_level_diff(y, y0), pop_growth)


def logtopct_4q(y: np.ndarray, y0s: np.ndarray) -> np.ndarray:
    x = _as_draws(y)
    y_all = np.hstack([_tile_history(y0s, x.shape[0]), x])
    y_4q = _sum4(y_all)[:, -x.shape[1] :]
    return 100.0 * (np.exp(y_4q / 100.0) - 1.0)


def logtopct_4q_percapita(y: np.ndarray, y0s: np.ndarray, pop_growth: np.ndarray) -> np.ndarray:
    x = _as_draws(y)
    y_all = np.hstack([_tile_history(y0s, x.shape[0]), x])
    y_4q = _sum4(y_all)[:, -x.shape[1] :]
    pop_4q = _sum4(np.asarray(pop_growth, dtype=float))
    return 100.0 * (np.exp(y_4q / 100.0 + pop_4q) - 1.0)


def logleveltopct_4q(y: np.ndarray, y0s: np.ndarray) -> np.ndarray:
    x = _as_draws(y)
    y_all = np.hstack([_tile_history(y0s, x.shape[0]), x])
    growth_4q = y_all[:, 4:] - y_all[:, :-4]
    return 100.0 * (np.exp(growth_4q[:, -x.shape[1] :] / 100.0) - 1.0)


def logleveltopct_4q_percapita(y: np.ndarray, y0s: np.ndarray, pop_growth: np.ndarray) -> np.ndarray:
    x = _as_draws(y)
    y_all = np.hstack([_tile_history(y0s, x.shape[0]), x])
    growth_4q = (y_all[:, 4:] - y_all[:, :-4])[:, -x.shape[1] :]
    pop_4q = _sum4(np.asarray(pop_growth, dtype=float))
    return 100.0 * (np.exp(growth_4q / 100.0 + pop_4q) - 1.0)


TRANSFORM_FUNCS: Dict[Transform, Callable[..., np.ndarray]] = {
    Transform.IDENTITY: identity,
    Transform.QUARTERTOANNUAL: quartertoannual,
    Transform.LOGTOPCT_ANNUALIZED: logtopct_annualized,
    Transform.LOGTOPCT_ANNUALIZED_PERCAPITA: logtopct_annualized_percapita,
    Transform.LOGLEVELTOPCT_ANNUALIZED: logleveltopct_annualized,
    Transform.LOGLEVELTOPCT_ANNUALIZED_PERCAPITA: logleveltopct_annualized_percapita,
    Transform.LOGTOPCT_4Q: logtopct_4q,
    Transform.LOGTOPCT_4Q_PERCAPITA: logtopct_4q_percapita,
    Transform.LOGLEVELTOPCT_4Q: logleveltopct_4q,
    Transform.LOGLEVELTOPCT_4Q_PERCAPITA: logleveltopct_4q_percapita,
}


def expected_history_length(transform: Transform) -> int:
    if transform in HIST_SCALAR_Y0:
        return 1
    if transform in HIST_TAIL_AFTER_Y0:
        return 3
    if transform in HIST_TAIL_FROM_Y0:
        return 4
    return 0


def history_slice(transform: Transform, data_row: np.ndarray, y0_index: Optional[int]):
    """Cut the historical values a transform is seeded with out of one data row.

    Growth-rate variants read the single value at ``y0_index``; four-quarter
    sums read from ``y0_index + 1`` (the last three quarters), four-quarter
    level changes read from ``y0_index`` (the last four levels).
    """
    if transform in HIST_SCALAR_Y0:
        return float(data_row[y0_index])
    if transform in HIST_TAIL_AFTER_Y0:
        return np.asarray(data_row[y0_index + 1 :], dtype=float)
    if transform in HIST_TAIL_FROM_Y0:
        return np.asarray(data_row[y0_index:], dtype=float)
    return None


def apply_transform(
    transform: Transform,
    series: np.ndarray,
    hist_data=None,
    pop_growth: Optional[np.ndarray] = None,
    var_name: str = "",
) -> np.ndarray:
    if transform not in TRANSFORM_FUNCS:
        raise ConfigurationError(f"No handler for transform {transform!r} (variable {var_name})")
    func = TRANSFORM_FUNCS[transform]
    x = _as_draws(series)
    nperiods = x.shape[1]
    args: List[object] = [x]

    n_hist = expected_history_length(transform)
    if n_hist:
        if hist_data is None:
            raise TransformError(f"Transform {transform.value} for {var_name} needs historical data; none supplied.")
        if n_hist > 1:
            hist = np.asarray(hist_data, dtype=float).ravel()
            if hist.shape[0] != n_hist:
                raise TransformError(
                    f"Transform {transform.value} for {var_name} needs {n_hist} historical values, "
                    f"got {hist.shape[0]}."
                )
            args.append(hist)
        else:
            args.append(float(hist_data))

    if transform in PERCAPITA:
        pop = np.asarray(pop_growth if pop_growth is not None else [], dtype=float).ravel()
        if pop.shape[0] == 0:
            raise TransformError(
                f"Transform {transform.value} for {var_name} needs population growth; no population series configured."
            )
        want = nperiods + 3 if transform in HIST_TAIL_AFTER_Y0 | HIST_TAIL_FROM_Y0 else nperiods
        if pop.shape[0] != want:
            raise TransformError(
                f"Transform {transform.value} for {var_name} needs {want} population growth values, got {pop.shape[0]}."
            )
        args.append(pop)

    out = func(*args)
    if np.ndim(series) == 1:
        return out.ravel()
    return out


def band_column_names(percent: float) -> List[str]:
    label = f"{100.0 * float(percent):.1f}%"
    return [f"{label} LB", f"{label} UB"]


def _window_size(percent: float, ndraws: int) -> int:
    k = int(round(float(percent) * ndraws))
    return min(max(k, 0), ndraws - 1)


def _shortest_window(sorted_draws: np.ndarray, k: int, lo: int, hi: int) -> int:
    # Start index of the narrowest window sorted[i]..sorted[i + k] with lo <= i and i + k <= hi.
    starts = np.arange(lo, hi - k + 1)
    widths = sorted_draws[starts + k] - sorted_draws[starts]
    return int(starts[int(np.argmin(widths))])


def find_density_bands(draws: np.ndarray, percents: Iterable[float], minimize: bool = False) -> pd.DataFrame:
    """Per-period lower/upper bounds for each coverage level in ``percents``.

    With ``minimize`` the band is the shortest run of sorted draws holding
    ``round(p * ndraws) + 1`` values; runs for smaller levels are searched
    inside the run of the next larger level, so bands nest. Otherwise the
    band is the equal-tailed interquantile range with linear interpolation.
    """
    x = _as_draws(draws)
    ndraws, nperiods = x.shape
    levels = sorted({float(p) for p in percents})
    for p in levels:
        if not 0.0 < p < 1.0:
            raise ConfigurationError(f"Density band level must be in (0, 1), got {p}")

    bounds: Dict[float, np.ndarray] = {p: np.zeros((2, nperiods), dtype=float) for p in levels}
    if minimize:
        sorted_all = np.sort(x, axis=0)
        for t in range(nperiods):
            col = sorted_all[:, t]
            lo, hi = 0, ndraws - 1
            for p in reversed(levels):
                k = min(_window_size(p, ndraws), hi - lo)
                start = _shortest_window(col, k, lo, hi)
                lo, hi = start, start + k
                bounds[p][:, t] = (col[lo], col[hi])
    else:
        for p in levels:
            alpha = (1.0 - p) / 2.0
            bounds[p] = np.quantile(x, [alpha, 1.0 - alpha], axis=0)

    columns: Dict[str, np.ndarray] = {}
    for p in levels:
        lb_name, ub_name = band_column_names(p)
        columns[lb_name] = bounds[p][0, :]
        columns[ub_name] = bounds[p][1, :]
    return pd.DataFrame(columns)


def density_band_levels(columns: Sequence[str]) -> List[float]:
    out = set()
    for c in columns:
        if c.endswith("% LB"):
            out.add(float(c[: -len("% LB")]) / 100.0)
    return sorted(out)
