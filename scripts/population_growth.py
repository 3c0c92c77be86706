#!/usr/bin/env python3
"""Population growth series for per-capita reverse transforms."""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from statsmodels.tsa.filters.hp_filter import hpfilter

from forecast_output import FOUR_QUARTER_PRODUCTS, FORECAST_PRODUCTS, Product
from meansbands_core import ConfigurationError

GROWTH_COLUMN = "population_growth"

log = logging.getLogger("meansbands")


def empty_growth_frame() -> pd.DataFrame:
    return pd.DataFrame({"date": pd.Series([], dtype="datetime64[ns]"), GROWTH_COLUMN: pd.Series([], dtype=float)})


def read_population_levels(path: str, mnemonic: str) -> pd.Series:
    if not path or not os.path.exists(path):
        raise FileNotFoundError(f"Population file not found: {path!r}")
    df = pd.read_csv(path, parse_dates=["date"])
    if mnemonic not in df.columns:
        raise ConfigurationError(f"Population file {path} has no column '{mnemonic}'.")
    levels = df.set_index("date")[mnemonic].astype(float).sort_index()
    if levels.index.to_period("Q").duplicated().any():
        raise ConfigurationError(f"Population file {path}: more than one row per quarter.")
    if levels.isna().any() or (levels <= 0).any():
        raise ConfigurationError(f"Population file {path}: column '{mnemonic}' has missing or non-positive levels.")
    return levels


def load_population_growth(
    data_file: str,
    forecast_file: str,
    mnemonic: Optional[str],
    use_hpfilter: bool = True,
    hp_lambda: float = 1600.0,
    yoy: bool = False,
    logger: Optional[logging.Logger] = None,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Load history and forecast population levels and return their growth rates.

    Growth is the log difference (over 1 period, or 4 with ``yoy``) of the
    optionally HP-filtered log level of the combined series. History values
    win where the two files overlap.
    """
    logger = logger or log
    if not mnemonic:
        return empty_growth_frame(), empty_growth_frame()

    history = read_population_levels(data_file, mnemonic)
    if forecast_file:
        forecast = read_population_levels(forecast_file, mnemonic)
        forecast = forecast[forecast.index > history.index.max()]
    else:
        forecast = history.iloc[0:0]
    logger.debug(
        "Population %s: %d history periods, %d forecast periods", mnemonic, history.shape[0], forecast.shape[0]
    )

    combined = pd.concat([history, forecast])
    log_levels = np.log(combined)
    if use_hpfilter:
        _, trend = hpfilter(log_levels, lamb=hp_lambda)
        log_levels = pd.Series(np.asarray(trend, dtype=float), index=combined.index)
    growth = log_levels.diff(4 if yoy else 1).dropna()

    def _frame(dates: pd.Index) -> pd.DataFrame:
        part = growth[growth.index.isin(dates)]
        return pd.DataFrame({"date": part.index, GROWTH_COLUMN: part.to_numpy(dtype=float)}).reset_index(drop=True)

    return _frame(history.index), _frame(forecast.index)


def quarters_before(start: pd.Timestamp, n: int) -> List[pd.Period]:
    q = pd.Period(pd.Timestamp(start), freq="Q")
    return [q - k for k in range(n, 0, -1)]


def get_mb_population_series(
    product: Product,
    population_data: Optional[pd.DataFrame],
    population_forecast: Optional[pd.DataFrame],
    date_list: Sequence[pd.Timestamp],
) -> np.ndarray:
    product = Product(product)
    frames = [f for f in (population_data, population_forecast) if f is not None and not f.empty]
    if product == Product.IRF or not frames or len(date_list) == 0:
        return np.array([], dtype=float)

    # Match on quarters, so quarter-start and quarter-end date conventions line up.
    quarters = [pd.Period(pd.Timestamp(d), freq="Q") for d in date_list]
    if product in FOUR_QUARTER_PRODUCTS:
        quarters = quarters_before(date_list[0], 3) + quarters

    if product in FORECAST_PRODUCTS + FOUR_QUARTER_PRODUCTS:
        frames = frames[::-1]
    combined = pd.concat(frames, ignore_index=True)
    combined["quarter"] = pd.to_datetime(combined["date"]).dt.to_period("Q")
    lookup = combined.drop_duplicates("quarter", keep="first").set_index("quarter")[GROWTH_COLUMN]

    missing = [q for q in quarters if q not in lookup.index]
    if missing:
        raise ConfigurationError(
            f"Population growth is missing {len(missing)} of the {len(quarters)} periods needed for {product.value} "
            f"(first missing: {missing[0]})."
        )
    return lookup.loc[quarters].to_numpy(dtype=float)
