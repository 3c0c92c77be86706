#!/usr/bin/env python3
"""Compute means and density bands of forecast draws and write them to summary files."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from forecast_output import (
    FOUR_QUARTER_PRODUCTS,
    OPTIONAL_BAND_PRODUCTS,
    SHOCKDEC_DELIM,
    TIME_SERIES_PRODUCTS,
    PathLike,
    Product,
    VariableClass,
    add_requisite_output_vars,
    get_class_longname,
    get_mb_metadata,
    get_meansbands_input_files,
    get_meansbands_output_files,
    get_product,
    get_y0_index,
    is_single_draw,
    open_draw_file,
    read_date_list,
    read_forecast_output,
    read_json_entry,
    split_output_var,
)
from meansbands import MeansBands, write_mb
from meansbands_core import (
    ConfigurationError,
    DrawFileError,
    TransformError,
    apply_transform,
    expected_history_length,
    find_density_bands,
    get_transform4q,
    history_slice,
    parse_transform,
)
from population_growth import get_mb_population_series, load_population_growth

DEFAULT_DENSITY_BANDS = [0.5, 0.6, 0.7, 0.8, 0.9]

log = logging.getLogger("meansbands")


def _broadcast_trend(series: np.ndarray, nperiods: int) -> np.ndarray:
    # Trend draws hold one value per draw; per-capita adjustments still vary by period.
    x = np.asarray(series, dtype=float)
    x = x.reshape(x.shape[0], -1)
    if x.shape[1] != 1:
        return x
    return np.repeat(x, nperiods, axis=1)


def compute_means_bands(
    cls: VariableClass,
    product: Product,
    var_name: str,
    filename: PathLike,
    data: Optional[np.ndarray] = None,
    population_series: Optional[np.ndarray] = None,
    y0_index: Optional[int] = None,
    shock_name: Optional[str] = None,
    density_bands: Sequence[float] = DEFAULT_DENSITY_BANDS,
    minimize: bool = False,
    compute_shockdec_bands: bool = False,
    logger: Optional[logging.Logger] = None,
) -> Tuple[np.ndarray, pd.DataFrame]:
    logger = logger or log
    cls = VariableClass(cls)
    product = Product(product)
    longname = get_class_longname(cls)

    with open_draw_file(filename) as f:
        indices = read_json_entry(f, f"{longname}_indices", filename)
        transforms = read_json_entry(f, f"{longname}_revtransforms", filename)
        if var_name not in indices:
            raise DrawFileError(f"{filename}: variable '{var_name}' is not in {longname}_indices.")
        if var_name not in transforms:
            raise DrawFileError(f"{filename}: variable '{var_name}' has no entry in {longname}_revtransforms.")
        fcast_series = read_forecast_output(f, cls, product, var_name, shock_name)
        date_list = [] if product == Product.IRF else read_date_list(f, filename)

    transform = parse_transform(transforms[var_name])
    var_ind = int(indices[var_name])

    if product == Product.TREND:
        fcast_series = _broadcast_trend(fcast_series, len(date_list))
    else:
        fcast_series = np.atleast_2d(fcast_series)

    if product in FOUR_QUARTER_PRODUCTS:
        transform = get_transform4q(transform)

    hist_data = None
    if expected_history_length(transform):
        if y0_index is None or data is None or np.size(data) == 0:
            raise TransformError(
                f"{product.value}{cls.value}/{var_name}: transform {transform.value} needs historical data "
                f"(y0_index={y0_index}, data {'missing' if data is None or np.size(data) == 0 else 'present'})."
            )
        data = np.asarray(data, dtype=float)
        if var_ind >= data.shape[0]:
            raise TransformError(
                f"{product.value}{cls.value}/{var_name}: index {var_ind} is outside the {data.shape[0]}-row data matrix."
            )
        hist_data = history_slice(transform, data[var_ind, :], y0_index)

    logger.debug("%s%s/%s: transform %s", product.value, cls.value, var_name, transform.value)
    transformed = apply_transform(
        transform,
        fcast_series,
        hist_data=hist_data,
        pop_growth=population_series,
        var_name=f"{product.value}{cls.value}/{var_name}",
    )

    means = np.mean(transformed, axis=0)
    if product in OPTIONAL_BAND_PRODUCTS and not compute_shockdec_bands:
        bands = pd.DataFrame()
    else:
        bands = find_density_bands(transformed, density_bands, minimize=minimize)
    return means, bands


def _run_batch(
    pool: Executor,
    cls: VariableClass,
    product: Product,
    variable_names: Sequence[str],
    filename: PathLike,
    shock_name: Optional[str],
    kwargs: Dict,
) -> List[Tuple[np.ndarray, pd.DataFrame]]:
    futures = [
        pool.submit(compute_means_bands, cls, product, var_name, filename, shock_name=shock_name, **kwargs)
        for var_name in variable_names
    ]
    wait(futures)
    # result() re-raises; the first failed submission wins regardless of completion order.
    return [fut.result() for fut in futures]


def _with_dates(bands: pd.DataFrame, date_list: Sequence[pd.Timestamp]) -> pd.DataFrame:
    if bands.empty:
        return bands
    out = bands.copy()
    out.insert(0, "date", list(date_list))
    return out


def means_bands(
    input_type: str,
    cond_type: str,
    output_var: str,
    meansbands_input_files: Mapping[str, PathLike],
    forecast_string: str = "",
    density_bands: Sequence[float] = DEFAULT_DENSITY_BANDS,
    minimize: bool = False,
    population_data: Optional[pd.DataFrame] = None,
    population_forecast: Optional[pd.DataFrame] = None,
    y0_index: Optional[int] = None,
    data: Optional[np.ndarray] = None,
    compute_shockdec_bands: bool = False,
    max_workers: Optional[int] = None,
    use_processes: bool = False,
    logger: Optional[logging.Logger] = None,
) -> MeansBands:
    logger = logger or log

    # A single parameter draw has no spread; only the trivial band is meaningful.
    if is_single_draw(input_type):
        density_bands = [0.5]

    cls, product = split_output_var(output_var)
    if output_var not in meansbands_input_files:
        raise ConfigurationError(f"No forecast output file given for {output_var}.")
    forecast_output_file = meansbands_input_files[output_var]

    metadata, mb_metadata = get_mb_metadata(
        input_type, cond_type, output_var, forecast_output_file, forecast_string=forecast_string
    )
    date_list = [] if product == Product.IRF else list(mb_metadata["date_inds"].keys())
    variable_names = list(mb_metadata["indices"].keys())
    population_series = get_mb_population_series(product, population_data, population_forecast, date_list)

    kwargs = {
        "data": data,
        "population_series": population_series,
        "y0_index": y0_index,
        "density_bands": list(density_bands),
        "minimize": minimize,
        "compute_shockdec_bands": compute_shockdec_bands,
        "logger": logger,
    }
    pool_cls = ProcessPoolExecutor if use_processes else ThreadPoolExecutor

    means_cols: Dict[str, np.ndarray] = {}
    bands: Dict[str, pd.DataFrame] = {}
    with pool_cls(max_workers=max_workers) as pool:
        if product in TIME_SERIES_PRODUCTS:
            mb_vec = _run_batch(pool, cls, product, variable_names, forecast_output_file, None, kwargs)
            for var_name, (var_means, var_bands) in zip(variable_names, mb_vec):
                means_cols[var_name] = var_means
                bands[var_name] = _with_dates(var_bands, date_list)
        else:
            mb_metadata["shock_indices"] = metadata["shock_indices"]
            for shock_name in metadata["shock_indices"]:
                logger.debug("  * %s", shock_name)
                mb_vec = _run_batch(pool, cls, product, variable_names, forecast_output_file, shock_name, kwargs)
                for var_name, (var_means, var_bands) in zip(variable_names, mb_vec):
                    key = f"{var_name}{SHOCKDEC_DELIM}{shock_name}"
                    means_cols[key] = var_means
                    bands[key] = var_bands if product == Product.IRF else _with_dates(var_bands, date_list)

    if product == Product.IRF:
        means = pd.DataFrame(means_cols)
    else:
        means = pd.DataFrame({"date": date_list, **means_cols})
    return MeansBands(mb_metadata, means, bands)


def means_bands_all(
    input_type: str,
    cond_type: str,
    output_vars: Sequence[str],
    input_dir: PathLike,
    output_dir: PathLike,
    filestring_base: Sequence[str],
    forecast_string: str = "",
    density_bands: Sequence[float] = DEFAULT_DENSITY_BANDS,
    minimize: bool = False,
    population_mnemonic: Optional[str] = None,
    population_data_file: str = "",
    population_forecast_file: str = "",
    use_hpfilter: bool = True,
    population_yoy: bool = False,
    y0_indexes: Optional[Mapping[str, Optional[int]]] = None,
    data: Optional[np.ndarray] = None,
    n_presample_periods: int = 0,
    compute_shockdec_bands: bool = False,
    max_workers: Optional[int] = None,
    use_processes: bool = False,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Path]:
    """Compute and write means and bands for every output variable, in order.

    Stops at the first failing output variable; files already written stay.
    Returns the summary file path written for each output variable.
    """
    logger = logger or log
    output_vars = add_requisite_output_vars(output_vars)

    logger.info("Computing means and bands for input_type = %s, cond_type = %s...", input_type, cond_type)
    logger.info("Means and bands will be saved in %s", output_dir)
    t0 = time.perf_counter()

    population_data, population_forecast = load_population_growth(
        population_data_file,
        population_forecast_file,
        population_mnemonic,
        use_hpfilter=use_hpfilter,
        yoy=population_yoy,
        logger=logger,
    )

    input_files = get_meansbands_input_files(
        input_dir, filestring_base, input_type, cond_type, output_vars, forecast_string=forecast_string
    )
    output_files = get_meansbands_output_files(
        output_dir, filestring_base, input_type, cond_type, output_vars, forecast_string=forecast_string
    )
    y0_lookup = {Product(k): v for k, v in (y0_indexes or {}).items()}

    written: Dict[str, Path] = {}
    for output_var in output_vars:
        product = get_product(output_var)
        if product in y0_lookup:
            y0_index = y0_lookup[product]
        else:
            y0_index = get_y0_index(product, data, n_presample_periods)

        var_t0 = time.perf_counter()
        logger.debug("Computing %s (y0_index=%s)...", output_var, y0_index)
        mb = means_bands(
            input_type,
            cond_type,
            output_var,
            input_files,
            forecast_string=forecast_string,
            density_bands=density_bands,
            minimize=minimize,
            population_data=population_data,
            population_forecast=population_forecast,
            y0_index=y0_index,
            data=data,
            compute_shockdec_bands=compute_shockdec_bands,
            max_workers=max_workers,
            use_processes=use_processes,
            logger=logger,
        )
        written[output_var] = write_mb(output_files[output_var], mb)
        logger.debug("wrote %s in %.1fs", written[output_var].name, time.perf_counter() - var_t0)

    total_min = (time.perf_counter() - t0) / 60.0
    logger.info("Total time to compute means and bands: %.2f minutes", total_min)
    return written
