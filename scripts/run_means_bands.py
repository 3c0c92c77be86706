#!/usr/bin/env python3
"""Run means/bands computation over forecast draw files described by a JSON config."""

from __future__ import annotations

import argparse
import json
import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from compute_meansbands import DEFAULT_DENSITY_BANDS, means_bands_all
from forecast_output import COND_TYPES, INPUT_TYPES
from meansbands_core import ConfigurationError

VERBOSITY = {"none": logging.WARNING, "low": logging.INFO, "high": logging.DEBUG}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compute means and density bands of forecast draws.")
    parser.add_argument("--config", default="meansbands_config.json", help="Path to config JSON.")
    parser.add_argument("--input-type", default="", choices=("",) + INPUT_TYPES, help="Override config input_type.")
    parser.add_argument("--cond-type", default="", choices=("",) + COND_TYPES, help="Override config cond_type.")
    parser.add_argument(
        "--output-vars",
        nargs="*",
        default=None,
        help="Override config output_vars, e.g. forecastobs histpseudo shockdecobs.",
    )
    parser.add_argument("--forecast-string", default=None, help="Forecast identifier, required for subset input.")
    parser.add_argument("--verbose", default="", choices=("",) + tuple(VERBOSITY), help="Override config verbose.")
    return parser.parse_args(argv)


def load_config(path: str) -> Dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def setup_logging(verbose: str) -> logging.Logger:
    if verbose not in VERBOSITY:
        raise ConfigurationError(f"verbose must be one of {sorted(VERBOSITY)}, got {verbose!r}")
    logging.basicConfig(level=VERBOSITY[verbose], format="%(asctime)s | %(levelname)s | %(message)s")
    logger = logging.getLogger("meansbands")
    logger.setLevel(VERBOSITY[verbose])
    return logger


def load_data_matrix(path: str, variables: List[str]) -> np.ndarray:
    """Historical data CSV (``date`` plus one column per observable) as a variables x periods matrix."""
    if not path:
        return np.zeros((0, 0), dtype=float)
    panel = pd.read_csv(path, parse_dates=["date"]).sort_values("date")
    missing = [v for v in variables if v not in panel.columns]
    if missing:
        raise ConfigurationError(f"Missing columns in data file {path}: {missing}")
    return panel[variables].to_numpy(dtype=float).T


def apply_overrides(config: Dict, args: argparse.Namespace) -> Dict:
    out = dict(config)
    if args.input_type:
        out["input_type"] = args.input_type
    if args.cond_type:
        out["cond_type"] = args.cond_type
    if args.output_vars is not None:
        out["output_vars"] = args.output_vars
    if args.forecast_string is not None:
        out["forecast_string"] = args.forecast_string
    if args.verbose:
        out["verbose"] = args.verbose
    return out


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    config = apply_overrides(load_config(args.config), args)
    logger = setup_logging(config.get("verbose", "low"))

    for key in ("input_dir", "output_dir", "input_type", "cond_type", "output_vars"):
        if key not in config:
            raise ConfigurationError(f"Config {args.config} is missing '{key}'.")

    data = load_data_matrix(config.get("data_file", ""), list(config.get("data_variables", [])))
    pop_cfg = config.get("population", {})

    written = means_bands_all(
        input_type=config["input_type"],
        cond_type=config["cond_type"],
        output_vars=list(config["output_vars"]),
        input_dir=config["input_dir"],
        output_dir=config["output_dir"],
        filestring_base=list(config.get("filestring_base", [])),
        forecast_string=config.get("forecast_string", ""),
        density_bands=[float(p) for p in config.get("density_bands", DEFAULT_DENSITY_BANDS)],
        minimize=bool(config.get("minimize", False)),
        population_mnemonic=pop_cfg.get("mnemonic") or None,
        population_data_file=pop_cfg.get("data_file", ""),
        population_forecast_file=pop_cfg.get("forecast_file", ""),
        use_hpfilter=bool(pop_cfg.get("use_hpfilter", True)),
        population_yoy=bool(pop_cfg.get("yoy", False)),
        data=data,
        n_presample_periods=int(config.get("n_presample_periods", 0)),
        compute_shockdec_bands=bool(config.get("compute_shockdec_bands", False)),
        max_workers=config.get("max_workers"),
        use_processes=bool(config.get("use_processes", False)),
        logger=logger,
    )
    for output_var, path in written.items():
        print(f"Wrote {output_var}: {path}")


if __name__ == "__main__":
    main()
