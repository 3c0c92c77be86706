#!/usr/bin/env python3
"""Forecast draw files: output-variable naming, the .npz container and its metadata."""

from __future__ import annotations

import json
import os
from collections import OrderedDict
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from meansbands_core import ConfigurationError, DrawFileError

PathLike = Union[str, "os.PathLike[str]"]

SHOCKDEC_DELIM = "__"
SINGLE_DRAW_INPUT_TYPES = ("init", "mode", "mean")
INPUT_TYPES = SINGLE_DRAW_INPUT_TYPES + ("full", "subset")
COND_TYPES = ("none", "semi", "full")


class VariableClass(str, Enum):
    OBS = "obs"
    PSEUDO = "pseudo"
    SHOCKS = "shocks"


class Product(str, Enum):
    HIST = "hist"
    FORECAST = "forecast"
    FORECAST4Q = "forecast4q"
    BDDFORECAST = "bddforecast"
    BDDFORECAST4Q = "bddforecast4q"
    TREND = "trend"
    DETTREND = "dettrend"
    SHOCKDEC = "shockdec"
    IRF = "irf"


CLASS_LONGNAMES: Dict[VariableClass, str] = {
    VariableClass.OBS: "observable",
    VariableClass.PSEUDO: "pseudoobservable",
    VariableClass.SHOCKS: "shock",
}

TIME_SERIES_PRODUCTS = (
    Product.HIST,
    Product.FORECAST,
    Product.DETTREND,
    Product.TREND,
    Product.FORECAST4Q,
    Product.BDDFORECAST,
    Product.BDDFORECAST4Q,
)
SHOCK_PRODUCTS = (Product.SHOCKDEC, Product.IRF)
FOUR_QUARTER_PRODUCTS = (Product.FORECAST4Q, Product.BDDFORECAST4Q)
FORECAST_PRODUCTS = (Product.FORECAST, Product.BDDFORECAST)
OPTIONAL_BAND_PRODUCTS = (Product.SHOCKDEC, Product.DETTREND, Product.TREND)


def split_output_var(output_var: str) -> Tuple[VariableClass, Product]:
    name = str(output_var)
    for cls in sorted(VariableClass, key=lambda c: -len(c.value)):
        if name.endswith(cls.value):
            prefix = name[: -len(cls.value)]
            try:
                return cls, Product(prefix)
            except ValueError:
                break
    raise ConfigurationError(f"Cannot parse output variable {output_var!r} into <product><class>.")


def get_class(output_var: str) -> VariableClass:
    return split_output_var(output_var)[0]


def get_product(output_var: str) -> Product:
    return split_output_var(output_var)[1]


def get_class_longname(cls: VariableClass) -> str:
    return CLASS_LONGNAMES[VariableClass(cls)]


def add_requisite_output_vars(output_vars: Sequence[str]) -> List[str]:
    # Plotting a shock decomposition needs the trend and deterministic trend of the same class.
    out = list(dict.fromkeys(output_vars))
    for var in list(out):
        cls, prod = split_output_var(var)
        if prod == Product.SHOCKDEC:
            for extra in (Product.TREND, Product.DETTREND):
                name = f"{extra.value}{cls.value}"
                if name not in out:
                    out.append(name)
    return out


def is_single_draw(input_type: str) -> bool:
    return input_type in SINGLE_DRAW_INPUT_TYPES


def _filestring(
    input_type: str,
    cond_type: str,
    filestring_base: Sequence[str],
    forecast_string: str,
) -> str:
    if input_type not in INPUT_TYPES:
        raise ConfigurationError(f"Unknown input_type {input_type!r}; expected one of {INPUT_TYPES}")
    if cond_type not in COND_TYPES:
        raise ConfigurationError(f"Unknown cond_type {cond_type!r}; expected one of {COND_TYPES}")
    if input_type == "subset" and not forecast_string:
        raise ConfigurationError("forecast_string must be provided when input_type == 'subset'.")
    parts = [f"cond={cond_type}", f"para={input_type}"]
    if forecast_string:
        parts.append(f"fcid={forecast_string}")
    parts.extend(filestring_base)
    return "_".join(parts)


def get_meansbands_input_files(
    input_dir: PathLike,
    filestring_base: Sequence[str],
    input_type: str,
    cond_type: str,
    output_vars: Sequence[str],
    forecast_string: str = "",
) -> Dict[str, Path]:
    fs = _filestring(input_type, cond_type, filestring_base, forecast_string)
    return {var: Path(input_dir) / f"{var}_{fs}.npz" for var in output_vars}


def get_meansbands_output_files(
    output_dir: PathLike,
    filestring_base: Sequence[str],
    input_type: str,
    cond_type: str,
    output_vars: Sequence[str],
    forecast_string: str = "",
) -> Dict[str, Path]:
    fs = _filestring(input_type, cond_type, filestring_base, forecast_string)
    return {var: Path(output_dir) / f"mb{var}_{fs}.pkl" for var in output_vars}


def get_y0_index(product: Product, data: Optional[np.ndarray], n_presample_periods: int = 0) -> Optional[int]:
    """Column of ``data`` that seeds growth rates and four-quarter sums for ``product``.

    Forecast products grow off the last historical period; four-quarter
    forecasts start three quarters earlier so ``y0_index + 1:`` is the last
    three quarters of history. In-sample products grow off the last presample
    period. ``None`` means the product has no such period.
    """
    product = Product(product)
    if product == Product.IRF or data is None or np.size(data) == 0:
        return None
    nperiods = np.asarray(data).shape[1]
    if product in FORECAST_PRODUCTS:
        idx = nperiods - 1
    elif product in FOUR_QUARTER_PRODUCTS:
        idx = nperiods - 4
    else:
        idx = int(n_presample_periods) - 1
    return idx if idx >= 0 else None


def series_key(product: Product, cls: VariableClass, var_name: str, shock_name: Optional[str] = None) -> str:
    key = f"{Product(product).value}{VariableClass(cls).value}/{var_name}"
    if shock_name is not None:
        key += f"/{shock_name}"
    return key


def _json_entry(payload: Mapping) -> np.ndarray:
    return np.array(json.dumps(payload))


def _ordered_index(mapping: Mapping[str, int]) -> "OrderedDict[str, int]":
    return OrderedDict(sorted(((str(k), int(v)) for k, v in mapping.items()), key=lambda kv: kv[1]))


def write_forecast_output(
    path: PathLike,
    output_var: str,
    draws: np.ndarray,
    indices: Mapping[str, int],
    revtransforms: Mapping[str, str],
    date_list: Optional[Sequence] = None,
    shock_indices: Optional[Mapping[str, int]] = None,
) -> Path:
    """Write a stacked draws array for ``output_var`` as a per-variable .npz draw file.

    ``draws`` is ``ndraws x nvars x nperiods`` (``ndraws x nvars`` for trends,
    with a trailing ``nshocks`` axis for shock decompositions and IRFs).
    """
    cls, product = split_output_var(output_var)
    longname = get_class_longname(cls)
    x = np.asarray(draws, dtype=float)
    entries: Dict[str, np.ndarray] = {
        f"{longname}_indices": _json_entry(dict(indices)),
        f"{longname}_revtransforms": _json_entry({k: str(getattr(v, "value", v)) for k, v in revtransforms.items()}),
    }
    if product != Product.IRF:
        if date_list is None:
            raise ConfigurationError(f"{output_var}: date_list is required for dated products.")
        dates = {pd.Timestamp(d).date().isoformat(): i for i, d in enumerate(date_list)}
        entries["date_indices"] = _json_entry(dates)

    if product in SHOCK_PRODUCTS:
        if shock_indices is None:
            raise ConfigurationError(f"{output_var}: shock_indices are required for {product.value}.")
        entries["shock_indices"] = _json_entry(dict(shock_indices))
        for var, vi in indices.items():
            for shock, si in shock_indices.items():
                entries[series_key(product, cls, var, shock)] = x[:, vi, :, si]
    else:
        for var, vi in indices.items():
            entries[series_key(product, cls, var)] = x[:, vi, ...]

    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "wb") as f:
        np.savez(f, **entries)
    return out


@contextmanager
def open_draw_file(path: PathLike) -> Iterator[np.lib.npyio.NpzFile]:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Forecast output file not found: {path}")
    with np.load(path, allow_pickle=False) as f:
        yield f


def read_json_entry(file, key: str, path: PathLike = "") -> Dict:
    if key not in file.files:
        raise DrawFileError(f"Draw file {path} has no '{key}' entry.")
    return json.loads(file[key].item())


def read_forecast_output(
    file,
    cls: VariableClass,
    product: Product,
    var_name: str,
    shock_name: Optional[str] = None,
) -> np.ndarray:
    key = series_key(product, cls, var_name, shock_name)
    if key not in file.files:
        raise DrawFileError(f"Draw file has no series '{key}'.")
    return np.asarray(file[key], dtype=float)


def read_date_list(file, path: PathLike = "") -> List[pd.Timestamp]:
    date_indices = _ordered_index(read_json_entry(file, "date_indices", path))
    return [pd.Timestamp(d) for d in date_indices]


def get_mb_metadata(
    input_type: str,
    cond_type: str,
    output_var: str,
    forecast_output_file: PathLike,
    forecast_string: str = "",
) -> Tuple[Dict, Dict]:
    """Read the index/transform metadata block of a draw file.

    Returns the raw metadata used to slice the file and the metadata carried
    on the resulting MeansBands object.
    """
    cls, product = split_output_var(output_var)
    longname = get_class_longname(cls)
    path = forecast_output_file

    with open_draw_file(path) as f:
        indices = read_json_entry(f, f"{longname}_indices", path)
        revtransforms = read_json_entry(f, f"{longname}_revtransforms", path)
        date_indices = None if product == Product.IRF else read_json_entry(f, "date_indices", path)
        shock_indices = read_json_entry(f, "shock_indices", path) if product in SHOCK_PRODUCTS else None

    missing = [v for v in indices if v not in revtransforms]
    if missing:
        raise DrawFileError(f"{path}: no transform recorded for {longname} variables {missing}.")

    metadata: Dict = {
        "indices": OrderedDict((str(k), int(v)) for k, v in indices.items()),
        "revtransforms": dict(revtransforms),
    }
    if date_indices is not None:
        metadata["date_indices"] = OrderedDict(
            (pd.Timestamp(d), i) for d, i in _ordered_index(date_indices).items()
        )
    if shock_indices is not None:
        metadata["shock_indices"] = _ordered_index(shock_indices)

    mb_metadata: Dict = {
        "para": input_type,
        "cond_type": cond_type,
        "class": cls.value,
        "product": product.value,
        "indices": metadata["indices"],
        "forecast_string": forecast_string,
    }
    mb_metadata["date_inds"] = metadata.get("date_indices", OrderedDict())
    return metadata, mb_metadata
