#!/usr/bin/env python3
"""MeansBands result object and its summary-file reader/writer."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from forecast_output import SHOCKDEC_DELIM, PathLike
from meansbands_core import DrawFileError, density_band_levels

MB_ENTRY = "mb"


@dataclass(frozen=True)
class MeansBands:
    metadata: Dict
    means: pd.DataFrame
    bands: Dict[str, pd.DataFrame] = field(default_factory=dict)

    def get_class(self) -> str:
        return self.metadata["class"]

    def get_product(self) -> str:
        return self.metadata["product"]

    def get_para(self) -> str:
        return self.metadata["para"]

    def get_cond_type(self) -> str:
        return self.metadata["cond_type"]

    def get_shocks(self) -> List[str]:
        return list(self.metadata.get("shock_indices", {}).keys())

    def get_variables(self) -> List[str]:
        return list(self.metadata["indices"].keys())

    def series_names(self) -> List[str]:
        return [c for c in self.means.columns if c != "date"]

    def startdate(self) -> Optional[pd.Timestamp]:
        if "date" not in self.means.columns or self.means.empty:
            return None
        return pd.Timestamp(self.means["date"].iloc[0])

    def enddate(self) -> Optional[pd.Timestamp]:
        if "date" not in self.means.columns or self.means.empty:
            return None
        return pd.Timestamp(self.means["date"].iloc[-1])

    def which_density_bands(self, name: str) -> List[float]:
        return density_band_levels(self.bands.get(name, pd.DataFrame()).columns)

    def get_means(self, name: str) -> pd.Series:
        if name not in self.means.columns:
            raise KeyError(f"No means for '{name}' in {self.get_product()}{self.get_class()}")
        return self.means[name]

    def get_bands(self, name: str) -> pd.DataFrame:
        if name not in self.bands:
            raise KeyError(f"No bands for '{name}' in {self.get_product()}{self.get_class()}")
        return self.bands[name]

    def get_shockdec_means(self, var_name: str) -> pd.DataFrame:
        """Shock contributions to ``var_name``, one column per shock."""
        cols = {}
        for shock in self.get_shocks():
            key = f"{var_name}{SHOCKDEC_DELIM}{shock}"
            if key in self.means.columns:
                cols[shock] = self.means[key].to_numpy()
        out = pd.DataFrame(cols)
        if "date" in self.means.columns:
            out.insert(0, "date", self.means["date"].to_numpy())
        return out


def write_mb(path: PathLike, mb: MeansBands) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    # Pickle beside the target, then swap it in so readers never see a partial file.
    tmp = out.with_name(f".{out.name}.tmp")
    try:
        pd.to_pickle({MB_ENTRY: mb}, tmp)
        os.replace(tmp, out)
    finally:
        if tmp.exists():
            tmp.unlink()
    return out


def read_mb(path: PathLike) -> MeansBands:
    payload = pd.read_pickle(path)
    if not isinstance(payload, dict) or MB_ENTRY not in payload:
        raise DrawFileError(f"{path} does not hold a '{MB_ENTRY}' entry.")
    return payload[MB_ENTRY]
