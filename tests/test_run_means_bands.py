#!/usr/bin/env python3
"""End-to-end check of the config-driven means/bands runner."""

from __future__ import annotations

import json
import sys
import tempfile
from pathlib import Path
import unittest

import numpy as np
import pandas as pd

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "scripts"))

import run_means_bands as rmb  # noqa: E402
from forecast_output import get_meansbands_input_files, get_meansbands_output_files, write_forecast_output  # noqa: E402
from meansbands import read_mb  # noqa: E402
from meansbands_core import ConfigurationError  # noqa: E402


class RunMeansBandsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_main_runs_from_config(self) -> None:
        hist_dates = list(pd.date_range("2014-03-31", periods=8, freq=pd.offsets.QuarterEnd()))
        fcast_dates = list(pd.date_range("2016-03-31", periods=4, freq=pd.offsets.QuarterEnd()))
        pd.DataFrame(
            {"date": hist_dates, "obs_level": 100.0 + np.arange(8.0), "obs_ffr": np.ones(8)}
        ).to_csv(self.dir / "data.csv", index=False)

        names = {"obs_level": 0, "obs_ffr": 1}
        transforms = {"obs_level": "logleveltopct_annualized", "obs_ffr": "quartertoannual"}
        raw_dir = self.dir / "raw"
        inputs = get_meansbands_input_files(raw_dir, ["vint=160101"], "full", "none", ["forecastobs"])
        draws = np.zeros((3, 2, 4))
        draws[:, 0, :] = 108.0
        write_forecast_output(inputs["forecastobs"], "forecastobs", draws, names, transforms, date_list=fcast_dates)

        config = {
            "input_dir": str(raw_dir),
            "output_dir": str(self.dir / "work"),
            "filestring_base": ["vint=160101"],
            "input_type": "full",
            "cond_type": "none",
            "output_vars": ["forecastobs"],
            "density_bands": [0.5, 0.9],
            "data_file": str(self.dir / "data.csv"),
            "data_variables": ["obs_level", "obs_ffr"],
            "verbose": "none",
        }
        config_path = self.dir / "config.json"
        config_path.write_text(json.dumps(config), encoding="utf-8")

        rmb.main(["--config", str(config_path), "--verbose", "none"])

        out = get_meansbands_output_files(self.dir / "work", ["vint=160101"], "full", "none", ["forecastobs"])
        mb = read_mb(out["forecastobs"])
        means = mb.get_means("obs_level").to_numpy()
        self.assertAlmostEqual(means[0], 100.0 * (np.exp(4 * 0.01) - 1.0))
        np.testing.assert_allclose(means[1:], 0.0)
        self.assertEqual(mb.which_density_bands("obs_ffr"), [0.5, 0.9])

    def test_missing_data_column_is_reported(self) -> None:
        pd.DataFrame({"date": ["2016-03-31"], "obs_gdp": [1.0]}).to_csv(self.dir / "data.csv", index=False)
        with self.assertRaises(ConfigurationError):
            rmb.load_data_matrix(str(self.dir / "data.csv"), ["obs_gdp", "obs_cpi"])

    def test_cli_overrides(self) -> None:
        args = rmb.parse_args(["--input-type", "mode", "--output-vars", "histobs", "forecastpseudo"])
        cfg = rmb.apply_overrides({"input_type": "full", "output_vars": ["irfobs"]}, args)
        self.assertEqual(cfg["input_type"], "mode")
        self.assertEqual(cfg["output_vars"], ["histobs", "forecastpseudo"])


if __name__ == "__main__":
    unittest.main()
