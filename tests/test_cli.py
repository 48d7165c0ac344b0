#!/usr/bin/env python3
"""
Tests for the command-line interface
"""

import json

import pandas as pd
import pytest

from lakenet.cli import main


@pytest.fixture
def data_args(tmp_path, regions_gdf, lakes_gdf, rivers_gdf):
    """Write the study area to GeoPackages and return the common arguments"""
    paths = {}
    for name, gdf in (("regions", regions_gdf), ("lakes", lakes_gdf), ("rivers", rivers_gdf)):
        paths[name] = tmp_path / f"{name}.gpkg"
        gdf.to_file(paths[name], driver="GPKG")
    return [
        "--regions",
        str(paths["regions"]),
        "--lakes",
        str(paths["lakes"]),
        "--rivers",
        str(paths["rivers"]),
        "--store",
        str(tmp_path / "store"),
    ]


class TestCLI:
    """Test cases for the lakenet command"""

    def test_build_then_reconcile(self, data_args, tmp_path, capsys):
        """Test building every region then writing the final table"""
        main(["build", *data_args, "--no-progress", "--checkpoint", str(tmp_path / "cp.csv")])
        out = capsys.readouterr().out
        assert "3/3 committed" in out
        assert (tmp_path / "cp.csv").exists()

        output = tmp_path / "networks.csv"
        main(["reconcile", *data_args, "--output", str(output)])
        out = capsys.readouterr().out
        assert "10 lake rows" in out

        final = pd.read_csv(output)
        mara = final[final["waterbody_key"] == 6]
        assert mara["global_network_id"].nunique() == 1

    def test_status(self, data_args, capsys):
        """Test status prints progress as JSON"""
        main(["status", *data_args])
        status = json.loads(capsys.readouterr().out)
        assert status == {
            "regions": 3,
            "regions_completed": 0,
            "resume_point": 0,
            "complete": False,
        }

    def test_reconcile_before_build_fails(self, data_args, capsys):
        """Test reconcile on an empty store exits with an error"""
        with pytest.raises(SystemExit) as excinfo:
            main(["reconcile", *data_args])
        assert excinfo.value.code == 1
        assert "Error:" in capsys.readouterr().err

    def test_start_index_past_resume_point_fails(self, data_args, capsys):
        """Test a gap-leaving start index exits with an error"""
        with pytest.raises(SystemExit) as excinfo:
            main(["build", *data_args, "--no-progress", "--start-index", "2"])
        assert excinfo.value.code == 1
        assert "start_index 2" in capsys.readouterr().err

    def test_config_file(self, data_args, tmp_path, capsys):
        """Test the configuration file is applied"""
        config_path = tmp_path / "lakenet.yaml"
        config_path.write_text("processing:\n  workers: 0\n")
        with pytest.raises(SystemExit):
            main(["status", *data_args, "--config", str(config_path)])
        assert "workers" in capsys.readouterr().err

    def test_status_and_reconcile_need_only_regions(self, data_args, tmp_path, capsys):
        """Test lakes and rivers are only required to build"""
        main(["build", *data_args, "--no-progress"])
        capsys.readouterr()

        region_args = [data_args[0], data_args[1], "--store", str(tmp_path / "store")]
        main(["status", *region_args])
        assert json.loads(capsys.readouterr().out)["complete"] is True

        main(["reconcile", *region_args, "--output", str(tmp_path / "networks.csv")])
        assert "10 lake rows" in capsys.readouterr().out

    def test_build_requires_lakes_and_rivers(self, data_args, capsys):
        """Test build refuses to run without feature sources"""
        with pytest.raises(SystemExit) as excinfo:
            main(["build", data_args[0], data_args[1]])
        assert excinfo.value.code == 2
        assert "--lakes" in capsys.readouterr().err

    def test_no_command_prints_help(self, capsys):
        """Test running without a subcommand"""
        with pytest.raises(SystemExit):
            main([])
        assert "build" in capsys.readouterr().out
