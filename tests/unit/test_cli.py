"""Tests for the strata CLI."""

import json
import shutil
from pathlib import Path

import pytest

from strata.cli.main import main

MANIFESTS = Path(__file__).resolve().parents[2] / "manifests"


@pytest.fixture
def raised_overlay(tmp_path):
    """A copy of the manifests whose local overlay tries to run three replicas."""
    shutil.copytree(MANIFESTS, tmp_path / "manifests")
    overlay = tmp_path / "manifests" / "overlays" / "local"
    kustomization = overlay / "kustomization.yaml"
    kustomization.write_text(kustomization.read_text() + "\nreplicas:\n  - name: filestore\n    count: 3\n")
    return overlay


class TestBuildCommand:
    """Tests for `strata build`."""

    def test_build_stdout(self, capsys):
        """Test the resolved manifests are printed as YAML."""
        code = main(["build", str(MANIFESTS / "overlays" / "local")])

        out = capsys.readouterr().out
        assert code == 0
        assert "kind: Deployment" in out
        assert "kind: SealedSecret" in out
        assert "HorizontalPodAutoscaler" not in out

    def test_build_json_to_dir(self, tmp_path, capsys):
        """Test JSON output written to a directory."""
        code = main(["build", str(MANIFESTS / "overlays" / "prod"), "--format", "json", "--out", str(tmp_path)])

        assert code == 0
        data = json.loads((tmp_path / "resolved.json").read_text())
        assert data["environment"] == "prod"
        kinds = [d["kind"] for d in data["documents"]]
        assert "PodDisruptionBudget" in kinds
        assert "wrote" in capsys.readouterr().out

    def test_build_yaml_to_dir(self, tmp_path):
        """Test YAML output honours --output-filename."""
        code = main(["build", str(MANIFESTS / "overlays" / "local"), "--out", str(tmp_path),
                     "--output-filename", "local.yaml"])

        assert code == 0
        assert "kind: Deployment" in (tmp_path / "local.yaml").read_text()

    def test_build_missing_overlay(self, tmp_path, capsys):
        """Test a missing overlay directory is an error."""
        code = main(["build", str(tmp_path / "nope")])

        assert code == 1
        assert "Overlay directory not found" in capsys.readouterr().err

    def test_build_fails_closed(self, raised_overlay, capsys):
        """Test a replica raise makes build fail without output."""
        code = main(["build", str(raised_overlay)])

        captured = capsys.readouterr()
        assert code == 1
        assert captured.out == ""
        assert "single-writer ceiling" in captured.err


class TestCheckCommand:
    """Tests for `strata check`."""

    def test_check_prod(self, capsys):
        """Test check reports the resolved prod policy."""
        code = main(["check", str(MANIFESTS / "overlays" / "prod")])

        out = capsys.readouterr().out
        assert code == 0
        assert "env=prod" in out
        assert "readiness: httpGet" in out
        assert "minAvailable=1" in out
        assert "scaling.ROLLOUT_OVERLAP" in out

    def test_check_local(self, capsys):
        """Test check reports the resolved local policy."""
        code = main(["check", str(MANIFESTS / "overlays" / "local")])

        out = capsys.readouterr().out
        assert code == 0
        assert "readiness: exec" in out
        assert "maxUnavailable: 1" in out

    def test_check_env_override(self, capsys):
        """Test --env resolves an overlay under another tag."""
        code = main(["check", str(MANIFESTS / "overlays" / "local"), "--env", "prod"])

        assert code == 0
        assert "readiness: httpGet" in capsys.readouterr().out

    def test_check_unknown_env(self, capsys):
        """Test an unknown environment is reported."""
        code = main(["check", str(MANIFESTS / "overlays" / "local"), "--env", "staging"])

        err = capsys.readouterr().err
        assert code == 1
        assert "Unknown environment 'staging'" in err
        assert "valid environments: local, prod" in err

    def test_check_fails_closed(self, raised_overlay, capsys):
        """Test check exits non-zero on a replica raise."""
        assert main(["check", str(raised_overlay)]) == 1
        assert "replicas=3" in capsys.readouterr().err

    def test_check_malformed_budget(self, tmp_path, capsys):
        """Test an unparseable PDB minAvailable is reported instead of crashing."""
        shutil.copytree(MANIFESTS, tmp_path / "manifests")
        pdb = tmp_path / "manifests" / "overlays" / "prod" / "pdb.yaml"
        pdb.write_text(pdb.read_text().replace("minAvailable: 1", "minAvailable: one"))

        code = main(["check", str(tmp_path / "manifests" / "overlays" / "prod")])

        captured = capsys.readouterr()
        assert code == 1
        assert captured.out == ""
        assert "Error: PodDisruptionBudget/filestore minAvailable='one' is not an integer or percentage" in captured.err


class TestEnvsCommand:
    """Tests for `strata envs`."""

    def test_envs(self, capsys):
        """Test both profiles are listed."""
        code = main(["envs"])

        out = capsys.readouterr().out
        assert code == 0
        assert "local:" in out
        assert "prod:" in out
        assert "probes: exec (readiness 20s/15s)" in out
        assert "pdb: minAvailable=1" in out


class TestNoCommand:
    """Tests for running without a subcommand."""

    def test_help(self, capsys):
        """Test help is printed and the exit code is non-zero."""
        assert main([]) == 1
        assert "usage: strata" in capsys.readouterr().out
