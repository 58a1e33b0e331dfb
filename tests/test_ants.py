from __future__ import annotations

import pickle
import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest

from pgjlf import ants
from pgjlf.ants import AntsTools, CommandResult, require
from pgjlf.errors import CollaboratorError
from pgjlf.transforms import TransformChain


class _FakeRun:
    def __init__(self, returncode: int = 0, missing: bool = False) -> None:
        self.cmd = None
        self.returncode = returncode
        self.missing = missing

    def __call__(self, cmd, text=True, capture_output=True, check=True):  # noqa: D401 - test stub
        self.cmd = cmd
        if self.missing:
            raise FileNotFoundError(cmd[0])
        if self.returncode != 0:
            raise subprocess.CalledProcessError(self.returncode, cmd, output="partial", stderr="boom")
        return SimpleNamespace(returncode=0, stdout="done\n", stderr="")


def test_run_command_success(monkeypatch: pytest.MonkeyPatch):
    fake_run = _FakeRun()
    monkeypatch.setattr("subprocess.run", fake_run)

    result = ants._run_command(["ImageMath", "3", "out.nii.gz", "m", "a", "b"])

    assert result.ok
    assert result.returncode == 0
    assert result.output == "done"
    assert fake_run.cmd[0] == "ImageMath"


def test_run_command_reports_nonzero_exit(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr("subprocess.run", _FakeRun(returncode=3))

    result = ants._run_command(["antsJointFusion"])

    assert not result.ok
    assert result.returncode == 3
    assert "boom" in result.output


def test_run_command_reports_missing_executable(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr("subprocess.run", _FakeRun(missing=True))

    result = ants._run_command(["antsApplyTransforms"])

    assert not result.ok
    assert "Command not found" in result.output


def test_require_raises_on_failure_and_missing_outputs(tmp_path: Path):
    failed = CommandResult(command=["x"], ok=False, output="bad", returncode=1)
    with pytest.raises(CollaboratorError, match="bad") as excinfo:
        require(failed, "x step")
    assert excinfo.value.result is failed

    ok = CommandResult(command=["x"], ok=True, output="")
    with pytest.raises(CollaboratorError, match="did not write"):
        require(ok, "x step", [tmp_path / "absent.nii.gz"])

    present = tmp_path / "present.nii.gz"
    present.write_text("x", encoding="utf-8")
    assert require(ok, "x step", [present]) is ok


def test_apply_transforms_command(monkeypatch: pytest.MonkeyPatch):
    seen = []
    monkeypatch.setattr("pgjlf.ants._run_command", lambda cmd: seen.append(cmd) or CommandResult(cmd, True, ""))
    chain = TransformChain.compose(affine="a.mat", warp="w.nii.gz", template_to_subject="-t s.nii.gz")

    AntsTools(bin_dir=Path("/opt/ants/bin")).apply_transforms(
        Path("seg.nii.gz"), Path("out.nii.gz"), Path("ref.nii.gz"), chain, interpolation="GenericLabel"
    )

    assert seen[0] == [
        "/opt/ants/bin/antsApplyTransforms",
        "-d",
        "3",
        "-i",
        "seg.nii.gz",
        "-o",
        "out.nii.gz",
        "-n",
        "GenericLabel",
        "-r",
        "ref.nii.gz",
        "-t",
        "s.nii.gz",
        "-t",
        "w.nii.gz",
        "-t",
        "a.mat",
    ]


def test_voting_and_fusion_commands(monkeypatch: pytest.MonkeyPatch):
    seen = []
    monkeypatch.setattr("pgjlf.ants._run_command", lambda cmd: seen.append(cmd) or CommandResult(cmd, True, ""))
    tools = AntsTools()

    tools.majority_voting(Path("mv.nii.gz"), [Path("l1.nii.gz"), Path("l2.nii.gz")], threshold=0.9)
    tools.majority_voting(Path("mv.nii.gz"), [Path("l1.nii.gz")])
    tools.joint_fusion(
        Path("t.nii.gz"), Path("x.nii.gz"), [Path("g1"), Path("g2")], [Path("l1"), Path("l2")], Path("o.nii.gz")
    )

    assert seen[0] == ["ImageMath", "3", "mv.nii.gz", "MajorityVoting", "0.9", "l1.nii.gz", "l2.nii.gz"]
    assert seen[1] == ["ImageMath", "3", "mv.nii.gz", "MajorityVoting", "l1.nii.gz"]
    assert seen[2] == [
        "antsJointFusion", "-d", "3", "-v", "1", "-t", "t.nii.gz", "-x", "x.nii.gz",
        "-g", "g1", "-g", "g2", "-l", "l1", "-l", "l2", "-o", "o.nii.gz",
    ]


def test_collaborator_error_survives_pickling():
    result = CommandResult(command=["ImageMath", "3"], ok=False, output="Command not found: ImageMath")
    err = CollaboratorError("ImageMath max (merge)", result)

    restored = pickle.loads(pickle.dumps(err))

    assert str(restored) == "ImageMath max (merge) failed: Command not found: ImageMath"
    assert restored.step == "ImageMath max (merge)"
    assert restored.result == result

    custom = pickle.loads(pickle.dumps(CollaboratorError("step", message="custom message")))
    assert str(custom) == "custom message"
