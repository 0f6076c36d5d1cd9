from __future__ import annotations

from pathlib import Path

from deploy_pipeline.core import fs


def test_atomic_write_text_replaces_whole_file(tmp_path: Path) -> None:
    path = tmp_path / "runs" / "r1" / "run_report.json"
    fs.atomic_write_text(path, "first\n")
    assert path.read_text() == "first\n"

    fs.atomic_write_text(path, "second")
    assert path.read_text() == "second"
    # no temp files left next to the target
    assert [p.name for p in path.parent.iterdir()] == ["run_report.json"]


def test_safe_unlink_tolerates_missing_files(tmp_path: Path) -> None:
    target = tmp_path / "file.lock"
    target.write_text("x")
    fs.safe_unlink(target)
    assert not target.exists()
    fs.safe_unlink(target)
