import json
from pathlib import Path
import subprocess
import sys

import pytest

from batchrun.roles import SUPPORTED_ROLES


@pytest.mark.integration
@pytest.mark.parametrize("role", SUPPORTED_ROLES)
def test_role_starts_via_dry_run(role: str, tmp_path: Path) -> None:
    items = tmp_path / "links.json"
    items.write_text(json.dumps(["https://example.com"]), encoding="utf-8")
    proc = subprocess.run(
        [
            sys.executable,
            "-m",
            "batchrun.main",
            "--role",
            role,
            "--dry-run-startup",
            "--items",
            str(items),
            "--output-dir",
            str(tmp_path / "out"),
        ],
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 0, proc.stderr
    first_line = json.loads(proc.stdout.splitlines()[0])
    assert first_line["message"] == "runtime initialized"
    assert first_line["role"] == role


@pytest.mark.integration
def test_batch_dry_run_fails_for_invalid_items_file(tmp_path: Path) -> None:
    items = tmp_path / "links.json"
    items.write_text("{}", encoding="utf-8")
    proc = subprocess.run(
        [
            sys.executable,
            "-m",
            "batchrun.main",
            "--role",
            "batch",
            "--dry-run-startup",
            "--items",
            str(items),
            "--output-dir",
            str(tmp_path / "out"),
        ],
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 1
    assert "invalid items file format" in proc.stdout
