"""
psi-relay — interactive stdio bridge contract

File: tests/integration/test_stdio_bridge.py
Last updated: 2026-10-18

Purpose
- Drive `python -m psi_relay serve` through a complete client/server
  handshake one line at a time, the way a host process would.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path
from typing import IO, Any

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"


def _spawn_relay(workdir: Path, stderr_sink: IO[str]) -> subprocess.Popen[str]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("PSI_RELAY_")}
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    return subprocess.Popen(
        [sys.executable, "-m", "psi_relay", "serve"],
        cwd=workdir,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=stderr_sink,
        text=True,
        bufsize=1,
        env=env,
    )


def _exchange(process: subprocess.Popen[str], envelope: dict[str, Any]) -> dict[str, Any]:
    assert process.stdin is not None
    assert process.stdout is not None
    process.stdin.write(json.dumps(envelope) + "\n")
    process.stdin.flush()
    line = process.stdout.readline()
    assert line, "relay closed stdout before replying"
    return json.loads(line)


def test_full_handshake_over_pipes(tmp_path: Path) -> None:
    stderr_path = tmp_path / "relay.stderr"
    with stderr_path.open("w", encoding="utf-8") as stderr_sink:
        process = _spawn_relay(tmp_path, stderr_sink)
        try:
            assert process.stdout is not None
            ready = json.loads(process.stdout.readline())
            assert ready == {"type": "INITIALIZED", "payload": {"initialized": True}}

            created = _exchange(
                process,
                {"id": "r-1", "type": "CREATE_REQUEST", "payload": {"grid": ["mon-10", "tue-14"]}},
            )
            assert created["id"] == "r-1"
            assert created["type"] == "CREATE_REQUEST"
            client = created["payload"]

            answered = _exchange(
                process,
                {
                    "id": "r-2",
                    "type": "CREATE_RESPONSE",
                    "payload": {
                        "request": client["clientRequest"],
                        "grid": ["tue-14", "wed-09"],
                    },
                },
            )
            assert answered["id"] == "r-2"
            server = answered["payload"]

            computed = _exchange(
                process,
                {
                    "id": "r-3",
                    "type": "COMPUTE_INTERSECTION",
                    "payload": {
                        "key": client["privateKey"],
                        "response": server["serverResponse"],
                        "setup": server["serverSetup"],
                    },
                },
            )
            assert computed["id"] == "r-3"
            assert computed["type"] == "COMPUTE_INTERSECTION"
            assert 1 in computed["payload"]["intersection"]

            rejected = _exchange(process, {"id": "r-4", "type": "COMPUTE_INTERSECTION"})
            assert rejected["id"] == "r-4"
            assert rejected["type"] == "ERROR"
            assert rejected["payload"]["error"] == "ENVELOPE_PARSE_ERROR"

            assert process.stdin is not None
            process.stdin.close()
            assert process.wait(timeout=60) == 0
            assert process.stdout.read() == ""
        finally:
            if process.poll() is None:
                process.kill()
                process.wait(timeout=10)
            if process.stdout is not None:
                process.stdout.close()

    log_text = stderr_path.read_text(encoding="utf-8")
    assert client["privateKey"] not in log_text
