from __future__ import annotations

import json

from lrcp.cli import main


def test_send_prints_reversed_lines(server, capsys):
    host, port = server.address
    rc = main(["send", "--host", host, "--port", str(port), "--session", "99", "hello", "abc"])
    assert rc == 0
    assert capsys.readouterr().out == "olleh\ncba\n"


def test_send_json(server, capsys):
    host, port = server.address
    rc = main(["send", "--host", host, "--port", str(port), "--json", "racecar!"])
    assert rc == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["role"] == "client"
    assert payload["reply"] == ["!racecar"]


def test_bench_json(capsys):
    rc = main(["bench", "--lines", "5", "--line-size", "40", "--seed", "2", "--json"])
    assert rc == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["role"] == "bench"
    assert payload["lines"] == 5
