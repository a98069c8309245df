"""Tests for the romaneio-resolve command."""

import json

from conftest import ACCESS_KEY
from romaneio.cli import EXIT_INVALID_KEY, EXIT_OK, main


class TestCli:
    def test_offline_json(self, capsys):
        assert main([ACCESS_KEY, "--offline", "--json"]) == EXIT_OK

        payload = json.loads(capsys.readouterr().out)
        assert payload["state"] == "synthesized"
        assert payload["invoice"]["access_key"] == ACCESS_KEY
        assert payload["invoice"]["source_label"] == "fallback"
        assert payload["invoice"]["is_synthetic"] is True
        assert "attempts" not in payload

    def test_offline_json_trace(self, capsys):
        main([ACCESS_KEY, "--offline", "--json", "--trace"])

        payload = json.loads(capsys.readouterr().out)
        assert [a["status"] for a in payload["attempts"]] == ["disabled"] * 5

    def test_offline_summary(self, capsys):
        assert main([ACCESS_KEY, "--offline", "--trace"]) == EXIT_OK

        out = capsys.readouterr().out
        assert "3524 0114 2001" in out
        assert "fallback (synthetic)" in out
        assert "LINE ITEMS" in out
        assert "ATTEMPTS" in out

    def test_output_is_deterministic(self, capsys):
        main([ACCESS_KEY, "--offline", "--json"])
        first = capsys.readouterr().out
        main([ACCESS_KEY, "--offline", "--json"])
        assert capsys.readouterr().out == first

    def test_several_keys(self, capsys):
        other = "33" + ACCESS_KEY[2:]
        main([ACCESS_KEY, other, "--offline", "--json"])

        payload = json.loads(capsys.readouterr().out)
        assert [p["invoice"]["access_key"] for p in payload] == [ACCESS_KEY, other]

    def test_invalid_key(self, capsys):
        assert main(["123", "--offline"]) == EXIT_INVALID_KEY
        assert "Invalid access key" in capsys.readouterr().out

    def test_invalid_key_among_valid_ones(self, capsys):
        assert main([ACCESS_KEY, "x" * 44, "--offline"]) == EXIT_INVALID_KEY
        assert "3524" not in capsys.readouterr().out
