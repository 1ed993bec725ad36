"""
Unit tests for the alias table.
"""

import threading

import pytest

from visitor_intel.storage.alias_table import AliasTable


class TestAliasTable:
    """Tests for AliasTable."""

    def test_add_lowercases_identifier(self):
        table = AliasTable()
        assert table.add("  P81 ", " Kinto Join ") == ("p81", "Kinto Join")
        assert table.get("P81") == "Kinto Join"

    @pytest.mark.parametrize("identifier,company", [("", "Acme"), ("p81", ""), (None, "Acme"), ("  ", "Acme")])
    def test_rejects_empty_values(self, identifier, company):
        with pytest.raises(ValueError):
            AliasTable().add(identifier, company)

    def test_match_is_case_insensitive_substring(self):
        table = AliasTable({"p81": "Kinto Join"})
        assert table.match("Perimeter P81 Networks") == ("p81", "Kinto Join")
        assert table.match("Unrelated ISP") is None
        assert table.match(None) is None

    def test_longest_identifier_wins(self):
        table = AliasTable({"nord": "Generic Nord", "nordlayer-acme": "Acme"})
        assert table.match("NordLayer-Acme Gateway") == ("nordlayer-acme", "Acme")

    def test_re_adding_replaces_target(self):
        table = AliasTable({"p81": "Old Co"})
        table.add("p81", "New Co")
        assert table.get("p81") == "New Co"
        assert len(table) == 1

    def test_snapshot_is_a_copy(self):
        table = AliasTable({"p81": "Kinto Join"})
        snapshot = table.snapshot()
        snapshot["other"] = "Nope"
        assert "other" not in table.snapshot()

    def test_concurrent_adds_and_reads(self):
        table = AliasTable()
        errors = []

        def writer(start):
            for i in range(start, start + 200):
                table.add(f"vpn-{i}", f"Company {i}")

        def reader():
            for _ in range(200):
                match = table.match("gateway vpn-1 node")
                if match is not None and not match[1].startswith("Company"):
                    errors.append(match)

        threads = [threading.Thread(target=writer, args=(n * 200,)) for n in range(4)]
        threads += [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert len(table) == 800
