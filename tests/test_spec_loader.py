"""Tests for rules file loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from prefixsync.config import MAX_RULES_FILE_SIZE_BYTES
from prefixsync.spec_loader import SpecLoadError, load_entries


def write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "rules.yaml"
    path.write_text(content)
    return path


class TestLoadEntries:
    """Tests for load_entries."""

    def test_flat_layout(self, tmp_path: Path) -> None:
        path = write(
            tmp_path,
            """
entries:
  - cidr: 203.0.113.0/24
    description: office
  - cidr: 192.0.2.1
    description: vpn
""",
        )

        spec = load_entries(path)

        assert [e.cidr for e in spec.entries] == ["203.0.113.0/24", "192.0.2.1/32"]

    def test_wrapped_layout(self, tmp_path: Path) -> None:
        path = write(
            tmp_path,
            """
apiVersion: prefixsync/v1
kind: AllowList
spec:
  entries:
    - cidr: "2001:db8::/32"
      description: lab
""",
        )

        spec = load_entries(path)

        assert spec.entries[0].description == "lab"

    def test_empty_entries(self, tmp_path: Path) -> None:
        assert load_entries(write(tmp_path, "entries: []\n")).entries == []

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError) as exc_info:
            load_entries(tmp_path / "absent.yaml")

        assert "not found" in str(exc_info.value)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError) as exc_info:
            load_entries(write(tmp_path, "entries: [unclosed\n"))

        assert "Invalid YAML" in str(exc_info.value)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError):
            load_entries(write(tmp_path, "- 203.0.113.0/24\n"))

    def test_validation_errors_name_the_field(self, tmp_path: Path) -> None:
        path = write(
            tmp_path,
            """
entries:
  - cidr: 10.0.0.1/8
    description: broken
""",
        )

        with pytest.raises(SpecLoadError) as exc_info:
            load_entries(path)

        assert "entries.0.cidr" in str(exc_info.value)

    def test_missing_description(self, tmp_path: Path) -> None:
        path = write(tmp_path, "entries:\n  - cidr: 203.0.113.0/24\n")

        with pytest.raises(SpecLoadError) as exc_info:
            load_entries(path)

        assert "entries.0.description" in str(exc_info.value)

    def test_oversized_file(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yaml"
        path.write_text("#" * (MAX_RULES_FILE_SIZE_BYTES + 1))

        with pytest.raises(SpecLoadError) as exc_info:
            load_entries(path)

        assert "maximum size" in str(exc_info.value)
