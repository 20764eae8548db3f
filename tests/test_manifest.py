"""Tests for JSON archive manifests.

WHY: Manifests are edited by hand between collecting and packing. A typo
must be caught when the file is read, not halfway through writing an
archive.

HOW: Items are saved and loaded through tmp_path; hand-written invalid
manifests must raise jsonschema.ValidationError.
"""

import json

import jsonschema
import pytest

from xsf_converter.archive import ArchiveItem, load_manifest, save_manifest


def _items():
    return [
        ArchiveItem(name="lib.ssflib", type_tag=0x05A00000, source="/rip/lib.ssflib",
                    file_start=4, file_end=0x44, skip_libraries=True),
        ArchiveItem(name="タイトル", type_tag=0xFFFFFF18, libs=[0, 0]),
        ArchiveItem(name="track", type_tag=0xFFFFFF1B, source="/rip/track.mod", load_direct=True),
    ]


def _write(path, rows):
    path.write_text(json.dumps(rows), encoding="utf-8")
    return path


class TestManifest:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "items.json"
        save_manifest(path, _items())
        assert load_manifest(path) == _items()

    def test_fields_named_like_items(self, tmp_path):
        path = tmp_path / "items.json"
        save_manifest(path, _items()[:1])
        row = json.loads(path.read_text(encoding="utf-8"))[0]
        assert set(row) == {
            "name", "type_tag", "source", "load_direct",
            "file_start", "file_end", "skip_libraries", "libs",
        }

    def test_optional_fields_default(self, tmp_path):
        path = _write(tmp_path / "m.json", [{"name": "a", "type_tag": 1}])
        assert load_manifest(path) == [ArchiveItem(name="a", type_tag=1)]

    @pytest.mark.parametrize("row", [
        {"type_tag": 1},
        {"name": "a", "type_tag": 1, "colour": "red"},
        {"name": "a", "type_tag": -1},
        {"name": "a", "type_tag": 1, "file_start": -4},
        {"name": "a", "type_tag": 1, "libs": ["0"]},
    ])
    def test_invalid_rows(self, tmp_path, row):
        with pytest.raises(jsonschema.ValidationError):
            load_manifest(_write(tmp_path / "bad.json", [row]))

    def test_not_a_list(self, tmp_path):
        with pytest.raises(jsonschema.ValidationError):
            load_manifest(_write(tmp_path / "bad.json", {"name": "a"}))

    def test_invalid_items_not_saved(self, tmp_path):
        path = tmp_path / "m.json"
        with pytest.raises(jsonschema.ValidationError):
            save_manifest(path, [ArchiveItem(name="a", type_tag=-5)])
        assert not path.exists()
