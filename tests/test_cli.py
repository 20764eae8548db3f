"""Tests for the command-line interface.

WHY: The CLI is how rippers actually use the tool. Each subcommand must
wire its flags to the right operation and fail with a readable message
and exit status 1.

HOW: main() is called with explicit argv lists against files in
tmp_path. Status output is captured with capsys (it goes to stderr).
"""

import pytest

from xsf_converter.cli import build_parser, main
from xsf_converter.core.resolver import load_title
from xsf_converter.core.tags import library_references, parse_tags


@pytest.fixture
def title(make_container):
    make_container("lib.ssflib", b"\x11" * 0x40, tags="title=Driver")
    return make_container("song.minissf", b"\x22" * 8, load_address=0x10,
                          tags="title=Song\n_lib=lib.ssflib")


class TestBuildParser:
    def test_defaults(self):
        args = build_parser().parse_args(["extract", "a.vfs"])
        assert args.output_type == "minixsf"
        assert args.output_names == []
        assert not args.raw

    def test_convert_tags_accumulate(self):
        args = build_parser().parse_args(
            ["convert", "in.ssf", "out.ssf", "--tag", "a=1", "--tag", "b=2"]
        )
        assert args.tag == ["a=1", "b=2"]
        assert args.tags_mode == "update-keep-libs"
        assert args.input_type == "any"

    def test_minimize_verbose_after_subcommand(self):
        args = build_parser().parse_args(["minimize", "p.ssf", "l.ssflib", "o.minissf", "--verbose"])
        assert args.verbose is True

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestConvert:
    def test_to_raw_image(self, title, tmp_path):
        out = tmp_path / "song.ssfbin"
        main(["convert", str(title), str(out)])
        assert out.read_bytes() == bytes(load_title(title).image)

    def test_to_merged_with_tags(self, title, tmp_path, capsys):
        out = tmp_path / "merged.ssf"
        main(["convert", str(title), str(out), "--tag", "artist=Someone"])
        merged = load_title(out)
        tags = parse_tags(merged.primary().tags)
        assert tags["artist"] == "Someone"
        assert tags["title"] == "Song"
        assert library_references(merged.primary().tags) == []
        assert "Wrote 1 file(s)" in capsys.readouterr().err

    def test_replace_tags_on_minixsf(self, title, tmp_path):
        out = tmp_path / "retagged.minissf"
        main(["convert", str(title), str(out), "--tags-mode", "replace", "--tag", "title=New"])
        tags = load_title(out, load_libraries=False).primary().tags
        assert tags == b"[TAG]title=New"

    def test_missing_input(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["convert", str(tmp_path / "missing.ssf"), str(tmp_path / "out.ssf")])
        assert excinfo.value.code == 1
        assert "Error:" in capsys.readouterr().err


class TestMinimize:
    def test_output_references_library(self, make_container, tmp_path):
        make_container("lib.ssflib", bytes(range(256)))
        program = bytearray(range(256))
        program[0x80] = 0xFF
        full = make_container("full.ssf", program, tags="title=Full")
        out = tmp_path / "full.minissf"
        main(["minimize", str(full), str(tmp_path / "lib.ssflib"), str(out)])
        mini = load_title(out)
        assert library_references(mini.primary().tags) == ["lib.ssflib"]
        assert bytes(mini.image) == bytes(load_title(full).image)
        assert mini.primary().size == 1

    def test_no_overwrite(self, make_container, tmp_path):
        make_container("lib.ssflib", b"\x00" * 16)
        full = make_container("full.ssf", b"\x01" * 16)
        out = tmp_path / "full.minissf"
        out.write_bytes(b"keep")
        main(["minimize", str(full), str(tmp_path / "lib.ssflib"), str(out), "--no-overwrite"])
        assert out.read_bytes() == b"keep"

    def test_directory(self, make_container, tmp_path):
        make_container("lib.ssflib", b"\x05" * 64)
        make_container("a.ssf", b"\x05" * 32 + b"\x06" * 32)
        main(["minimize-dir", str(tmp_path), str(tmp_path / "lib.ssflib"), "--no-backup"])
        assert (tmp_path / "a.minissf").exists()
        assert (tmp_path / "a.ssf").exists()


class TestArchiveCommands:
    def test_pack_and_extract(self, title, tmp_path, capsys):
        archive = tmp_path / "set.vfs"
        main(["pack", str(tmp_path), str(archive)])
        out = tmp_path / "out"
        main(["extract", str(archive), "--output-dir", str(out)])
        assert sorted(p.name for p in out.iterdir()) == ["Song.minissf", "lib.ssflib"]
        assert bytes(load_title(out / "Song.minissf").image) == bytes(load_title(title).image)
        assert "Song.minissf" in capsys.readouterr().err

    def test_pack_through_manifest(self, title, tmp_path):
        manifest = tmp_path / "items.json"
        main(["pack", str(tmp_path), str(manifest)])
        archive = tmp_path / "set.vfs"
        main(["pack", str(manifest), str(archive)])
        assert archive.read_bytes()[:4] == b"VFS\x00"

    def test_pack_rejects_other_sources(self, tmp_path, capsys):
        source = tmp_path / "notes.txt"
        source.write_text("hello")
        with pytest.raises(SystemExit) as excinfo:
            main(["pack", str(source), str(tmp_path / "out.vfs")])
        assert excinfo.value.code == 1
        assert "Error:" in capsys.readouterr().err

    def test_extract_bad_archive(self, tmp_path, capsys):
        path = tmp_path / "junk.vfs"
        path.write_bytes(bytes(32))
        with pytest.raises(SystemExit) as excinfo:
            main(["extract", str(path)])
        assert excinfo.value.code == 1
        assert "not a valid VFS file" in capsys.readouterr().err
