"""
Contract tests for AudioSupply.

Covers: manifest generation, extension matching, directory creation,
NoAudioFound on an empty directory, AudioSource immutability.
"""

import dataclasses
import os

import pytest

from kioskcast.audio.audio_supply import AudioSource, resolve_audio_source
from kioskcast.errors import NoAudioFound, StartupError


def read_manifest(path):
    with open(path, encoding="utf-8") as f:
        return f.read().split("\n")


class TestResolveAudioSource:

    def test_manifest_has_one_absolute_line_per_track(self, music_dir, tmp_path):
        manifest = tmp_path / "audio_list.txt"

        audio = resolve_audio_source(str(music_dir), str(manifest))

        lines = read_manifest(manifest)
        assert len(lines) == 3
        expected = [str(music_dir / name) for name in ("a.mp3", "b.mp3", "c.mp3")]
        assert lines == [f"file '{path}'" for path in expected]
        assert list(audio.paths) == expected
        assert all(os.path.isabs(p) for p in audio.paths)
        assert audio.loop is True
        assert audio.manifest_path == str(manifest)

    def test_only_matching_regular_files_are_listed(self, tmp_path):
        music = tmp_path / "music"
        music.mkdir()
        (music / "Track.MP3").write_bytes(b"ID3")
        (music / "cover.jpg").write_bytes(b"\xff\xd8")
        (music / "notes.txt").write_text("liner notes")
        (music / "folder.mp3").mkdir()

        audio = resolve_audio_source(str(music), str(tmp_path / "list.txt"))

        assert audio.paths == (str(music / "Track.MP3"),)

    def test_extra_extensions_can_be_enabled(self, tmp_path):
        music = tmp_path / "music"
        music.mkdir()
        (music / "a.mp3").write_bytes(b"ID3")
        (music / "b.ogg").write_bytes(b"OggS")

        audio = resolve_audio_source(str(music), str(tmp_path / "list.txt"), (".mp3", ".ogg"))

        assert len(audio.paths) == 2

    def test_relative_directory_is_resolved(self, music_dir, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        audio = resolve_audio_source("music", "audio_list.txt")

        assert audio.paths[0] == str(music_dir / "a.mp3")
        assert audio.manifest_path == str(tmp_path / "audio_list.txt")

    def test_single_quotes_are_escaped_for_concat(self, tmp_path):
        music = tmp_path / "music"
        music.mkdir()
        (music / "Don't Stop.mp3").write_bytes(b"ID3")
        manifest = tmp_path / "list.txt"

        resolve_audio_source(str(music), str(manifest))

        line = read_manifest(manifest)[0]
        assert line == "file '" + str(music) + "/Don'\\''t Stop.mp3'"


class TestNoAudioFound:

    def test_empty_directory_fails(self, tmp_path):
        music = tmp_path / "music"
        music.mkdir()
        (music / "readme.txt").write_text("put mp3 files here")
        manifest = tmp_path / "list.txt"

        with pytest.raises(NoAudioFound):
            resolve_audio_source(str(music), str(manifest))

        assert not manifest.exists()

    def test_missing_directory_is_created_then_fails(self, tmp_path):
        music = tmp_path / "not" / "yet" / "there"

        with pytest.raises(NoAudioFound):
            resolve_audio_source(str(music), str(tmp_path / "list.txt"))

        assert music.is_dir()

    def test_unreadable_path_fails(self, tmp_path):
        blocker = tmp_path / "music"
        blocker.write_text("a file where the directory should be")

        with pytest.raises(NoAudioFound):
            resolve_audio_source(str(blocker), str(tmp_path / "list.txt"))

    def test_no_audio_is_a_startup_error(self):
        assert issubclass(NoAudioFound, StartupError)


class TestAudioSource:

    def test_requires_at_least_one_path(self):
        with pytest.raises(ValueError):
            AudioSource(paths=(), manifest_path="/tmp/list.txt")

    def test_cannot_disable_loop(self):
        with pytest.raises(ValueError):
            AudioSource(paths=("/music/a.mp3",), manifest_path="/tmp/list.txt", loop=False)

    def test_is_immutable(self):
        audio = AudioSource(paths=("/music/a.mp3",), manifest_path="/tmp/list.txt")
        with pytest.raises(dataclasses.FrozenInstanceError):
            audio.manifest_path = "/tmp/other.txt"

    def test_input_args_loop_the_concat_manifest(self):
        audio = AudioSource(paths=("/music/a.mp3",), manifest_path="/tmp/list.txt")
        assert audio.input_args() == [
            "-f", "concat", "-safe", "0", "-stream_loop", "-1", "-i", "/tmp/list.txt",
        ]
