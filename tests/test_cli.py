import pytest

from tagshelf import cli, config


@pytest.fixture
def repo(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "CONFIG_PATH", str(tmp_path / "cfg.json"))
    root = tmp_path / "repo"
    root.mkdir()
    (root / "notes.txt").write_text("notes", encoding="utf-8")
    (root / "song.mp3").write_bytes(b"\x00\x01")
    return root


def test_scan_then_query_uses_remembered_repo(repo, capsys):
    assert cli.main(["--repo", str(repo), "scan"]) == 0
    assert "2 files, 2 added" in capsys.readouterr().out
    assert config.get_last_repo_path() == str(repo)

    assert cli.main(["query"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert [line.split()[1] for line in out] == ["notes.txt", "song.mp3"]


def test_tag_show_and_filter(repo, capsys):
    assert cli.main(["--repo", str(repo), "tag", "song.mp3", "Loud"]) == 0
    assert "song.mp3  [loud]" in capsys.readouterr().out
    assert cli.main(["--repo", str(repo), "query", "loud"]) == 0
    assert capsys.readouterr().out.split()[1] == "song.mp3"
    assert cli.main(["--repo", str(repo), "show", "song.mp3"]) == 0
    assert "type: audio, size: 2" in capsys.readouterr().out
    assert cli.main(["--repo", str(repo), "tags"]) == 0
    assert capsys.readouterr().out.split() == ["1", "loud"]
    assert cli.main(["--repo", str(repo), "untag", "song.mp3", "loud"]) == 0
    capsys.readouterr()
    assert cli.main(["--repo", str(repo), "tags"]) == 0
    assert capsys.readouterr().out == ""


def test_errors_exit_non_zero(repo, capsys):
    assert cli.main(["--repo", str(repo), "query", '"oops']) == 1
    assert "invalid query" in capsys.readouterr().err
    assert cli.main(["--repo", str(repo), "show", "missing.txt"]) == 1
    assert "error:" in capsys.readouterr().err


def test_no_repository_known(repo, capsys):
    assert cli.main(["tags"]) == 2
