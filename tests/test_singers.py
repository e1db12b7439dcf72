from src.api.singers import SingerLibrary
from src.project.models import MISSING_SINGER_NAME


def test_lists_singers_with_character_files(singers_dir):
    (singers_dir / "no_character").mkdir()
    (singers_dir / "readme.txt").write_text("not a singer", encoding="utf-8")
    library = SingerLibrary(singers_dir)
    assert library.list_singers() == [
        {"id": "alice", "name": "Alice"},
        {"id": "bob_utau", "name": "Bob"},
    ]


def test_find_by_id_name_and_case_insensitive(singers_dir):
    library = SingerLibrary(singers_dir)
    assert library.find("alice").name == "Alice"
    assert library.find("Bob").id == "bob_utau"
    assert library.find("ALICE").id == "alice"
    assert library.find("Carol") is None


def test_resolve_unknown_returns_placeholder(singers_dir):
    singer = SingerLibrary(singers_dir).resolve("Carol")
    assert singer.name == MISSING_SINGER_NAME
    assert singer.id == "Carol"
    assert not singer.found


def test_missing_root_is_empty(tmp_path):
    assert SingerLibrary(tmp_path / "nowhere").list_singers() == []


def test_refresh_picks_up_new_singers(singers_dir):
    library = SingerLibrary(singers_dir)
    assert library.find("Dana") is None
    dana = singers_dir / "dana"
    dana.mkdir()
    (dana / "character.yaml").write_text("name: Dana\n", encoding="utf-8")
    assert library.find("Dana") is None
    library.refresh()
    assert library.find("Dana").id == "dana"


def test_unnamed_character_falls_back_to_directory_name(singers_dir):
    eve = singers_dir / "eve"
    eve.mkdir()
    (eve / "character.yaml").write_text("voice: soft\n", encoding="utf-8")
    assert SingerLibrary(singers_dir).find("eve").name == "eve"
