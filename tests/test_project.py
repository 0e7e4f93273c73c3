from __future__ import annotations

import json

import pytest

from linguacat.errors import InvalidFileType, MalformedProjectFile, UnsupportedProjectVersion
from linguacat.models import OverlayKind, Role, Segment, SegmentStatus
from linguacat.project import (
    APP_NAME,
    DEFAULT_MODEL,
    PROJECT_VERSION,
    SourceFile,
    dump_project,
    load_project,
    new_project,
    parse_project,
    save_project,
)


def _project_dict(**overrides) -> dict:
    data = {
        "version": PROJECT_VERSION,
        "appName": APP_NAME,
        "createdAt": "2024-05-01T10:00:00Z",
        "project": {"name": "Demo", "sourceLanguage": "en", "targetLanguage": "hu"},
        "data": {
            "segments": [
                {
                    "id": 1,
                    "source": "<p>Hello</p>",
                    "target": "<p>Szia</p>",
                    "status": "translated",
                    "isStructureVisible": True,
                    "structuredSourceHtml": "<p><b>Hello</b></p>",
                    "comments": [{"author": "anna", "text": "ok", "createdAt": "2024-05-01T10:00:00Z"}],
                }
            ]
        },
        "session": {"inputTokenCount": 0, "outputTokenCount": 0, "apiCallCount": 0, "activeSegmentId": None},
        "settings": {"prompts": {"translate": "Translate."}, "model": "gemini-2.5-pro"},
    }
    data.update(overrides)
    return data


def test_parse_project_reads_segments_and_overlays():
    state = parse_project(json.dumps(_project_dict()))

    assert state.project.name == "Demo"
    assert state.settings.model == "gemini-2.5-pro"
    seg = state.segments[0]
    assert seg.status is SegmentStatus.TRANSLATED
    assert seg.overlays[OverlayKind.STRUCTURE].visible is True
    assert seg.comments[0].author == "anna"


def test_legacy_project_is_upgraded():
    data = _project_dict()
    data["settings"] = {"prompts": {}}
    data["data"]["termBase"] = [{"source": "a", "target": "b"}]

    state = parse_project(json.dumps(data))

    assert state.settings.model == DEFAULT_MODEL
    assert state.project.translation_memories == []
    assert state.project.term_databases == []
    assert "termBase" not in dump_project(state)


def test_wrong_app_name_is_unsupported():
    with pytest.raises(UnsupportedProjectVersion) as excinfo:
        parse_project(json.dumps(_project_dict(appName="OtherTool")))
    assert excinfo.value.field == "appName"
    assert excinfo.value.raw == "OtherTool"


@pytest.mark.parametrize(
    ("mutate", "field"),
    [
        (lambda d: d.pop("version"), "version"),
        (lambda d: d.pop("session"), "session"),
        (lambda d: d["data"].pop("segments"), "data.segments"),
        (lambda d: d["settings"].pop("prompts"), "settings.prompts"),
    ],
)
def test_missing_required_keys(mutate, field):
    data = _project_dict()
    mutate(data)

    with pytest.raises(MalformedProjectFile) as excinfo:
        parse_project(json.dumps(data))
    assert excinfo.value.field == field


def test_bad_segment_is_reported_with_index():
    data = _project_dict()
    data["data"]["segments"].append({"source": "no id"})

    with pytest.raises(MalformedProjectFile) as excinfo:
        parse_project(json.dumps(data))
    assert excinfo.value.field == "data.segments[1]"


def test_duplicate_segment_ids_are_malformed():
    data = _project_dict()
    data["data"]["segments"].append({"id": "1", "source": "<p>Again</p>"})

    with pytest.raises(MalformedProjectFile) as excinfo:
        parse_project(json.dumps(data))
    assert excinfo.value.field == "data.segments[1].id"
    assert excinfo.value.raw == "1"


def test_invalid_json_is_malformed():
    with pytest.raises(MalformedProjectFile):
        parse_project("{not json")
    with pytest.raises(MalformedProjectFile):
        parse_project("[]")


def test_load_project_checks_suffix(tmp_path):
    path = tmp_path / "demo.json"
    path.write_text(json.dumps(_project_dict()), encoding="utf-8")

    with pytest.raises(InvalidFileType):
        load_project(path)


def test_save_and_load_round_trip(tmp_path):
    state = new_project(
        "Demo",
        [Segment(id=1, source="<p>Hello</p>", target="<p>Szia</p>", start_time=0.5, end_time=2.0)],
        source_language="en",
        target_language="hu",
    )
    path = tmp_path / "nested" / "demo.lingua"

    save_project(state, path)
    loaded = load_project(path)

    assert loaded.segments == state.segments
    assert loaded.project.source_language == "en"
    assert loaded.app_name == APP_NAME
    assert loaded.version == PROJECT_VERSION


def test_dump_drops_source_file_once_tree_is_stored():
    source_file = SourceFile.from_bytes("demo.docx", b"PK-data")
    state = new_project("Demo", [], source_file=source_file)

    assert "sourceFile" in json.loads(dump_project(state))

    state.source_document_html = '<p data-lingua-id="1">Hello</p>'
    data = json.loads(dump_project(state))
    assert "sourceFile" not in data
    assert data["sourceDocumentHtml"] == '<p data-lingua-id="1">Hello</p>'


def test_source_file_decode():
    source_file = SourceFile.from_bytes("demo.docx", b"\x00\x01binary")
    assert source_file.decode() == b"\x00\x01binary"
    with pytest.raises(MalformedProjectFile):
        SourceFile("x.docx", "!!!").decode()


def test_roles_for_merges_contributors_and_assignments():
    data = _project_dict()
    data["project"]["contributors"] = [{"githubUsername": "Anna", "roles": ["Translator", "Unknown"]}]
    data["project"]["proofreader1"] = "anna"
    data["project"]["leader"] = "bob"

    state = parse_project(json.dumps(data))

    assert state.project.roles_for("anna") == {Role.TRANSLATOR, Role.PROOFREADER_1}
    assert state.project.roles_for("bob") == {Role.PROJECT_LEADER}
