from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import InvalidFileType, MalformedProjectFile, UnsupportedProjectVersion
from .models import Role, Segment

APP_NAME = "LinguaSync"
PROJECT_VERSION = "1.5.0"
PROJECT_SUFFIX = ".lingua"
DEFAULT_MODEL = "gemini-2.5-flash"

_REQUIRED_PATHS = (
    ("version",),
    ("appName",),
    ("project",),
    ("data",),
    ("data", "segments"),
    ("session",),
    ("settings",),
    ("settings", "prompts"),
    ("settings", "model"),
)

_logger = logging.getLogger(__name__)


@dataclass
class Contributor:
    github_username: str
    roles: list[Role] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"githubUsername": self.github_username, "roles": [r.value for r in self.roles]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Contributor:
        roles: list[Role] = []
        for raw in data.get("roles") or []:
            try:
                roles.append(Role(raw))
            except ValueError:
                _logger.debug("Ignoring unknown role %r for %s", raw, data.get("githubUsername"))
        return cls(github_username=str(data.get("githubUsername", "")), roles=roles)


# camelCase project-file key -> ProjectInfo attribute, for the optional string fields
_PROJECT_OPTIONAL = {
    "leader": "leader",
    "youtubeUrl": "youtube_url",
    "webpageUrl": "webpage_url",
    "proofreader1": "proofreader1",
    "proofreader2": "proofreader2",
}


@dataclass
class ProjectInfo:
    name: str
    context: str = ""
    source_language: str = ""
    target_language: str = ""
    translation_memories: list[str] = field(default_factory=list)
    term_databases: list[str] = field(default_factory=list)
    contributors: list[Contributor] = field(default_factory=list)
    leader: str | None = None
    youtube_url: str | None = None
    webpage_url: str | None = None
    proofreader1: str | None = None
    proofreader2: str | None = None

    def roles_for(self, username: str) -> set[Role]:
        """Roles granted to `username` by the contributor list and the named assignments."""
        roles: set[Role] = set()
        for contributor in self.contributors:
            if contributor.github_username.lower() == username.lower():
                roles.update(contributor.roles)
        if self.leader and self.leader.lower() == username.lower():
            roles.add(Role.PROJECT_LEADER)
        if self.proofreader1 and self.proofreader1.lower() == username.lower():
            roles.add(Role.PROOFREADER_1)
        if self.proofreader2 and self.proofreader2.lower() == username.lower():
            roles.add(Role.PROOFREADER_2)
        return roles

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "context": self.context,
            "sourceLanguage": self.source_language,
            "targetLanguage": self.target_language,
            "translationMemories": list(self.translation_memories),
            "termDatabases": list(self.term_databases),
        }
        if self.contributors:
            out["contributors"] = [c.to_dict() for c in self.contributors]
        for key, attr in _PROJECT_OPTIONAL.items():
            value = getattr(self, attr)
            if value is not None:
                out[key] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectInfo:
        return cls(
            name=str(data.get("name", "")),
            context=str(data.get("context") or ""),
            source_language=str(data.get("sourceLanguage") or ""),
            target_language=str(data.get("targetLanguage") or ""),
            translation_memories=list(data.get("translationMemories") or []),
            term_databases=list(data.get("termDatabases") or []),
            contributors=[Contributor.from_dict(c) for c in data.get("contributors") or [] if isinstance(c, dict)],
            **{attr: data.get(key) for key, attr in _PROJECT_OPTIONAL.items()},
        )


@dataclass
class SourceFile:
    name: str
    content: str  # data URL or bare base64

    def decode(self) -> bytes:
        payload = self.content.split(",", 1)[1] if self.content.startswith("data:") else self.content
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedProjectFile(
                f"sourceFile.content of {self.name!r} is not valid base64", field="sourceFile.content", raw=self.content[:80]
            ) from exc

    @classmethod
    def from_bytes(cls, name: str, data: bytes, mime: str = "application/octet-stream") -> SourceFile:
        return cls(name=name, content=f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}")


def _default_session() -> dict[str, Any]:
    return {"inputTokenCount": 0, "outputTokenCount": 0, "apiCallCount": 0, "activeSegmentId": None}


@dataclass
class ProjectSettings:
    prompts: dict[str, str] = field(default_factory=dict)
    model: str = DEFAULT_MODEL


@dataclass
class ProjectState:
    project: ProjectInfo
    segments: list[Segment] = field(default_factory=list)
    version: str = PROJECT_VERSION
    app_name: str = APP_NAME
    created_at: str = ""
    session: dict[str, Any] = field(default_factory=_default_session)
    settings: ProjectSettings = field(default_factory=ProjectSettings)
    source_control: dict[str, Any] | None = None
    source_file: SourceFile | None = None
    source_document_html: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "version": self.version,
            "appName": self.app_name,
            "createdAt": self.created_at,
            "project": self.project.to_dict(),
            "data": {"segments": [seg.to_dict() for seg in self.segments]},
            "session": dict(self.session),
            "settings": {"prompts": dict(self.settings.prompts), "model": self.settings.model},
        }
        if self.source_control is not None:
            out["sourceControl"] = dict(self.source_control)
        if self.source_file is not None:
            out["sourceFile"] = {"name": self.source_file.name, "content": self.source_file.content}
        if self.source_document_html is not None:
            out["sourceDocumentHtml"] = self.source_document_html
        return out


def _lookup(data: dict[str, Any], path: tuple[str, ...]) -> Any:
    node: Any = data
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _upgrade_legacy(data: dict[str, Any]) -> None:
    project = data.get("project")
    if isinstance(project, dict):
        project.setdefault("translationMemories", [])
        project.setdefault("termDatabases", [])
        if project["translationMemories"] is None:
            project["translationMemories"] = []
        if project["termDatabases"] is None:
            project["termDatabases"] = []
    settings = data.get("settings")
    if isinstance(settings, dict) and not settings.get("model"):
        settings["model"] = DEFAULT_MODEL
    payload = data.get("data")
    if isinstance(payload, dict) and "termBase" in payload:
        del payload["termBase"]
        _logger.info("Dropped obsolete data.termBase from project file")


def project_from_dict(data: dict[str, Any]) -> ProjectState:
    _upgrade_legacy(data)

    for path in _REQUIRED_PATHS:
        value = _lookup(data, path)
        name = ".".join(path)
        if path == ("appName",) and value is not None and value != APP_NAME:
            raise UnsupportedProjectVersion(
                f"Not a {APP_NAME} project: appName is {value!r}", field="appName", raw=value
            )
        if value is None or value == "":
            raise MalformedProjectFile(f"Project file is missing required key {name!r}", field=name, raw=value)
    if not isinstance(data["data"]["segments"], list):
        raise MalformedProjectFile(
            "data.segments must be a list", field="data.segments", raw=type(data["data"]["segments"]).__name__
        )

    segments: list[Segment] = []
    seen_ids: set[int] = set()
    for i, raw in enumerate(data["data"]["segments"]):
        try:
            segment = Segment.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedProjectFile(
                f"Invalid segment at data.segments[{i}]: {exc}", field=f"data.segments[{i}]", raw=raw
            ) from exc
        if segment.id in seen_ids:
            raise MalformedProjectFile(
                f"Duplicate segment id {segment.id} at data.segments[{i}]",
                field=f"data.segments[{i}].id",
                raw=raw.get("id"),
            )
        seen_ids.add(segment.id)
        segments.append(segment)

    raw_source = data.get("sourceFile")
    source_file = None
    if isinstance(raw_source, dict) and raw_source.get("content"):
        source_file = SourceFile(name=str(raw_source.get("name", "")), content=str(raw_source["content"]))

    settings = data["settings"]
    return ProjectState(
        version=str(data["version"]),
        app_name=data["appName"],
        created_at=str(data.get("createdAt") or ""),
        project=ProjectInfo.from_dict(data["project"]),
        segments=segments,
        session=dict(data["session"]),
        settings=ProjectSettings(prompts=dict(settings["prompts"]), model=str(settings["model"])),
        source_control=data.get("sourceControl"),
        source_file=source_file,
        source_document_html=data.get("sourceDocumentHtml"),
    )


def parse_project(text: str) -> ProjectState:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedProjectFile(
            f"Project file is not valid JSON (line {exc.lineno}, column {exc.colno}): {exc.msg}",
            raw=text[:200],
        ) from exc
    if not isinstance(data, dict):
        raise MalformedProjectFile("Project file must contain a JSON object", raw=type(data).__name__)
    return project_from_dict(data)


def load_project(path: Path) -> ProjectState:
    path = Path(path)
    if path.suffix.lower() != PROJECT_SUFFIX:
        raise InvalidFileType(f"Unsupported project file type: {path.name} (expected {PROJECT_SUFFIX})", field="path", raw=str(path))
    state = parse_project(path.read_text(encoding="utf-8"))
    _logger.info("Loaded project %r with %d segment(s)", state.project.name, len(state.segments))
    return state


def dump_project(state: ProjectState) -> str:
    """Serialize for saving; the embedded source file is left out once the document tree is stored."""
    data = state.to_dict()
    if data.get("sourceDocumentHtml"):
        data.pop("sourceFile", None)
    return json.dumps(data, ensure_ascii=False, indent=2)


def save_project(state: ProjectState, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_project(state), encoding="utf-8")


def new_project(
    name: str,
    segments: list[Segment],
    *,
    source_language: str = "",
    target_language: str = "",
    context: str = "",
    source_document_html: str | None = None,
    source_file: SourceFile | None = None,
    prompts: dict[str, str] | None = None,
    model: str = DEFAULT_MODEL,
) -> ProjectState:
    return ProjectState(
        project=ProjectInfo(
            name=name, context=context, source_language=source_language, target_language=target_language
        ),
        segments=list(segments),
        created_at=datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        settings=ProjectSettings(prompts=dict(prompts or {}), model=model),
        source_file=source_file,
        source_document_html=source_document_html,
    )
