"""Document codecs and the file store that reads and writes them."""

from __future__ import annotations

import json
import os
import tempfile
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final, Protocol

import tomli_w
import yaml

from shepherd.domain.errors import MalformedResource
from shepherd.domain.model import FileFormat

if TYPE_CHECKING:
    from shepherd.domain.model import Document


class DocumentCodec(Protocol):
    def loads(self, text: str) -> object: ...

    def dumps(self, document: Document) -> str: ...


class JsonCodec:
    def loads(self, text: str) -> object:
        return json.loads(text)

    def dumps(self, document: Document) -> str:
        return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


class YamlCodec:
    def loads(self, text: str) -> object:
        return yaml.safe_load(text)

    def dumps(self, document: Document) -> str:
        return yaml.safe_dump(
            document, sort_keys=False, allow_unicode=True, default_flow_style=False
        )


class TomlCodec:
    def loads(self, text: str) -> object:
        return tomllib.loads(text)

    def dumps(self, document: Document) -> str:
        return tomli_w.dumps(document)


CODECS: Final[dict[FileFormat, DocumentCodec]] = {
    FileFormat.JSON: JsonCodec(),
    FileFormat.YAML: YamlCodec(),
    FileFormat.TOML: TomlCodec(),
}

_DECODE_ERRORS: Final = (ValueError, yaml.YAMLError, UnicodeDecodeError)


def format_for_path(path: Path) -> FileFormat | None:
    try:
        return FileFormat(path.suffix.lstrip(".").lower())
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class FileDocumentStore:
    """Load and save one document per file; the format follows the file extension."""

    encoding: str = "utf-8"

    def load_resource(self, path: Path) -> Document:
        file_format = format_for_path(path)
        if file_format is None:
            raise MalformedResource(f"Unsupported document extension: {path.name}", path=path)
        try:
            document = CODECS[file_format].loads(path.read_text(encoding=self.encoding))
        except _DECODE_ERRORS as exc:
            raise MalformedResource(f"Cannot parse {path.name}: {exc}", path=path) from exc
        if not isinstance(document, dict):
            raise MalformedResource(f"{path.name} does not hold a mapping", path=path)
        return document  # pyright: ignore[reportUnknownVariableType]

    def save_resource(self, path: Path, document: Document) -> None:
        """Write ``document`` atomically (temporary file + rename)."""

        file_format = format_for_path(path)
        if file_format is None:
            raise MalformedResource(f"Unsupported document extension: {path.name}", path=path)
        try:
            text = CODECS[file_format].dumps(document)
        except (TypeError, ValueError) as exc:
            raise MalformedResource(
                f"Cannot encode {path.name} as {file_format}: {exc}", path=path
            ) from exc

        path.parent.mkdir(parents=True, exist_ok=True)
        descriptor, temporary = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(descriptor, "w", encoding=self.encoding) as handle:
                handle.write(text)
            Path(temporary).replace(path)
        except BaseException:
            Path(temporary).unlink(missing_ok=True)
            raise

    def remove(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True
