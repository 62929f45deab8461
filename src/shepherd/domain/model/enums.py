"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class ResourceKind(StrEnum):
    PROJECT = "Project"
    ROLE_TEMPLATE = "RoleTemplate"
    PROJECT_ROLE_TEMPLATE_BINDING = "ProjectRoleTemplateBinding"

    @classmethod
    def parse(cls, value: str) -> ResourceKind | None:
        """Lenient lookup accepting the canonical name, snake case or the plural API name."""

        normalized = value.strip().replace("_", "").replace("-", "").lower()
        return _KIND_ALIASES.get(normalized)


_KIND_ALIASES: dict[str, ResourceKind] = {
    "project": ResourceKind.PROJECT,
    "projects": ResourceKind.PROJECT,
    "roletemplate": ResourceKind.ROLE_TEMPLATE,
    "roletemplates": ResourceKind.ROLE_TEMPLATE,
    "projectroletemplatebinding": ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING,
    "projectroletemplatebindings": ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING,
    "prtb": ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING,
}


class SyncDirection(StrEnum):
    """Which side is the source of truth for a cluster."""

    ENFORCE = "enforce"  # repository is desired, live cluster is the target
    CAPTURE = "capture"  # live cluster is desired, repository is the record


class FileFormat(StrEnum):
    JSON = "json"
    YAML = "yaml"
    TOML = "toml"

    @classmethod
    def _missing_(cls, value: object) -> FileFormat | None:
        if isinstance(value, str) and value.lower() == "yml":
            return cls.YAML
        return None

    @property
    def extension(self) -> str:
        return self.value

    @property
    def extensions(self) -> tuple[str, ...]:
        """Extensions accepted when reading documents of this format."""

        if self is FileFormat.YAML:
            return ("yaml", "yml")
        return (self.value,)
