"""SDK inventory parsing and alias-aware SDK name matching."""

from __future__ import annotations

from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

_MAX_ALIAS_FILE_SIZE = 64_000
_BUNDLED_ALIASES = "sdk_aliases.yaml"


class SdkAliasError(ValueError):
    """Raised when an SDK alias table cannot be loaded."""


@dataclass
class SdkInventory:
    """SDK identifiers detected by a probe."""

    raw: list[str]
    normalized: list[str]
    invocation: str | None = None
    notes: list[str] = field(default_factory=list)


class SdkAliasTable:
    """Maps human-friendly SDK names to identifier prefixes.

    ``{"visionOS": ["xros", "visionos"]}`` means any detected identifier
    starting with ``xros`` or ``visionos`` (case-folded) satisfies a
    required ``visionOS``.  The table is data, loaded from YAML.
    """

    def __init__(self, aliases: dict[str, list[str]]) -> None:
        self._aliases = {
            name.strip(): tuple(p.strip().casefold() for p in prefixes if p.strip())
            for name, prefixes in aliases.items()
            if name.strip()
        }

    @classmethod
    def load(cls, path: Path | None = None) -> SdkAliasTable:
        """Load from *path*, or the table bundled with the package."""
        if path is None:
            content = resources.files("seiro.sandbox").joinpath(_BUNDLED_ALIASES).read_text(
                encoding="utf-8"
            )
        else:
            try:
                content = path.read_text(encoding="utf-8")
            except OSError as exc:
                raise SdkAliasError(f"Cannot read SDK alias file {path}: {exc}") from exc
        return cls.from_yaml(content)

    @classmethod
    def from_yaml(cls, content: str) -> SdkAliasTable:
        if len(content) > _MAX_ALIAS_FILE_SIZE:
            raise SdkAliasError("SDK alias file is too large")
        try:
            data: Any = YAML(typ="safe").load(content)
        except YAMLError as exc:
            raise SdkAliasError(f"Invalid SDK alias YAML: {exc}") from exc
        aliases = (data or {}).get("aliases") if isinstance(data, dict) else None
        if not isinstance(aliases, dict):
            raise SdkAliasError("SDK alias file must contain an `aliases` mapping")
        table: dict[str, list[str]] = {}
        for name, prefixes in aliases.items():
            if isinstance(prefixes, str):
                prefixes = [prefixes]
            if not isinstance(prefixes, list) or not all(isinstance(p, str) for p in prefixes):
                raise SdkAliasError(f"Aliases for `{name}` must be a list of strings")
            table[str(name)] = prefixes
        return cls(table)

    @property
    def names(self) -> list[str]:
        return sorted(self._aliases)

    def prefixes_for(self, name: str) -> tuple[str, ...]:
        folded = name.strip().casefold()
        for alias, prefixes in self._aliases.items():
            if alias.casefold() == folded:
                return prefixes
        return ()

    def normalize(self, raw_sdks: list[str]) -> list[str]:
        """Raw identifiers plus every canonical name they resolve to."""
        normalized: set[str] = set()
        for sdk in raw_sdks:
            trimmed = sdk.strip()
            if not trimmed:
                continue
            normalized.add(trimmed)
            folded = trimmed.casefold()
            for alias, prefixes in self._aliases.items():
                if any(folded.startswith(prefix) for prefix in prefixes):
                    normalized.add(alias)
        return sorted(normalized)

    def matches(self, required: str, inventory: SdkInventory) -> bool:
        """True if *required* is satisfied by the detected inventory."""
        wanted = required.strip().casefold()
        if not wanted:
            return False
        if any(name.casefold() == wanted for name in inventory.normalized):
            return True
        prefixes = (wanted, *self.prefixes_for(required))
        return any(sdk.strip().casefold().startswith(prefixes) for sdk in inventory.raw)

    def missing(self, required: list[str], inventory: SdkInventory) -> list[str]:
        return [sdk for sdk in required if not self.matches(sdk, inventory)]


def parse_sdk_from_showsdks_line(line: str) -> str | None:
    """Extract the SDK identifier from one ``xcodebuild -showsdks`` line."""
    tokens = line.split()
    for index, token in enumerate(tokens):
        if token == "-sdk":
            return tokens[index + 1] if index + 1 < len(tokens) else None
        if token.startswith("-sdk"):
            sdk = token[len("-sdk"):].strip()
            if sdk:
                return sdk
    return None


def parse_showsdks_output(
    stdout: str, table: SdkAliasTable, invocation: str | None = None
) -> SdkInventory:
    found = (parse_sdk_from_showsdks_line(line) for line in stdout.splitlines())
    raw = sorted({sdk for sdk in found if sdk})
    return SdkInventory(raw=raw, normalized=table.normalize(raw), invocation=invocation)
