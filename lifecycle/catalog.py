"""Versioned catalog mapping kinds of work to tier and group placement."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, Field, field_validator, model_validator

from lifecycle.constants import GroupMode, Tier
from lifecycle.exceptions import CatalogError, ConfigurationError
from lifecycle.logging import get_logger

logger = get_logger("catalog")

# Review scope wildcard: the domain reviews every kind
ALL_KINDS = "*"


class GroupSpec(BaseModel):
    """Catalog definition of one group."""

    index: int = Field(ge=1)
    name: str
    mode: GroupMode = GroupMode.PARALLEL
    verification: str = "compile"

    @field_validator("mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: Any) -> Any:
        return GroupMode(value.lower()) if isinstance(value, str) else value


class CatalogEntry(BaseModel):
    """Placement of one kind of work."""

    kind: str
    tier: Tier
    group: int = Field(ge=1)
    typical_size: int = Field(default=1, ge=1)
    ambiguous: bool = False
    upgrade_size: int | None = Field(default=None, ge=1)
    critical: bool = True

    @field_validator("tier", mode="before")
    @classmethod
    def _parse_tier(cls, value: Any) -> Tier:
        tier = Tier.parse(value)
        if tier is Tier.MANUAL:
            raise ValueError("catalog entries cannot start at the manual tier")
        return tier

    @property
    def upgrade_threshold(self) -> int:
        """Size above which an ambiguous Standard kind is treated as Advanced."""
        return self.upgrade_size if self.upgrade_size is not None else self.typical_size * 2


class Catalog(BaseModel):
    """Kind → (tier, group, typical size) lookup, plus review scopes."""

    version: str
    groups: list[GroupSpec]
    kinds: list[CatalogEntry]
    review_scope: dict[str, list[str]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_consistency(self) -> Catalog:
        indexes = [g.index for g in self.groups]
        if len(set(indexes)) != len(indexes):
            raise ValueError("group indexes must be unique")
        names = [k.kind for k in self.kinds]
        if len(set(names)) != len(names):
            raise ValueError("kinds must be unique")
        for entry in self.kinds:
            if entry.group not in indexes:
                raise ValueError(f"kind '{entry.kind}' references undefined group {entry.group}")
        for domain, kinds in self.review_scope.items():
            for kind in kinds:
                if kind != ALL_KINDS and kind not in names:
                    raise ValueError(f"review domain '{domain}' references unknown kind '{kind}'")
        return self

    def lookup(self, kind: str) -> CatalogEntry:
        """Get the entry for a kind.

        Raises:
            CatalogError: If the catalog has no entry for the kind
        """
        for entry in self.kinds:
            if entry.kind == kind:
                return entry
        raise CatalogError(
            f"Catalog {self.version} has no entry for kind '{kind}'",
            kind=kind,
            details={"known_kinds": sorted(k.kind for k in self.kinds)},
        )

    def group_spec(self, index: int) -> GroupSpec:
        for group in self.groups:
            if group.index == index:
                return group
        raise KeyError(index)

    def kinds_for_domain(self, domain: str) -> set[str]:
        """Kinds a review domain is responsible for."""
        scope = self.review_scope.get(domain, [])
        if ALL_KINDS in scope:
            return {k.kind for k in self.kinds}
        return set(scope)

    @classmethod
    def load(cls, path: str | Path | None = None) -> Catalog:
        """Load a catalog from YAML, or return the built-in default.

        Raises:
            ConfigurationError: If the file is not a valid catalog
        """
        if path is None:
            return cls.default()

        catalog_path = Path(path)
        if not catalog_path.exists():
            raise ConfigurationError(f"Catalog file not found: {catalog_path}")

        try:
            with open(catalog_path) as f:
                data = yaml.safe_load(f) or {}
            catalog = cls(**data)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigurationError(f"Invalid catalog {catalog_path}", {"error": str(e)}) from e

        logger.info(f"Loaded catalog {catalog.version} from {catalog_path}")
        return catalog

    @classmethod
    def default(cls) -> Catalog:
        return cls(**DEFAULT_CATALOG)


DEFAULT_CATALOG: dict[str, Any] = {
    "version": "1.0",
    "groups": [
        {"index": 1, "name": "foundation", "mode": "parallel", "verification": "compile"},
        {"index": 2, "name": "contracts", "mode": "parallel", "verification": "compile"},
        {"index": 3, "name": "adapters", "mode": "parallel", "verification": "compile"},
        {"index": 4, "name": "orchestration", "mode": "sequential", "verification": "compile"},
        {"index": 5, "name": "inbound", "mode": "parallel", "verification": "compile"},
        {"index": 6, "name": "observability", "mode": "parallel", "verification": "compile"},
        {"index": 7, "name": "tests", "mode": "parallel", "verification": "test"},
    ],
    "kinds": [
        {"kind": "foundation-model", "tier": "basic", "group": 1, "typical_size": 2},
        {"kind": "contract", "tier": "basic", "group": 2, "typical_size": 1},
        {"kind": "adapter", "tier": "standard", "group": 3, "typical_size": 2, "ambiguous": True},
        {"kind": "orchestration-logic", "tier": "standard", "group": 4, "typical_size": 2, "ambiguous": True},
        {"kind": "inbound-adapter", "tier": "standard", "group": 5, "typical_size": 2},
        {"kind": "observability", "tier": "basic", "group": 6, "typical_size": 1, "critical": False},
        {"kind": "test", "tier": "standard", "group": 7, "typical_size": 3},
    ],
    "review_scope": {
        "security": ["contract", "adapter", "inbound-adapter"],
        "performance": ["adapter", "orchestration-logic"],
        "correctness": [ALL_KINDS],
        "operability": ["observability", "inbound-adapter"],
    },
}
