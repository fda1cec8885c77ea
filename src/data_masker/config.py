"""YAML/dict config loader for data-masker.

Supports loading from a YAML file or a plain dict (for embedding in a
larger analyzer config).  Rules are compiled and validated here, so the
masker never sees a malformed rule.

Example YAML:

    masking:
      enabled: true
      rules:
        - name: currency_jpy
          category: financial
          pattern: '¥[\\d,]+(?:\\.\\d{2})?'
          replacement_prefix: '[AMOUNT_'
        - name: email
          category: pii
          pattern: '[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\\.[a-zA-Z]{2,}'
          replacement: '[EMAIL_MASKED]'
          reversible: false
      dictionaries:
        clients:
          source: ./config/clients.txt     # or an inline list of terms
          replacement_prefix: '[CLIENT_'
          category: business
      categories:
        pii: {allow_unmask: false}
      token_bytes: 4
      max_attempts: 8
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import MaskingConfigError
from .masker import DataMasker
from .middleware import MaskingMiddleware
from .patterns import DEFAULT_REPLACEMENT, DEFAULT_TOKEN_PREFIX, Dictionary, Rule, default_rules
from .tokens import MIN_TOKEN_BYTES, TokenGenerator
from .vault import DEFAULT_MAX_ATTEMPTS, SessionVault

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CategoryPolicy:
    allow_unmask: bool = True


DEFAULT_CATEGORIES: dict[str, CategoryPolicy] = {
    "financial": CategoryPolicy(allow_unmask=True),
    "pii": CategoryPolicy(allow_unmask=False),
    "identifier": CategoryPolicy(allow_unmask=True),
    "business": CategoryPolicy(allow_unmask=True),
}


@dataclass
class MaskingConfig:
    """Normalized, validated masking configuration."""
    enabled: bool = True
    rules: list[Rule] = field(default_factory=default_rules)
    dictionaries: list[Dictionary] = field(default_factory=list)
    categories: dict[str, CategoryPolicy] = field(default_factory=lambda: dict(DEFAULT_CATEGORIES))
    token_bytes: int = MIN_TOKEN_BYTES
    max_attempts: int = DEFAULT_MAX_ATTEMPTS


class _NoopMiddleware:
    """Pass-through middleware when masking is disabled."""
    session_id = ""
    def pre_send(self, messages: list[dict]) -> list[dict]:
        return messages
    def post_receive(self, text: str) -> str:
        return text
    def mask_text(self, text: str) -> str:
        return text
    def unmask_text(self, text: str) -> str:
        return text
    def mask_rows(self, rows: list[Any]) -> list[Any]:
        return rows
    def close(self) -> None:
        pass
    @property
    def stats(self) -> dict:
        return {"total": 0, "by_category": {}, "by_source": {}}


def load_config(data: dict[str, Any], *, base_dir: str | Path | None = None) -> MaskingConfig:
    """Normalize and validate a config dict (from YAML or inline).

    Relative dictionary source paths resolve against ``base_dir`` (the
    current directory when omitted).
    """
    data = data or {}
    # Support nested under "masking" key or flat
    if isinstance(data, dict) and "masking" in data:
        data = data["masking"] or {}
    if not isinstance(data, dict):
        raise MaskingConfigError(f"masking config must be a mapping, got {type(data).__name__}")

    categories = dict(DEFAULT_CATEGORIES)
    for name, raw in (data.get("categories") or {}).items():
        raw = raw or {}
        categories[name] = CategoryPolicy(allow_unmask=bool(raw.get("allow_unmask", True)))

    if data.get("rules") is None:
        rules = default_rules()
    else:
        rules = [_parse_rule(raw) for raw in data["rules"]]

    base = Path(base_dir) if base_dir is not None else Path.cwd()
    dictionaries = [
        _parse_dictionary(name, raw or {}, base)
        for name, raw in (data.get("dictionaries") or {}).items()
    ]

    token_bytes = int(data.get("token_bytes", MIN_TOKEN_BYTES))
    if token_bytes < MIN_TOKEN_BYTES:
        raise MaskingConfigError(f"token_bytes must be at least {MIN_TOKEN_BYTES}, got {token_bytes}")
    max_attempts = int(data.get("max_attempts", DEFAULT_MAX_ATTEMPTS))
    if max_attempts < 1:
        raise MaskingConfigError(f"max_attempts must be at least 1, got {max_attempts}")

    cfg = MaskingConfig(
        enabled=bool(data.get("enabled", True)),
        rules=rules,
        dictionaries=dictionaries,
        categories=categories,
        token_bytes=token_bytes,
        max_attempts=max_attempts,
    )
    _check_policies(cfg)
    logger.info(
        "Masking config loaded rules=%d dictionaries=%d",
        len(cfg.rules), len(cfg.dictionaries),
    )
    return cfg


def load_from_yaml(path: str | Path) -> MaskingConfig:
    """Load config from a YAML file.  Dictionary paths resolve next to it."""
    import yaml
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise MaskingConfigError(f"cannot read masking config {path}: {e}") from e
    return load_config(raw or {}, base_dir=path.parent)


def create_masker(config: MaskingConfig | dict[str, Any] | None = None) -> DataMasker:
    """Create a masker with its own vault from a config (defaults if None)."""
    if config is None:
        cfg = MaskingConfig()
    elif isinstance(config, MaskingConfig):
        cfg = config
    else:
        cfg = load_config(config)
    vault = SessionVault(TokenGenerator(cfg.token_bytes), max_attempts=cfg.max_attempts)
    return DataMasker(cfg.rules, cfg.dictionaries, vault=vault)


def create_middleware(
    config: MaskingConfig | dict[str, Any] | None = None,
    session_id: str = "default",
) -> MaskingMiddleware | _NoopMiddleware:
    """Create a fully configured middleware from a config."""
    if config is None:
        cfg = MaskingConfig()
    elif isinstance(config, dict):
        cfg = load_config(config)
    else:
        cfg = config

    if not cfg.enabled:
        # Return a pass-through middleware (no masking)
        return _NoopMiddleware()

    return MaskingMiddleware(masker=create_masker(cfg), session_id=session_id)


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------

def _parse_rule(raw: dict[str, Any]) -> Rule:
    if not isinstance(raw, dict):
        raise MaskingConfigError(f"rule must be a mapping: {raw!r}")
    name = raw.get("name")
    pattern = raw.get("pattern")
    if not name or not pattern:
        raise MaskingConfigError(f"rule needs a name and a pattern: {raw!r}")

    reversible = bool(raw.get("reversible", True))
    prefix = raw.get("replacement_prefix")
    replacement = raw.get("replacement")
    if reversible:
        prefix = prefix or DEFAULT_TOKEN_PREFIX
        _check_prefix(prefix, f"rule {name!r}")
        replacement = None
    else:
        replacement = replacement or DEFAULT_REPLACEMENT
        prefix = None

    try:
        return Rule.compile(
            name,
            raw.get("category", "uncategorized"),
            pattern,
            ignore_case=bool(raw.get("ignore_case", True)),
            reversible=reversible,
            replacement=replacement,
            token_prefix=prefix,
            enabled=bool(raw.get("enabled", True)),
        )
    except re.error as e:
        raise MaskingConfigError(f"rule {name!r} has an invalid pattern: {e}") from e


def _parse_dictionary(name: str, raw: dict[str, Any], base: Path) -> Dictionary:
    if not isinstance(raw, dict):
        raise MaskingConfigError(f"dictionary {name!r} must be a mapping")
    source = raw.get("source", raw.get("terms"))
    if isinstance(source, (list, tuple)):
        terms = [str(t) for t in source]
    elif isinstance(source, (str, Path)):
        path = Path(source).expanduser()
        if not path.is_absolute():
            path = base / path
        if not path.is_file():
            raise MaskingConfigError(f"dictionary {name!r} source not found: {path}")
        terms = path.read_text(encoding="utf-8").splitlines()
    else:
        raise MaskingConfigError(f"dictionary {name!r} needs a source list or file path")

    prefix = raw.get("replacement_prefix") or f"[{name.upper()}_"
    _check_prefix(prefix, f"dictionary {name!r}")
    return Dictionary.from_terms(name, terms, raw.get("category", "business"), prefix)


def _check_prefix(prefix: str, owner: str) -> None:
    if not prefix.startswith("["):
        raise MaskingConfigError(f"{owner}: token prefix must start with '[', got {prefix!r}")
    if "[" in prefix[1:] or "]" in prefix:
        raise MaskingConfigError(f"{owner}: token prefix may hold no other brackets, got {prefix!r}")


def _check_policies(cfg: MaskingConfig) -> None:
    """Reversible matching is only allowed where the category permits unmasking."""
    for rule in cfg.rules:
        policy = cfg.categories.get(rule.category)
        if rule.reversible and policy is not None and not policy.allow_unmask:
            raise MaskingConfigError(
                f"rule {rule.name!r} is reversible but category {rule.category!r} forbids unmasking"
            )
    for dictionary in cfg.dictionaries:
        policy = cfg.categories.get(dictionary.category)
        if policy is not None and not policy.allow_unmask:
            raise MaskingConfigError(
                f"dictionary {dictionary.name!r} is reversible but category "
                f"{dictionary.category!r} forbids unmasking"
            )
