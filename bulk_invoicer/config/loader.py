from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError as SchemaValidationError

from ..models.config_models import (
    ClassificationRule,
    CounterpartyProfile,
    DatabaseConfig,
    EmissionConfig,
    ImportConfig,
    RuleSet,
    RuleVariant,
    SessionConfig,
    TaxComponent,
)

"""Config loader for config/profiles.yml.

Responsibilities:
- Load the YAML document
- Validate structure against config_schema.json (jsonschema)
- Apply defaults (session TTL 600s, 2 transient retries, 5 shown errors, ...)
- Check cross-field rules the schema cannot express (alias coverage of
  required fields, a single trailing catch-all, no category claimed twice)
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/profiles.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the bundled JSON schema.

    Raises:
        ConfigError: schema file missing / unreadable, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except SchemaValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path)
        suffix = f" (at {location})" if location else ""
        raise ConfigError(f"config validation failed: {e.message}{suffix}") from e


def _taxes(raw: list[dict[str, Any]], withholding: bool) -> tuple[TaxComponent, ...]:
    return tuple(
        TaxComponent(
            kind=t["kind"],
            rate=Decimal(str(t["rate"])),  # 0.16 -> Decimal('0.16'), not the binary float
            basis=t.get("basis", "subtotal"),
            is_withholding=withholding,
        )
        for t in raw
    )


def _build_rule_set(profile_name: str, name: str, raw: dict[str, Any]) -> RuleSet:
    rules: list[ClassificationRule] = []
    claimed: dict[str, str] = {}
    raw_rules = raw["rules"]
    for idx, r in enumerate(raw_rules):
        catch_all = bool(r.get("catch_all", False))
        categories = frozenset(c.strip().upper() for c in r.get("categories", []))
        where = f"profile '{profile_name}' rule set '{name}' rule '{r['bucket']}'"
        if catch_all:
            if idx != len(raw_rules) - 1:
                raise ConfigError(f"{where}: catch-all rule must be the last rule")
            if categories:
                raise ConfigError(f"{where}: catch-all rule cannot list categories")
            variant = RuleVariant(r.get("variant", "none"))
            if variant is not RuleVariant.NONE:
                raise ConfigError(f"{where}: catch-all rule has no adjustment variant")
        else:
            if not categories:
                raise ConfigError(f"{where}: rule needs categories or catch_all")
            variant = RuleVariant(r.get("variant", "split"))
        for c in categories:
            if c in claimed:
                raise ConfigError(f"{where}: category '{c}' already claimed by rule '{claimed[c]}'")
            claimed[c] = r["bucket"]
        rules.append(
            ClassificationRule(
                bucket=r["bucket"].strip().upper(),
                categories=categories,
                variant=variant,
                catch_all=catch_all,
                product_key=r.get("product_key"),
            )
        )
    buckets = [rule.bucket for rule in rules]
    if len(set(buckets)) != len(buckets):
        raise ConfigError(f"profile '{profile_name}' rule set '{name}': duplicate bucket names")
    return RuleSet(name=name, rules=tuple(rules), label=raw.get("label"))


def _build_profile(name: str, raw: dict[str, Any]) -> CounterpartyProfile:
    aliases = {field: tuple(names) for field, names in raw["aliases"].items()}
    required = tuple(raw["required_fields"])
    identity = tuple(raw.get("identity_fields") or [f for f in required if f not in ("amount", "category")])
    if "amount" not in required:
        raise ConfigError(f"profile '{name}': 'amount' must be a required field")
    for f in (*required, *identity):
        if f not in aliases:
            raise ConfigError(f"profile '{name}': field '{f}' has no aliases")
    if raw.get("all_sheets") and "sheet" not in aliases:
        raise ConfigError(f"profile '{name}': all_sheets needs a 'sheet' alias list")
    fixed_category = raw.get("fixed_category")
    if "category" not in aliases and not fixed_category:
        raise ConfigError(f"profile '{name}': needs a 'category' alias list or fixed_category")
    rule_sets = {rs_name: _build_rule_set(name, rs_name, rs) for rs_name, rs in raw["rule_sets"].items()}
    taxes = raw["taxes"]
    return CounterpartyProfile(
        name=name,
        display_name=raw.get("display_name", name.upper()),
        aliases=aliases,
        required_fields=required,
        identity_fields=identity,
        rule_sets=rule_sets,
        base_taxes=_taxes(taxes["base"], withholding=False),
        withholding_taxes=_taxes(taxes.get("withholding", []), withholding=True),
        fixed_category=fixed_category.strip().upper() if fixed_category else None,
        description_prefix=raw.get("description_prefix", ""),
        counterparty_ref=raw.get("counterparty_ref"),
        all_sheets=bool(raw.get("all_sheets", False)),
        adjustment_sign=raw.get("adjustment_sign", "negative"),
    )


def build_config(data: dict[str, Any]) -> ImportConfig:
    """Validate and convert an already parsed config mapping."""
    _validate_config_schema(data)

    session_raw = data.get("session", {})
    emission_raw = data.get("emission", {})
    db_raw = data.get("database", {})
    profiles = {name: _build_profile(name, raw) for name, raw in data["profiles"].items()}
    return ImportConfig(
        profiles=profiles,
        session=SessionConfig(
            ttl_seconds=float(session_raw.get("ttl_seconds", 600)),
            sweep_interval_seconds=float(session_raw.get("sweep_interval_seconds", 60)),
        ),
        emission=EmissionConfig(
            max_transient_retries=int(emission_raw.get("max_transient_retries", 2)),
            retry_backoff_seconds=float(emission_raw.get("retry_backoff_seconds", 0.5)),
        ),
        shown_errors=int(data.get("validation", {}).get("shown_errors", 5)),
        database=DatabaseConfig(
            host=db_raw.get("host"),
            port=db_raw.get("port"),
            user=db_raw.get("user"),
            password=db_raw.get("password"),
            database=db_raw.get("database"),
            dsn=db_raw.get("dsn"),
            table=db_raw.get("table", "prior_emissions"),
        ),
    )


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")
    return build_config(data)
