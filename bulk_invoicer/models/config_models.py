from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

"""Config dataclasses for the bulk invoicing engine.

These are the typed, immutable forms of config/profiles.yml produced by
bulk_invoicer.config.loader. A CounterpartyProfile bundles everything that varies
per business partner: alias table, rule sets and the static tax table.
"""


class RuleVariant(Enum):
    """How a classification rule derives the adjustment variant of its GroupKey.

    - SPLIT: adjustment of the profile's withholding sign (negative by default)
      -> with-adjustment, otherwise without-adjustment
    - WITH / WITHOUT: forced variant (rule sets picked by the user)
    - NONE: no variant (catch-all buckets)
    """
    SPLIT = "split"
    WITH = "with"
    WITHOUT = "without"
    NONE = "none"


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection for the prior-emissions lookup.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None
    table: str = "prior_emissions"


@dataclass(frozen=True)
class SessionConfig:
    ttl_seconds: float = 600.0  # idle time before a session is evicted
    sweep_interval_seconds: float = 60.0


@dataclass(frozen=True)
class EmissionConfig:
    max_transient_retries: int = 2  # extra attempts after the first transient failure
    retry_backoff_seconds: float = 0.5


@dataclass(frozen=True)
class TaxComponent:
    """One tax line applied to a group subtotal."""
    kind: str  # e.g. IVA
    rate: Decimal
    basis: str = "subtotal"
    is_withholding: bool = False


@dataclass(frozen=True)
class ClassificationRule:
    """One entry of a counterparty rule table.

    A rule matches when the normalized category is in `categories`, or always
    (for any non-empty category) when `catch_all` is set.
    """
    bucket: str
    categories: frozenset[str] = frozenset()
    variant: RuleVariant = RuleVariant.SPLIT
    catch_all: bool = False
    product_key: str | None = None  # SAT product/service key for the document lines

    def matches(self, category: str) -> bool:
        return self.catch_all or category in self.categories


@dataclass(frozen=True)
class RuleSet:
    """Ordered, mutually exclusive rules; only the catch-all depends on order."""
    name: str
    rules: tuple[ClassificationRule, ...]
    label: str | None = None  # human text for the rule-choice prompt

    def rule_for_bucket(self, bucket: str) -> ClassificationRule | None:
        for rule in self.rules:
            if rule.bucket == bucket:
                return rule
        return None


@dataclass(frozen=True)
class CounterpartyProfile:
    """Rule table + alias table combination for one business partner."""
    name: str
    display_name: str
    aliases: dict[str, tuple[str, ...]]  # canonical field -> candidate headers (priority order)
    required_fields: tuple[str, ...]
    identity_fields: tuple[str, ...]  # fields identifying a row for dedup / line descriptions
    rule_sets: dict[str, RuleSet]
    base_taxes: tuple[TaxComponent, ...]
    withholding_taxes: tuple[TaxComponent, ...] = ()
    fixed_category: str | None = None  # profiles whose files carry no category column
    description_prefix: str = ""
    counterparty_ref: str | None = None  # default customer reference at the issuer
    all_sheets: bool = False  # every worksheet is read; each sheet is billed separately
    adjustment_sign: str = "negative"  # sign of an adjustment cell that means withholding

    @property
    def needs_rule_choice(self) -> bool:
        """True when the same file shape can mean several business things."""
        return len(self.rule_sets) > 1

    def rule_set(self, name: str | None = None) -> RuleSet:
        if name is None:
            if self.needs_rule_choice:
                raise KeyError(f"profile '{self.name}' requires an explicit rule set")
            return next(iter(self.rule_sets.values()))
        try:
            return self.rule_sets[name]
        except KeyError:
            raise KeyError(f"profile '{self.name}' has no rule set '{name}'") from None


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object."""
    profiles: dict[str, CounterpartyProfile]
    session: SessionConfig = field(default_factory=SessionConfig)
    emission: EmissionConfig = field(default_factory=EmissionConfig)
    shown_errors: int = 5
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    def profile(self, name: str) -> CounterpartyProfile:
        try:
            return self.profiles[name]
        except KeyError:
            raise KeyError(f"unknown profile '{name}'") from None
