# Shared pytest fixtures
from __future__ import annotations

import tempfile
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

import pytest
import yaml

from bulk_invoicer.config.loader import build_config
from bulk_invoicer.issuing.issuer import DocumentIssuer
from bulk_invoicer.issuing.prior_emissions import InMemoryPriorEmissions
from bulk_invoicer.logging.init import reset_logging
from bulk_invoicer.models import CounterpartyProfile, ImportConfig, IssuedDocument, RawRecord, SynthesizedDocument
from bulk_invoicer.services.dedup import AntiDuplicateGuard

REPO_ROOT = Path(__file__).resolve().parents[1]
BUNDLED_CONFIG = REPO_ROOT / "config" / "profiles.yml"


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def sample_config_yaml() -> str:
    return """session:
  ttl_seconds: 600
  sweep_interval_seconds: 60
emission:
  max_transient_retries: 2
  retry_backoff_seconds: 0
validation:
  shown_errors: 5
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
profiles:
  chubb:
    display_name: CHUBB
    aliases:
      case_number: ["No. Caso", "Caso"]
      category: ["Servicio", "Tipo de Servicio"]
      amount: ["Subtotal", "Monto", "Importe"]
      adjustment: ["Retención", "Retencion"]
    required_fields: [case_number, category, amount]
    identity_fields: [case_number]
    taxes:
      base:
        - {kind: IVA, rate: 0.16}
      withholding:
        - {kind: IVA, rate: 0.04}
    rule_sets:
      default:
        rules:
          - {bucket: GRUA, categories: [GRUA], variant: split, product_key: "78101803"}
          - {bucket: OTROS, catch_all: true, product_key: "90121800"}
  axa:
    display_name: AXA
    fixed_category: GRUA
    aliases:
      invoice: ["FACTURA"]
      order: ["No. ORDEN", "ORDEN"]
      amount: ["IMPORTE", "Importe"]
    required_fields: [invoice, order, amount]
    identity_fields: [invoice, order]
    taxes:
      base:
        - {kind: IVA, rate: 0.16}
      withholding:
        - {kind: IVA, rate: 0.04}
    rule_sets:
      services_rendered:
        rules:
          - {bucket: GRUA, categories: [GRUA], variant: with, product_key: "78101803"}
      cancelled_services:
        rules:
          - {bucket: GRUA, categories: [GRUA], variant: without, product_key: "78101803"}
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "profiles.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def import_config(sample_config_yaml: str) -> ImportConfig:
    return build_config(yaml.safe_load(sample_config_yaml))


@pytest.fixture()
def chubb_profile(import_config: ImportConfig) -> CounterpartyProfile:
    return import_config.profile("chubb")


@pytest.fixture()
def axa_profile(import_config: ImportConfig) -> CounterpartyProfile:
    return import_config.profile("axa")


def make_records(rows: Iterable[Mapping[str, Any]], first_row: int = 2) -> list[RawRecord]:
    """Rows as the reader would produce them (sheet row numbers start at 2)."""
    return [RawRecord.from_mapping(i, row) for i, row in enumerate(rows, start=first_row)]


@pytest.fixture()
def records_factory() -> Callable[..., list[RawRecord]]:
    return make_records


CHUBB_HEADERS = ["No. Caso", "Servicio", "Subtotal", "Retención"]


def chubb_row(case: str, service: str | None, amount: Any, retention: Any = None) -> dict[str, Any]:
    return {"No. Caso": case, "Servicio": service, "Subtotal": amount, "Retención": retention}


class FakeIssuer(DocumentIssuer):
    """Numbers documents sequentially; scripted failures per group label.

    failures maps a group label to the exceptions raised on successive calls
    for that group; once the list is exhausted calls succeed.
    """

    def __init__(self, failures: Mapping[str, list[Exception]] | None = None) -> None:
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.calls: list[str] = []
        self.issued: list[IssuedDocument] = []
        self.on_issue: Callable[[SynthesizedDocument], None] | None = None

    def issue(self, document: SynthesizedDocument, counterparty_ref: str | None) -> IssuedDocument:
        label = document.group_key.label
        self.calls.append(label)
        if self.on_issue is not None:
            self.on_issue(document)
        pending = self.failures.get(label)
        if pending:
            raise pending.pop(0)
        number = f"F-{len(self.issued) + 1:04d}"
        issued = IssuedDocument(id=f"doc-{len(self.issued) + 1}", number=number, total=document.total_amount)
        self.issued.append(issued)
        return issued


@pytest.fixture()
def fake_issuer() -> FakeIssuer:
    return FakeIssuer()


@pytest.fixture()
def prior_emissions() -> InMemoryPriorEmissions:
    return InMemoryPriorEmissions()


@pytest.fixture()
def guard(prior_emissions: InMemoryPriorEmissions) -> AntiDuplicateGuard:
    return AntiDuplicateGuard(prior_emissions)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()
