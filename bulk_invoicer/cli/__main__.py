from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from bulk_invoicer.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from bulk_invoicer.excel.reader import FileReadError, TabularData, read_tabular_file
from bulk_invoicer.issuing.prior_emissions import PostgresPriorEmissions, PriorEmissionsError
from bulk_invoicer.logging.error_log import ErrorLogBuffer
from bulk_invoicer.logging.init import log_summary, setup_logging
from bulk_invoicer.models import CounterpartyProfile, ImportConfig, SynthesizedDocument
from bulk_invoicer.services.dedup import AntiDuplicateGuard, DuplicateEmissionError
from bulk_invoicer.services.orchestrator import ProcessingError, prepare_batch
from bulk_invoicer.services.schema_resolver import SchemaResolutionError, resolve_schema
from bulk_invoicer.services.summary import render_summary_line
from bulk_invoicer.services.synthesizer import synthesize_all

"""CLI entrypoint: preview a spreadsheet as billing documents.

    python -m bulk_invoicer.cli FILE --profile NAME [--rule-set NAME] [--config PATH]
                                [--inspect-data] [--check-duplicates]
                                [--counterparty REF] [--debug]

Runs the same pipeline as an import session up to the confirmation prompt and
never issues anything. Exit codes:

    0  proposals ready
    1  fatal (config, file, schema, unknown profile / rule set)
    2  batch rejected (validation errors or nothing billable)
    3  duplicates detected (--check-duplicates)
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_REJECTED = 2
EXIT_DUPLICATES = 3

INSPECT_SAMPLE_ROWS = 3


@contextmanager
def _db_connection(cfg: ImportConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Yield a psycopg2 connection for the prior-emissions table.

    Resolution order:
        1. DATABASE_URL / PGDSN (whole DSN)
        2. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. the `database` section of the config file
    `.env` is loaded with override=True before this runs, so its values win.
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if not dsn:
        host = os.getenv("PGHOST", db_cfg.host or "localhost")
        port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
        user = os.getenv("PGUSER", db_cfg.user or "postgres")
        password = os.getenv("PGPASSWORD", db_cfg.password or "")
        database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"

    conn = psycopg2.connect(dsn)
    try:
        yield conn
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Spreadsheet -> billing document preview")
    p.add_argument("file", help="Spreadsheet to import (.xlsx, .xls, .csv)")
    p.add_argument("--profile", required=True, help="Counterparty profile name (see config)")
    p.add_argument("--rule-set", dest="rule_set", default=None, help="Rule set for profiles that need a choice")
    p.add_argument("--config", default=None, help=f"Config file (default: {DEFAULT_CONFIG_PATH})")
    p.add_argument("--inspect-data", action="store_true", help="Print headers, resolved mapping & first rows then exit")
    p.add_argument("--check-duplicates", action="store_true", help="Look proposals up in the prior emissions table")
    p.add_argument("--counterparty", default=None, help="Counterparty reference at the issuer")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _inspect_data(table: TabularData, profile: CounterpartyProfile) -> int:
    print(f"FILE: {table.source} rows={len(table.records)}")
    print(f"  headers={table.headers}")
    try:
        mapping = resolve_schema(table.headers, profile.aliases, profile.required_fields)
    except SchemaResolutionError as e:
        print(f"  mapping_error: {e}")
    else:
        print(f"  mapping={dict(mapping.fields)}")
    for record in table.records[:INSPECT_SAMPLE_ROWS]:
        safe = {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in record.as_dict().items()}
        print(f"  row {record.row_number}: {safe}")
    return EXIT_SUCCESS


def _log_document(logger: Any, document: SynthesizedDocument) -> None:
    taxes, net_cents = document.tax_breakdown()
    tax_text = ", ".join(f"{t.kind} {t.amount:.2f}" for t in taxes)
    logger.info(
        f"document {document.group_key.label}: lines={len(document.line_items)} "
        f"subtotal={document.total_amount:.2f} [{tax_text}] net={document.net_total:.2f} "
        f"product_key={document.product_key or '-'}"
    )
    for item in document.line_items:
        logger.debug(f"  row {item.row_index}: {item.description}")


def _check_duplicates(cfg: ImportConfig, documents: Sequence[SynthesizedDocument], logger: Any) -> int:
    """Count documents already recorded as issued; 0 in unchecked mode."""
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.info("duplicate check disabled via DISABLE_DB_CONNECT=1 -> unchecked")
        return 0
    try:
        with _db_connection(cfg) as conn:
            guard = AntiDuplicateGuard(PostgresPriorEmissions(conn, cfg.database.table))
            duplicates = 0
            for document in documents:
                try:
                    guard.check(document)
                except DuplicateEmissionError as e:
                    logger.error(f"duplicate: {e}")
                    duplicates += 1
            return duplicates
    except (psycopg2.Error, PriorEmissionsError) as db_e:
        # Below WARN so a missing database does not look like a data problem
        logger.info(f"DB connection failed -> unchecked mode: {db_e}")
        return 0


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # An explicit [] must not fall back to sys.argv (pytest arguments)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        for h in logger.handlers:
            h.setLevel("DEBUG")
        logger.setLevel("DEBUG")
        logger.debug("debug mode enabled")

    config_path = Path(args.config or os.getenv("BULK_INVOICER_CONFIG") or DEFAULT_CONFIG_PATH)
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        profile = cfg.profile(args.profile)
    except KeyError as e:
        logger.error(f"config: {e.args[0]} (available: {', '.join(cfg.profiles)})")
        return EXIT_FATAL

    source = Path(args.file)
    try:
        table = read_tabular_file(source, all_sheets=profile.all_sheets)
    except FileReadError as e:
        logger.error(f"file: {e}")
        return EXIT_FATAL

    if args.inspect_data:
        return _inspect_data(table, profile)

    if profile.needs_rule_choice and args.rule_set is None:
        logger.error(f"profile '{profile.name}' needs --rule-set (one of: {', '.join(profile.rule_sets)})")
        return EXIT_FATAL

    logger.info(f"Processing {source.name} with profile {profile.name}")
    error_log = ErrorLogBuffer()
    try:
        preview = prepare_batch(
            table.headers,
            table.records,
            profile,
            rule_set_name=args.rule_set,
            shown_errors=cfg.shown_errors,
            error_log=error_log,
            source=source.name,
        )
    except SchemaResolutionError as e:
        logger.error(f"schema: {e}")
        _flush_error_log(error_log, logger)
        return EXIT_FATAL
    except ProcessingError as e:
        logger.error(f"processing: {e}")
        return EXIT_FATAL

    exit_code = EXIT_SUCCESS
    if not preview.report.valid:
        for line in preview.report.render().splitlines():
            logger.error(line)
        exit_code = EXIT_REJECTED
    elif not preview.billable_groups:
        logger.error(f"no billable groups: {preview.describe_groups()}, {len(preview.warnings)} rows excluded")
        exit_code = EXIT_REJECTED
    else:
        for proposal in preview.proposals():
            logger.info(f"proposal {proposal.render()}")
        documents = synthesize_all(preview.billable_groups, preview.mapping, profile, args.counterparty)
        for document in documents:
            _log_document(logger, document)
        if args.check_duplicates and _check_duplicates(cfg, documents, logger) > 0:
            exit_code = EXIT_DUPLICATES

    # log_summary adds the SUMMARY label itself
    log_summary(render_summary_line(preview).removeprefix("SUMMARY "))
    _flush_error_log(error_log, logger)
    return exit_code


def _flush_error_log(error_log: ErrorLogBuffer, logger: Any) -> None:
    path = error_log.flush()
    if path is not None:
        logger.info(f"error log written: {path}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
