from __future__ import annotations

from pathlib import Path

import pandas as pd

from bulk_invoicer.cli.__main__ import EXIT_DUPLICATES, EXIT_FATAL, EXIT_REJECTED, EXIT_SUCCESS, main as cli_main

"""Exit code contract: 0 ok, 1 fatal, 2 rejected batch, 3 duplicates found."""


def _sheet(path: Path, rows: list[list[object]]) -> str:
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        pd.DataFrame(rows).to_excel(writer, header=False, index=False)
    return str(path)


def test_exit_code_values():
    assert (EXIT_SUCCESS, EXIT_FATAL, EXIT_REJECTED, EXIT_DUPLICATES) == (0, 1, 2, 3)


def test_exit_code_fatal_startup(temp_workdir: Path, capsys):
    # no config/profiles.yml -> exit 1
    code = cli_main(["data/none.xlsx", "--profile", "chubb"])
    assert code == EXIT_FATAL
    assert "ERROR config:" in capsys.readouterr().out


def test_exit_code_success(temp_workdir: Path, write_config, capsys):
    path = _sheet(temp_workdir / "data" / "ok.xlsx", [["No. Caso", "Servicio", "Subtotal"], ["C1", "GRUA", 10]])
    assert cli_main([path, "--profile", "chubb"]) == EXIT_SUCCESS
    assert "SUMMARY rows=1 valid=true" in capsys.readouterr().out


def test_exit_code_rejected(temp_workdir: Path, write_config, capsys):
    path = _sheet(temp_workdir / "data" / "bad.xlsx", [["No. Caso", "Servicio", "Subtotal"], ["C1", "GRUA", 0]])
    assert cli_main([path, "--profile", "chubb"]) == EXIT_REJECTED
    assert "SUMMARY rows=1 valid=false errors=1" in capsys.readouterr().out
