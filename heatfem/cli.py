"""コマンドラインインタフェース.

使用例:
    python -m heatfem problem.json --solver lu --metrics metrics.json
    heatfem problem.json --threads 4 --cache --build-matrix-only --export-mtx mtx/
"""

from __future__ import annotations

import argparse
from collections.abc import Sequence
from pathlib import Path

from heatfem.app import Application, ApplicationOptions, ExitCode
from heatfem.cache import DEFAULT_CACHE_ROOT
from heatfem.linear import LINEAR_SOLVERS, parse_solver_type
from heatfem.logging_config import LOG_LEVELS, parse_log_level


def _positive_int(text: str) -> int:
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1: {text}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="heatfem",
        description="2D heat transfer FEM solver (Q4 elements, steady and implicit-Euler transient)",
    )
    parser.add_argument("config", type=Path, help="Problem configuration file (JSON)")
    parser.add_argument(
        "--solver",
        "-s",
        choices=[info.name for info in LINEAR_SOLVERS.values()],
        default="cholesky",
        help="Linear solver (default: cholesky)",
    )
    parser.add_argument(
        "--threads",
        "-j",
        type=_positive_int,
        default=None,
        help="Number of assembly worker threads (default: all cores)",
    )
    parser.add_argument(
        "--log-level",
        choices=list(LOG_LEVELS),
        default="info",
        help="Logging level (default: info)",
    )
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")
    parser.add_argument(
        "--cache",
        action="store_true",
        help="Load/save assembled matrices from the system cache",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=Path(DEFAULT_CACHE_ROOT),
        help=f"Cache root directory (default: {DEFAULT_CACHE_ROOT})",
    )
    parser.add_argument(
        "--export-mtx",
        type=Path,
        default=None,
        metavar="DIR",
        help="Export H, C (Matrix Market) and P to DIR",
    )
    parser.add_argument(
        "--build-matrix-only",
        action="store_true",
        help="Stop after assembly (no solve)",
    )
    parser.add_argument(
        "--metrics",
        type=Path,
        default=None,
        metavar="FILE",
        help="Export solver/assembly metrics (.csv or .json)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("output"),
        help="VTK output directory (default: output)",
    )
    parser.add_argument("--no-vtk", action="store_true", help="Do not write VTK output")
    parser.add_argument(
        "--no-reuse-factorization",
        action="store_true",
        help="Refactorize the system matrix at every time step",
    )
    return parser


def parse_options(argv: Sequence[str] | None = None) -> ApplicationOptions:
    """コマンドライン引数を ApplicationOptions に変換する.

    Raises:
        SystemExit: 引数エラー、または --help
    """
    args = build_parser().parse_args(argv)
    return ApplicationOptions(
        config_path=args.config,
        log_level=parse_log_level(args.log_level),
        log_file=args.log_file,
        n_threads=args.threads,
        linear_solver=parse_solver_type(args.solver),
        use_cache=args.cache,
        cache_root=args.cache_dir,
        export_mtx_dir=args.export_mtx,
        build_matrix_only=args.build_matrix_only,
        metrics_path=args.metrics,
        output_dir=None if args.no_vtk else args.output_dir,
        reuse_factorization=not args.no_reuse_factorization,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """エントリポイント. 終了コードを返す."""
    try:
        options = parse_options(argv)
    except SystemExit as exc:
        return int(ExitCode.SUCCESS if exc.code in (0, None) else ExitCode.CLI_ERROR)
    return int(Application(options).run())


__all__ = ["build_parser", "parse_options", "main"]
