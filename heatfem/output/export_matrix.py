"""全体行列の Matrix Market エクスポート（外部ソルバーとの比較用）."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import scipy.io
import scipy.sparse as sp

from heatfem.errors import ExportError

logger = logging.getLogger(__name__)


def export_matrix_market(
    output_dir: str | Path,
    H: sp.spmatrix,
    C: sp.spmatrix | None,
    P: np.ndarray,
) -> list[str]:
    """H.mtx, C.mtx（C があれば）, P.txt を出力する.

    P.txt は 1 行 1 値の指数表記（有効桁 16）。

    Returns:
        生成されたファイルパスのリスト

    Raises:
        ExportError: 書き込み失敗
    """
    out = Path(output_dir)
    logger.info("Exporting matrices to Matrix Market format in: %s", out)
    files: list[str] = []
    try:
        out.mkdir(parents=True, exist_ok=True)

        for name, M in (("H", H), ("C", C)):
            if M is None:
                continue
            path = out / f"{name}.mtx"
            scipy.io.mmwrite(str(path), sp.coo_matrix(M))
            logger.info("  Saved %s matrix: %s (%d x %d, %d nnz)", name, path, *M.shape, M.nnz)
            files.append(str(path))

        p_path = out / "P.txt"
        np.savetxt(p_path, np.asarray(P, dtype=np.float64).ravel(), fmt="%.15e")
        logger.info("  Saved P vector: %s (%d elements)", p_path, np.asarray(P).size)
        files.append(str(p_path))
    except OSError as exc:
        raise ExportError(f"Matrix Market の書き込みに失敗: {out}: {exc}") from exc

    return files


__all__ = ["export_matrix_market"]
