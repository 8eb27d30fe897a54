"""全体行列アセンブリ（並列要素パス + 逐次境界パス）.

H T + C dT/dt = P の H（熱伝導 + 境界寄与）・C（熱容量）・P（荷重）を構築する。
COO トリプレットで要素寄与を蓄積し、最後に CSR 行列へ変換して重複を加算する。

構造:
  1. 要素パス: ThreadPoolExecutor の各ワーカーが連続した要素範囲を担当し、
     ワーカー専用のトリプレットバッファと P に書き込む（ロック不要）
  2. マージ: ワーカーバッファを共有の H/C トリプレット・P に追加
     （H, C, P はそれぞれ独立したロックで保護）
  3. 境界パス: 境界条件の物理グループの線要素を逐次処理（H と P のみ）
  4. COO → CSR 変換（重複エントリは加算）

いずれかの要素で失敗した場合は中止フラグを立て、他のワーカーは
次の要素に進む前に打ち切る。最初のエラーを原因として AssemblyError を送出する。
"""

from __future__ import annotations

import itertools
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import numpy as np
import scipy.sparse as sp

from heatfem.core.results import GlobalMatrices, GlobalMatrixBuildResult
from heatfem.core.stats import AssemblyStats
from heatfem.element_builder import ElementMatrixBuilder
from heatfem.errors import AssemblyError, HeatFEMError
from heatfem.mesh.model import Mesh

logger = logging.getLogger(__name__)

# Q4 要素 1 個あたりのトリプレット数（4×4）
TRIPLETS_PER_QUAD = 16
TRIPLETS_PER_LINE = 4

# トリプレット 1 個あたりの推定バイト数（row, col: int64 / value: float64）
_TRIPLET_BYTES = 8 + 8 + 8


# ========== COO ベクトル化ヘルパー ==========


def _vectorized_coo_indices(conn: np.ndarray, m: int) -> tuple[np.ndarray, np.ndarray]:
    """要素群の COO row/col インデックスを行優先で一括計算.

    Args:
        conn: (n_elem, m) 内部インデックスの接続配列
        m: 要素あたりの節点数

    Returns:
        (rows, cols): それぞれ (n_elem * m * m,) の int64 配列
    """
    conn = conn.reshape(-1, m).astype(np.int64, copy=False)
    rows = np.repeat(conn, m, axis=1).ravel()
    cols = np.tile(conn, (1, m)).ravel()
    return rows, cols


def resolve_n_jobs(n_jobs: int) -> int:
    """n_jobs の解決（-1 = 全CPUコア、1 未満は 1）."""
    if n_jobs == -1:
        n_jobs = os.cpu_count() or 1
    return max(1, int(n_jobs))


def _split_chunks(n_items: int, n_chunks: int) -> list[tuple[int, int]]:
    """[0, n_items) を連続した n_chunks 個の範囲に分割する."""
    base, extra = divmod(n_items, n_chunks)
    chunks = []
    start = 0
    for i in range(n_chunks):
        end = start + base + (1 if i < extra else 0)
        chunks.append((start, end))
        start = end
    return chunks


# ========== ワーカー状態 ==========


@dataclass
class _WorkerBuffer:
    """ワーカー専用のトリプレットバッファ."""

    rows: np.ndarray
    cols: np.ndarray
    h_data: np.ndarray
    c_data: np.ndarray | None
    P: np.ndarray

    @property
    def triplet_count(self) -> int:
        return int(self.h_data.size)


@dataclass
class _TripletStore:
    """マージ先の共有トリプレット（H/C/P で別ロック）."""

    n_nodes: int
    h_rows: list[np.ndarray] = field(default_factory=list)
    h_cols: list[np.ndarray] = field(default_factory=list)
    h_data: list[np.ndarray] = field(default_factory=list)
    c_rows: list[np.ndarray] = field(default_factory=list)
    c_cols: list[np.ndarray] = field(default_factory=list)
    c_data: list[np.ndarray] = field(default_factory=list)
    P: np.ndarray = field(init=False)
    h_lock: threading.Lock = field(default_factory=threading.Lock)
    c_lock: threading.Lock = field(default_factory=threading.Lock)
    p_lock: threading.Lock = field(default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self.P = np.zeros(self.n_nodes)

    def merge(self, buf: _WorkerBuffer) -> None:
        with self.h_lock:
            self.h_rows.append(buf.rows)
            self.h_cols.append(buf.cols)
            self.h_data.append(buf.h_data)
        if buf.c_data is not None:
            with self.c_lock:
                self.c_rows.append(buf.rows)
                self.c_cols.append(buf.cols)
                self.c_data.append(buf.c_data)
        with self.p_lock:
            self.P += buf.P


class _DecileProgress:
    """完了要素数の 10% 刻みごとに 1 回だけログを出す.

    完了数は itertools.count で数える（next() は GIL 下で不可分）。
    ロックは記録済み十分位を更新する比較交換のときだけ取る。
    並行ワーカーの完了順が前後して十分位を飛ばした場合は、飛ばした分も
    順番どおりに出力する。
    """

    def __init__(self, total: int) -> None:
        self.total = total
        self._counter = itertools.count(1)
        self._last_decile = 0
        self._lock = threading.Lock()

    def advance(self) -> None:
        completed = next(self._counter)
        decile = completed * 10 // self.total if self.total else 10
        if decile <= self._last_decile:
            return
        self._publish(decile)

    def _publish(self, decile: int) -> None:
        with self._lock:
            previous = self._last_decile
            if decile <= previous:
                return
            self._last_decile = decile
            for d in range(previous + 1, decile + 1):
                logger.info(
                    "Element assembly progress: %d%% (%d/%d)",
                    d * 10,
                    -(-d * self.total // 10),
                    self.total,
                )


class _AbortState:
    """共有の中止フラグと最初のエラー."""

    def __init__(self) -> None:
        self.event = threading.Event()
        self.first_error: BaseException | None = None
        self.first_error_element: int | None = None
        self._lock = threading.Lock()

    def fail(self, exc: BaseException, element_id: int) -> None:
        with self._lock:
            if self.first_error is None:
                self.first_error = exc
                self.first_error_element = element_id
        self.event.set()


# ========== 公開 API ==========


class GlobalMatrixBuilder:
    """全体行列 H, C, P のアセンブラ.

    Args:
        mesh: 対象メッシュ（読み取り専用）
        element_builder: 要素行列ビルダー（材料・境界条件を保持）
        n_jobs: 並列ワーカー数。-1=全CPUコア使用
        build_capacity: False の場合 C を構築しない（定常解析用）
    """

    def __init__(
        self,
        mesh: Mesh,
        element_builder: ElementMatrixBuilder,
        *,
        n_jobs: int = -1,
        build_capacity: bool = True,
    ) -> None:
        self.mesh = mesh
        self.element_builder = element_builder
        self.n_jobs = resolve_n_jobs(n_jobs)
        self.build_capacity = build_capacity

    def build(self) -> GlobalMatrixBuildResult:
        """全体行列を構築する.

        Returns:
            GlobalMatrixBuildResult: (GlobalMatrices(H, C, P), AssemblyStats)

        Raises:
            AssemblyError: 要素・境界要素の構築失敗（元の例外を __cause__ に保持）
        """
        t_total = time.perf_counter()
        mesh = self.mesh
        n_nodes = mesh.node_count
        n_elem = len(mesh.quads)
        n_workers = max(1, min(self.n_jobs, n_elem))

        stats = AssemblyStats(element_count=n_elem, n_workers=n_workers)
        logger.info(
            "Assembling global matrices: %d nodes, %d elements, %d workers",
            n_nodes,
            n_elem,
            n_workers,
        )

        store = _TripletStore(n_nodes)
        progress = _DecileProgress(n_elem)
        abort = _AbortState()
        chunks = _split_chunks(n_elem, n_workers)

        with ThreadPoolExecutor(max_workers=n_workers, thread_name_prefix="heatfem-asm") as pool:
            # --- 要素パス ---
            t0 = time.perf_counter()
            futures = [
                pool.submit(self._assemble_chunk, start, end, progress, abort)
                for start, end in chunks
            ]
            buffers = [f.result() for f in futures]
            stats.element_assembly_time_ms = (time.perf_counter() - t0) * 1000.0

            if abort.first_error is not None:
                exc = abort.first_error
                raise AssemblyError(
                    f"要素 {abort.first_error_element} のアセンブリに失敗: {exc}"
                ) from exc

            stats.worker_triplet_counts = [buf.triplet_count for buf in buffers]

            # --- マージ ---
            t0 = time.perf_counter()
            merges = [pool.submit(store.merge, buf) for buf in buffers]
            for f in merges:
                f.result()
            stats.merge_time_ms = (time.perf_counter() - t0) * 1000.0

        # --- 境界パス ---
        t0 = time.perf_counter()
        n_boundary = self._assemble_boundary(store)
        stats.boundary_assembly_time_ms = (time.perf_counter() - t0) * 1000.0
        stats.boundary_element_count = n_boundary

        # --- COO → CSR ---
        t0 = time.perf_counter()
        H = _to_csr(store.h_rows, store.h_cols, store.h_data, n_nodes)
        C = _to_csr(store.c_rows, store.c_cols, store.c_data, n_nodes) if self.build_capacity else None
        stats.triplet_to_sparse_time_ms = (time.perf_counter() - t0) * 1000.0

        stats.triplets_h_count = sum(d.size for d in store.h_data)
        stats.triplets_c_count = sum(d.size for d in store.c_data)
        stats.triplets_memory_bytes = (
            stats.triplets_h_count + stats.triplets_c_count
        ) * _TRIPLET_BYTES
        stats.sparse_matrix_memory_bytes = _csr_nbytes(H) + (_csr_nbytes(C) if C is not None else 0)
        stats.total_assembly_time_ms = (time.perf_counter() - t_total) * 1000.0

        _log_sparsity("H", H)
        logger.info(
            "Assembly finished in %.2f ms (elements %.2f ms, merge %.2f ms, "
            "boundary %.2f ms, sparse %.2f ms)",
            stats.total_assembly_time_ms,
            stats.element_assembly_time_ms,
            stats.merge_time_ms,
            stats.boundary_assembly_time_ms,
            stats.triplet_to_sparse_time_ms,
        )

        return GlobalMatrixBuildResult(GlobalMatrices(H=H, C=C, P=store.P), stats)

    # ------------------------------------------------------------------

    def _assemble_chunk(
        self,
        start: int,
        end: int,
        progress: _DecileProgress,
        abort: _AbortState,
    ) -> _WorkerBuffer:
        """要素範囲 [start, end) の寄与をワーカー専用バッファに書き込む."""
        mesh = self.mesh
        quads = mesh.quads
        n = end - start
        m = TRIPLETS_PER_QUAD

        conn = np.zeros((n, 4), dtype=np.int64)
        h_data = np.zeros(n * m)
        c_data = np.zeros(n * m) if self.build_capacity else None
        P = np.zeros(mesh.node_count)

        done = 0
        for i in range(n):
            if abort.event.is_set():
                break
            quad = quads[start + i]
            try:
                local = [mesh.get_node_local_id(nid) for nid in quad.node_ids]
                He, Ce, Pe = self.element_builder.build_quad_matrices(mesh, quad)
            except Exception as exc:
                abort.fail(exc, quad.id)
                break
            conn[i] = local
            pos = i * m
            h_data[pos : pos + m] = He.ravel()
            if c_data is not None:
                c_data[pos : pos + m] = Ce.ravel()
            np.add.at(P, local, Pe)
            done += 1
            progress.advance()

        rows, cols = _vectorized_coo_indices(conn[:done], 4)
        return _WorkerBuffer(
            rows=rows,
            cols=cols,
            h_data=h_data[: done * m],
            c_data=c_data[: done * m] if c_data is not None else None,
            P=P,
        )

    def _assemble_boundary(self, store: _TripletStore) -> int:
        """境界条件の線要素を逐次処理する. 戻り値は処理した線要素数."""
        mesh = self.mesh
        bc = self.element_builder.boundary_condition
        if mesh.get_physical_group(bc.physical_group_name) is None:
            logger.warning(
                "Physical group '%s' not found in mesh; applying boundary condition to all %d lines",
                bc.physical_group_name,
                len(mesh.lines),
            )
        try:
            lines = mesh.boundary_lines(bc.physical_group_name)
        except HeatFEMError as exc:
            raise AssemblyError(f"境界線要素の取得に失敗: {exc}") from exc

        n = len(lines)
        conn = np.zeros((n, 2), dtype=np.int64)
        h_data = np.zeros(n * TRIPLETS_PER_LINE)
        for i, line in enumerate(lines):
            try:
                local = [mesh.get_node_local_id(nid) for nid in line.node_ids]
                He, Pe = self.element_builder.build_line_boundary_matrices(mesh, line)
            except Exception as exc:
                raise AssemblyError(f"境界線要素 {line.id} のアセンブリに失敗: {exc}") from exc
            conn[i] = local
            h_data[i * TRIPLETS_PER_LINE : (i + 1) * TRIPLETS_PER_LINE] = He.ravel()
            np.add.at(store.P, local, Pe)

        rows, cols = _vectorized_coo_indices(conn, 2)
        store.h_rows.append(rows)
        store.h_cols.append(cols)
        store.h_data.append(h_data)
        logger.info("Boundary assembly: %d line elements ('%s')", n, bc.physical_group_name)
        return n


def _to_csr(
    rows: list[np.ndarray],
    cols: list[np.ndarray],
    data: list[np.ndarray],
    n: int,
) -> sp.csr_matrix:
    if data:
        r = np.concatenate(rows)
        c = np.concatenate(cols)
        v = np.concatenate(data)
    else:
        r = np.empty(0, dtype=np.int64)
        c = np.empty(0, dtype=np.int64)
        v = np.empty(0)
    M = sp.csr_matrix((v, (r, c)), shape=(n, n))
    M.sum_duplicates()
    return M


def _csr_nbytes(M: sp.csr_matrix) -> int:
    return int(M.data.nbytes + M.indices.nbytes + M.indptr.nbytes)


def _log_sparsity(name: str, M: sp.csr_matrix) -> None:
    n = M.shape[0]
    nnz = M.nnz
    density = 100.0 * nnz / (n * n) if n else 0.0
    avg_row = nnz / n if n else 0.0
    logger.info(
        "%s matrix: %dx%d, nnz=%d, density=%.4f%%, avg nnz/row=%.2f",
        name,
        n,
        n,
        nnz,
        density,
        avg_row,
    )


__all__ = [
    "GlobalMatrixBuilder",
    "resolve_n_jobs",
    "TRIPLETS_PER_QUAD",
    "TRIPLETS_PER_LINE",
]
