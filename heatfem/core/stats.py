"""アセンブリ・線形ソルバー・時間積分の統計量.

純粋なデータ + 派生メトリクス。分母がゼロの派生値は 0 を返す（NaN/inf にしない）。
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

_MIB = 1024.0 * 1024.0


def bytes_to_mib(n_bytes: int | float) -> float:
    """バイト数を MiB に変換する."""
    return float(n_bytes) / _MIB


@dataclass
class AssemblyStats:
    """全体行列アセンブリ1回分の統計.

    Attributes:
        element_assembly_time_ms: 並列要素パスの壁時計時間（マージを除く）
        boundary_assembly_time_ms: 境界パスの時間
        merge_time_ms: ワーカー局所バッファのマージ時間
        triplet_to_sparse_time_ms: トリプレット → CSR 変換時間
        total_assembly_time_ms: build() 全体の時間
        element_count: 四角形要素数
        boundary_element_count: 境界線要素数
        triplets_h_count: H のトリプレット数
        triplets_c_count: C のトリプレット数
        n_workers: 並列ワーカー数
        worker_triplet_counts: マージ前の各ワーカーの H トリプレット数
        triplets_memory_bytes: トリプレット格納の推定メモリ
        sparse_matrix_memory_bytes: CSR 行列の推定メモリ
    """

    element_assembly_time_ms: float = 0.0
    boundary_assembly_time_ms: float = 0.0
    merge_time_ms: float = 0.0
    triplet_to_sparse_time_ms: float = 0.0
    total_assembly_time_ms: float = 0.0

    element_count: int = 0
    boundary_element_count: int = 0
    triplets_h_count: int = 0
    triplets_c_count: int = 0
    n_workers: int = 0
    worker_triplet_counts: list[int] = field(default_factory=list)

    triplets_memory_bytes: int = 0
    sparse_matrix_memory_bytes: int = 0

    @property
    def computation_time_ms(self) -> float:
        return self.element_assembly_time_ms + self.boundary_assembly_time_ms

    @property
    def overhead_ms(self) -> float:
        return (
            self.total_assembly_time_ms
            - self.computation_time_ms
            - self.triplet_to_sparse_time_ms
            - self.merge_time_ms
        )

    @property
    def overhead_percent(self) -> float:
        if self.total_assembly_time_ms == 0.0:
            return 0.0
        return 100.0 * self.overhead_ms / self.total_assembly_time_ms

    @property
    def elements_per_second(self) -> float:
        if self.element_assembly_time_ms == 0.0:
            return 0.0
        return self.element_count * 1000.0 / self.element_assembly_time_ms

    @property
    def boundary_elements_per_second(self) -> float:
        if self.boundary_assembly_time_ms == 0.0:
            return 0.0
        return self.boundary_element_count * 1000.0 / self.boundary_assembly_time_ms

    @property
    def triplets_memory_mb(self) -> float:
        return bytes_to_mib(self.triplets_memory_bytes)

    @property
    def sparse_matrix_memory_mb(self) -> float:
        return bytes_to_mib(self.sparse_matrix_memory_bytes)


@dataclass
class LinearSolverStats:
    """線形ソルバー1回分（分解 + 求解）の統計."""

    elapsed_time_ms: float = 0.0
    factorization_time_ms: float = 0.0
    solve_time_ms: float = 0.0
    residual_norm: float = 0.0
    memory_used_bytes: int = 0
    peak_memory_bytes: int = 0
    matrix_size: int = 0
    matrix_nonzeros: int = 0

    @property
    def memory_used_mb(self) -> float:
        return bytes_to_mib(self.memory_used_bytes)

    @property
    def peak_memory_mb(self) -> float:
        return bytes_to_mib(self.peak_memory_bytes)


@dataclass
class FEMSolverStats:
    """定常/過渡解析全体の統計.

    過渡解析では factorization_time_ms / solve_time_ms / total_solver_time_ms は
    全ステップの累積値、residual_norm は最終ステップの値、
    min_residual / max_residual は全ステップの範囲を表す。

    Attributes:
        factorization_time_ms: 累積分解時間
        solve_time_ms: 累積求解時間
        total_solver_time_ms: 累積線形ソルバー時間
        total_time_ms: ドライバ全体の壁時計時間
        setup_time_ms: 系行列 A = H + C/dt の構築時間
        overhead_ms: total_time_ms - total_solver_time_ms
        memory_used_bytes: 解析前後の RSS 差分
        peak_memory_bytes: ピーク RSS
        residual_norm: ‖Ax - b‖（最終ステップ）
        min_residual: 全ステップの最小残差
        max_residual: 全ステップの最大残差
        matrix_size: 系の次元
        matrix_nonzeros: 系行列の非ゼロ数
        linear_solve_count: 線形求解の回数
        num_time_steps: 時間ステップ数（定常は 0）
        solution_min: 最終解の最小値
        solution_max: 最終解の最大値
    """

    factorization_time_ms: float = 0.0
    solve_time_ms: float = 0.0
    total_solver_time_ms: float = 0.0
    total_time_ms: float = 0.0
    setup_time_ms: float = 0.0
    overhead_ms: float = 0.0

    memory_used_bytes: int = 0
    peak_memory_bytes: int = 0

    residual_norm: float = 0.0
    min_residual: float = math.inf
    max_residual: float = 0.0

    matrix_size: int = 0
    matrix_nonzeros: int = 0
    linear_solve_count: int = 1
    num_time_steps: int = 0

    solution_min: float = 0.0
    solution_max: float = 0.0

    @property
    def memory_used_mb(self) -> float:
        return bytes_to_mib(self.memory_used_bytes)

    @property
    def peak_memory_mb(self) -> float:
        return bytes_to_mib(self.peak_memory_bytes)

    @property
    def overhead_percent(self) -> float:
        if self.total_time_ms == 0.0:
            return 0.0
        return 100.0 * self.overhead_ms / self.total_time_ms

    @property
    def avg_factorization_ms(self) -> float:
        if self.linear_solve_count == 0:
            return 0.0
        return self.factorization_time_ms / self.linear_solve_count

    @property
    def avg_solve_ms(self) -> float:
        if self.linear_solve_count == 0:
            return 0.0
        return self.solve_time_ms / self.linear_solve_count

    @property
    def avg_per_step_ms(self) -> float:
        if self.linear_solve_count == 0:
            return 0.0
        return self.total_solver_time_ms / self.linear_solve_count

    @classmethod
    def from_linear_stats(cls, stats: LinearSolverStats, total_time_ms: float) -> FEMSolverStats:
        """単一の線形求解（定常解析）から統計を作る."""
        return cls(
            factorization_time_ms=stats.factorization_time_ms,
            solve_time_ms=stats.solve_time_ms,
            total_solver_time_ms=stats.elapsed_time_ms,
            total_time_ms=total_time_ms,
            setup_time_ms=0.0,
            overhead_ms=total_time_ms - stats.elapsed_time_ms,
            memory_used_bytes=stats.memory_used_bytes,
            peak_memory_bytes=stats.peak_memory_bytes,
            residual_norm=stats.residual_norm,
            min_residual=stats.residual_norm,
            max_residual=stats.residual_norm,
            matrix_size=stats.matrix_size,
            matrix_nonzeros=stats.matrix_nonzeros,
            linear_solve_count=1,
        )


__all__ = [
    "bytes_to_mib",
    "AssemblyStats",
    "LinearSolverStats",
    "FEMSolverStats",
]
