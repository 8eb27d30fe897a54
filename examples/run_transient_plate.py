#!/usr/bin/env python3
"""heatfem サンプル: 平板の加熱・冷却解析.

1. 集中熱容量近似との比較（高熱伝導率の平板を片側から対流冷却）
2. Gmsh メッシュ + JSON 設定を書き出して CLI で非定常解析を実行

Usage:
    python examples/run_transient_plate.py            # 全サンプル実行
    python examples/run_transient_plate.py lumped     # 集中熱容量比較のみ
    python examples/run_transient_plate.py cli        # CLI 実行のみ
"""

from __future__ import annotations

import json
import math
import sys
from pathlib import Path

import numpy as np

# プロジェクトルートを PYTHONPATH に追加
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from heatfem import (
    BoundaryCondition,
    BoundaryConditionType,
    ElementMatrixBuilder,
    FEMSolver,
    GlobalMatrixBuilder,
    Material,
    TransientConfig,
    make_rect_mesh,
)
from heatfem.cli import main as cli_main
from heatfem.logging_config import setup_logging
from heatfem.mesh import write_gmsh_msh

EXAMPLES_DIR = Path(__file__).resolve().parent


def run_lumped_capacitance():
    """Bi ≪ 1 の平板: T(t) は集中熱容量モデルの陰的 Euler 解に一致する."""
    print("=" * 60)
    print("集中熱容量近似との比較（左辺のみ対流冷却）")
    print("=" * 60)

    Lx, Ly = 0.02, 0.01
    material = Material("copper-like", conductivity=400.0, density=8900.0, specific_heat=385.0)
    alpha, T_inf, T0 = 50.0, 300.0, 600.0
    bc = BoundaryCondition(
        "left", BoundaryConditionType.CONVECTION, alpha=alpha, ambient_temperature=T_inf
    )

    mesh = make_rect_mesh(Lx, Ly, 8, 4)
    (H, C, P), asm = GlobalMatrixBuilder(mesh, ElementMatrixBuilder(material, bc)).build()

    dt, n_steps = 10.0, 60
    tc = TransientConfig(
        total_time=dt * n_steps,
        time_step=dt,
        save_history=True,
        save_stride=10,
        initial_temperature=T0,
    )
    result = FEMSolver().solve_transient(H, C, P, tc)
    sol = result.transient

    # τ = ρ c V / (α A_s) = ρ c Lx / α
    tau = material.volumetric_heat_capacity * Lx / alpha
    bi = alpha * Lx / material.conductivity
    print(f"  Bi = {bi:.2e}, τ = {tau:.1f} s, 要素数 = {asm.element_count}")
    print(f"  {'t [s]':>8} {'FEM mean [K]':>14} {'lumped [K]':>12} {'exact [K]':>12}")
    max_err = 0.0
    for T, t in zip(sol.temperatures, sol.time_steps, strict=True):
        n = round(t / dt)
        lumped = T_inf + (T0 - T_inf) / (1.0 + dt / tau) ** n
        exact = T_inf + (T0 - T_inf) * math.exp(-t / tau)
        mean = float(np.mean(T))
        max_err = max(max_err, abs(mean - lumped) / (T0 - T_inf))
        print(f"  {t:8.1f} {mean:14.4f} {lumped:12.4f} {exact:12.4f}")
    print(f"  集中熱容量（陰的 Euler）との最大相対誤差: {max_err * 100:.4f}%")
    print(f"  平均求解時間: {result.stats.avg_solve_ms:.3f} ms/step")
    print()
    return max_err


def run_cli_case():
    """メッシュと設定を書き出し、CLI で非定常解析を実行する."""
    print("=" * 60)
    print("CLI 実行（鋼板の片側対流加熱）")
    print("=" * 60)

    case_dir = EXAMPLES_DIR / "plate_case"
    write_gmsh_msh(case_dir / "plate.msh", make_rect_mesh(0.1, 0.05, 20, 10))
    config = {
        "mesh_path": "plate.msh",
        "problem": {
            "type": "transient",
            "total_time": 600.0,
            "time_step": 5.0,
            "save_history": True,
            "save_stride": 12,
            "initial_conditions": {"uniform_temperature": 293.15},
        },
        "material": {"name": "steel", "conductivity": 25.0, "density": 7800.0, "specific_heat": 700.0},
        "boundary_condition": {
            "physical_group_name": "left",
            "type": "convection",
            "alpha": 300.0,
            "ambient_temperature": 1200.0,
        },
    }
    config_path = case_dir / "problem.json"
    config_path.write_text(json.dumps(config, indent=2), encoding="utf-8")

    code = cli_main(
        [
            str(config_path),
            "--output-dir",
            str(case_dir / "output"),
            "--metrics",
            str(case_dir / "metrics.json"),
        ]
    )
    print(f"  終了コード: {code}")
    print(f"  出力: {case_dir / 'output' / 'solution.pvd'}")
    print()
    return code


EXAMPLES = {
    "lumped": run_lumped_capacitance,
    "cli": run_cli_case,
}


if __name__ == "__main__":
    setup_logging()
    selected = sys.argv[1:] or list(EXAMPLES)
    for name in selected:
        if name not in EXAMPLES:
            print(f"未知のサンプル: {name}（{', '.join(EXAMPLES)}）")
            sys.exit(1)
        EXAMPLES[name]()
