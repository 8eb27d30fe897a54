"""例外階層の定義.

すべての失敗は HeatFEMError の派生クラスとして送出する。
アセンブリ・ソルバーは最初のエラーで処理を打ち切り、部分的な結果は返さない。
プロセス終了コードへの変換はアプリケーション層（heatfem.app）のみが行う。

  HeatFEMError
    ├─ IntegrationError     : 不正な Gauss 積分次数
    ├─ ElementBuildError    : 要素/境界行列の構築失敗（反転要素・BC スカラー欠落）
    ├─ AssemblyError        : 全体行列アセンブリの失敗
    ├─ SolverError          : 入力不正・特異行列・数値不安定
    ├─ MeshError            : メッシュ読込・節点 ID 解決の失敗
    ├─ ConfigLoaderError    : 設定ファイルの読込・検証失敗
    └─ ExportError          : 結果・メトリクス出力の失敗
"""

from __future__ import annotations

from enum import Enum


class HeatFEMError(Exception):
    """heatfem の全例外の基底クラス."""


class IntegrationError(HeatFEMError):
    """サポート外の積分スキーマ."""


class ElementBuildError(HeatFEMError):
    """要素行列・境界行列の構築失敗."""


class AssemblyError(HeatFEMError):
    """全体行列アセンブリの失敗（要素または境界要素の構築失敗を含む）."""


class MeshError(HeatFEMError):
    """メッシュの読込失敗、または未知の節点 ID 参照."""


class ExportError(HeatFEMError):
    """結果ファイル・メトリクスの出力失敗."""


class SolverErrorCode(Enum):
    """ソルバーエラーの分類."""

    SINGULAR_MATRIX = "Singular matrix"
    NUMERICAL_INSTABILITY = "Numerical instability"
    INVALID_INPUT = "Invalid input"
    UNKNOWN = "Unknown error"


class SolverError(HeatFEMError):
    """線形ソルバー・時間積分ドライバのエラー.

    Attributes:
        code: エラー分類
        message: 詳細メッセージ
    """

    def __init__(self, code: SolverErrorCode, message: str = "") -> None:
        self.code = code
        self.message = message
        text = f"SolverError: {code.value}"
        if message:
            text += f" ({message})"
        super().__init__(text)


class ConfigLoaderErrorCode(Enum):
    """設定ファイル読込エラーの分類."""

    FILE_ERROR = "File error"
    PARSER_ERROR = "Parser error"
    MISSING_FIELD = "Missing field"
    INVALID_VALUE = "Invalid value"


class ConfigLoaderError(HeatFEMError):
    """設定ファイルの読込・検証エラー.

    Attributes:
        code: エラー分類
        message: 詳細メッセージ
    """

    def __init__(self, code: ConfigLoaderErrorCode, message: str = "") -> None:
        self.code = code
        self.message = message
        text = f"ConfigLoaderError: {code.value}"
        if message:
            text += f" ({message})"
        super().__init__(text)


__all__ = [
    "HeatFEMError",
    "IntegrationError",
    "ElementBuildError",
    "AssemblyError",
    "MeshError",
    "ExportError",
    "SolverErrorCode",
    "SolverError",
    "ConfigLoaderErrorCode",
    "ConfigLoaderError",
]
