"""組み立て済み全体行列のディスクキャッシュ.

キーはメッシュファイルと設定ファイルの内容の SHA-256。
先頭 16 文字をキャッシュディレクトリ名とし、以下を保存する:

    <root>/<hash16>/
        H.npz          : scipy.sparse.save_npz
        C.npz          : 熱容量行列（非定常のみ）
        P.npy          : 荷重ベクトル
        metadata.json  : 入力ファイルのハッシュ・行列の形状と非ゼロ数

load() は入力ファイルのハッシュ・形状を照合し、不一致や破損時は None を返す
（キャッシュミスとして再アセンブリさせる）。
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np
import scipy.sparse as sp

from heatfem.core.results import GlobalMatrices

logger = logging.getLogger(__name__)

DEFAULT_CACHE_ROOT = ".heatfem_cache"
_HASH_PREFIX_LEN = 16
_CHUNK = 1 << 16


def file_hash(filepath: str | Path) -> str:
    """ファイル内容の SHA-256（16進）."""
    h = hashlib.sha256()
    with open(filepath, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def combined_hash(mesh_file: str | Path, config_file: str | Path) -> str:
    """メッシュ + 設定ファイルの結合ハッシュ."""
    h = hashlib.sha256()
    for path in (mesh_file, config_file):
        with open(path, "rb") as fh:
            for chunk in iter(lambda: fh.read(_CHUNK), b""):
                h.update(chunk)
    return h.hexdigest()


class SystemCache:
    """全体行列 (H, C, P) のキャッシュ.

    Args:
        root: キャッシュのルートディレクトリ
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_ROOT) -> None:
        self.root = Path(root)

    def cache_dir(self, mesh_file: str | Path, config_file: str | Path) -> Path:
        return self.root / combined_hash(mesh_file, config_file)[:_HASH_PREFIX_LEN]

    def save(
        self,
        matrices: GlobalMatrices,
        mesh_file: str | Path,
        config_file: str | Path,
    ) -> Path:
        """全体行列を保存する.

        Returns:
            キャッシュディレクトリ

        Raises:
            OSError: 入力ファイルの読込・キャッシュの書き込み失敗
        """
        H, C, P = matrices
        mesh_hash = file_hash(mesh_file)
        config_hash = file_hash(config_file)
        full_hash = combined_hash(mesh_file, config_file)
        cache_dir = self.root / full_hash[:_HASH_PREFIX_LEN]
        cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Saving system to cache: %s", cache_dir)

        sp.save_npz(cache_dir / "H.npz", sp.csr_matrix(H))
        if C is not None:
            sp.save_npz(cache_dir / "C.npz", sp.csr_matrix(C))
        np.save(cache_dir / "P.npy", np.asarray(P, dtype=np.float64))

        meta: dict[str, Any] = {
            "mesh_file": str(mesh_file),
            "config_file": str(config_file),
            "combined_hash": full_hash,
            "mesh_hash": mesh_hash,
            "config_hash": config_hash,
            "created": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "H": {"shape": list(H.shape), "nnz": int(H.nnz)},
            "C": {"shape": list(C.shape), "nnz": int(C.nnz)} if C is not None else None,
            "P": {"size": int(np.asarray(P).size)},
            "has_capacity_matrix": C is not None,
        }
        with open(cache_dir / "metadata.json", "w", encoding="utf-8") as fh:
            json.dump(meta, fh, indent=2, ensure_ascii=False)

        logger.info("  Hash: %s", full_hash[:_HASH_PREFIX_LEN])
        logger.info("  Matrix H: %dx%d, %d nonzeros", *H.shape, H.nnz)
        if C is not None:
            logger.info("  Matrix C: %dx%d, %d nonzeros", *C.shape, C.nnz)
        return cache_dir

    def load(
        self,
        mesh_file: str | Path,
        config_file: str | Path,
        *,
        require_capacity: bool = False,
    ) -> GlobalMatrices | None:
        """キャッシュから全体行列を読み込む.

        Args:
            mesh_file: メッシュファイル
            config_file: 設定ファイル
            require_capacity: True の場合 C を持たないエントリはミス扱い

        Returns:
            GlobalMatrices、またはキャッシュミス・不整合・破損時 None
        """
        try:
            mesh_hash = file_hash(mesh_file)
            config_hash = file_hash(config_file)
            full_hash = combined_hash(mesh_file, config_file)
        except OSError as exc:
            logger.warning("Cannot hash cache inputs: %s", exc)
            return None

        cache_dir = self.root / full_hash[:_HASH_PREFIX_LEN]
        meta_path = cache_dir / "metadata.json"
        if not meta_path.exists():
            logger.debug("Cache not found: %s", cache_dir)
            return None

        try:
            with open(meta_path, encoding="utf-8") as fh:
                meta = json.load(fh)
            if (
                meta.get("combined_hash") != full_hash
                or meta.get("mesh_hash") != mesh_hash
                or meta.get("config_hash") != config_hash
            ):
                logger.warning("Cache entry is stale: %s", cache_dir)
                return None
            if require_capacity and not meta.get("has_capacity_matrix", False):
                logger.info("Cache entry has no capacity matrix: %s", cache_dir)
                return None

            H = sp.load_npz(cache_dir / "H.npz").tocsr()
            C = None
            if meta.get("has_capacity_matrix", False):
                C = sp.load_npz(cache_dir / "C.npz").tocsr()
            P = np.load(cache_dir / "P.npy")
            h_ok = list(H.shape) == meta["H"]["shape"] and H.nnz == meta["H"]["nnz"]
            c_ok = C is None or (C.shape == H.shape and C.nnz == meta["C"]["nnz"])
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Cache entry is corrupt (%s): %s", cache_dir, exc)
            return None

        if not (h_ok and c_ok):
            logger.warning("Cache entry does not match its metadata: %s", cache_dir)
            return None
        if P.shape != (H.shape[0],):
            logger.warning("Cache entry P does not match H: %s", cache_dir)
            return None

        logger.info("System loaded from cache: %s", cache_dir)
        return GlobalMatrices(H=H, C=C, P=P)

    def log_info(self, mesh_file: str | Path, config_file: str | Path) -> None:
        """キャッシュエントリの概要をログに出す."""
        cache_dir = self.cache_dir(mesh_file, config_file)
        meta_path = cache_dir / "metadata.json"
        if not meta_path.exists():
            logger.info("No cache entry for current inputs (%s)", cache_dir)
            return
        with open(meta_path, encoding="utf-8") as fh:
            meta = json.load(fh)
        logger.info(
            "Cache entry %s: created %s, H %s nnz=%d, capacity=%s",
            cache_dir,
            meta.get("created"),
            meta["H"]["shape"],
            meta["H"]["nnz"],
            meta.get("has_capacity_matrix"),
        )


__all__ = ["SystemCache", "DEFAULT_CACHE_ROOT", "file_hash", "combined_hash"]
