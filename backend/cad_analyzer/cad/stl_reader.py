"""
STL 读取器 - 三角网格拓扑统计

职责：
1. 读取 ASCII / 二进制 STL（numpy-stl 自动识别）
2. 统计三角面、唯一顶点、唯一边（顶点按精度容差量化后去重）
3. 由顶点计算包围尺寸（单位 mm）

依赖：
- numpy-stl: STL解析
- numpy: 顶点/边去重

测试要点：
- test_ascii_tetrahedron: 4面 / 4顶点 / 6边
- test_binary_cube_bbox: 包围尺寸
- test_empty_mesh: 无三角面时报 FILE_PROCESSING_ERROR
"""

from __future__ import annotations

import io
import logging
from pathlib import Path

import numpy as np
from stl import mesh as stl_mesh

from ..interfaces import FileProcessingError
from ..models import (
    PRECISION_SETTINGS,
    CADMetadata,
    Dimensions,
    EntityCounts,
    ParsedDrawing,
    Precision,
)

logger = logging.getLogger(__name__)


class STLReader:
    """STL 读取器"""

    def read_file(self, path: Path, precision: Precision = Precision.STANDARD) -> ParsedDrawing:
        try:
            data = path.read_bytes()
        except OSError as e:
            raise FileProcessingError(f"STL读取失败: {e}", detail={"file": path.name}) from e
        return self.read_bytes(data, precision, name=path.name)

    def read_bytes(
        self,
        data: bytes,
        precision: Precision = Precision.STANDARD,
        name: str = "model.stl",
    ) -> ParsedDrawing:
        try:
            model = stl_mesh.Mesh.from_file(name, fh=io.BytesIO(data))
        except Exception as e:
            raise FileProcessingError(f"STL解析失败: {e}", detail={"file": name}) from e

        vectors = np.asarray(model.vectors, dtype=np.float64)
        if vectors.size == 0:
            raise FileProcessingError("STL文件中没有三角面", detail={"file": name})

        solid_name = model.name
        if isinstance(solid_name, bytes):
            solid_name = solid_name.decode("ascii", errors="ignore")
        solid_name = (solid_name or "").strip()

        return self._summarize(vectors, solid_name, precision)

    @staticmethod
    def _summarize(vectors: np.ndarray, solid_name: str, precision: Precision) -> ParsedDrawing:
        tolerance = PRECISION_SETTINGS[precision].tolerance
        triangle_count = vectors.shape[0]

        points = vectors.reshape(-1, 3)
        quantized = np.round(points / tolerance).astype(np.int64)
        unique_vertices, inverse = np.unique(quantized, axis=0, return_inverse=True)
        indices = inverse.reshape(triangle_count, 3)

        # 每个三角形三条边，端点按索引排序后去重
        edges = np.concatenate([indices[:, [0, 1]], indices[:, [1, 2]], indices[:, [2, 0]]])
        edges = np.sort(edges, axis=1)
        edges = edges[edges[:, 0] != edges[:, 1]]
        edge_count = len(np.unique(edges, axis=0)) if len(edges) else 0

        mins = points.min(axis=0)
        maxs = points.max(axis=0)
        size = maxs - mins

        return ParsedDrawing(
            entities=EntityCounts(
                faces=int(triangle_count),
                vertices=int(len(unique_vertices)),
                edges=int(edge_count),
                shells=1,
            ),
            dimensions=Dimensions(
                width=float(size[0]),
                height=float(size[1]),
                depth=float(size[2]),
                unit="mm",
            ),
            metadata=CADMetadata(software="STL"),
            raw_stats={"triangles": int(triangle_count), "solid_name": solid_name},
        )
