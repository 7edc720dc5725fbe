"""
栅格推理异常定义

结构性错误（缺少预测变量、波段几何不一致、空栅格）在处理任何像元之前抛出，
不做重试。单个像元的无效值（no-data）不是错误。
"""

from typing import Dict, List, Optional, Sequence, Tuple


class RasterInferenceError(Exception):
    """栅格推理错误基类。"""


class SchemaMismatchError(RasterInferenceError):
    """模型需要的预测变量在栅格波段中缺失。"""

    def __init__(self, missing: Sequence[str], available: Optional[Sequence[str]] = None):
        self.missing = list(missing)
        self.available = list(available) if available is not None else []
        message = f"Grid is missing predictor band(s) required by the model: {', '.join(self.missing)}"
        if self.available:
            message += f" (available bands: {', '.join(self.available)})"
        super().__init__(message)


class GeometryMismatchError(RasterInferenceError):
    """波段之间的尺寸、仿射变换或坐标系不一致。"""

    def __init__(self, band: str, property: str, expected, actual):
        self.band = band
        self.property = property
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Band '{band}' does not match the grid {property}: "
            f"expected {expected}, got {actual}"
        )


class EmptyInputError(RasterInferenceError):
    """栅格没有波段或没有像元。"""


class UnseenCategoryError(RasterInferenceError):
    """分类预测变量中出现了拟合时未见过的类别。"""

    def __init__(self, unseen: Dict[str, List[str]]):
        self.unseen = {name: list(levels) for name, levels in unseen.items()}
        details = '; '.join(
            f"{name}: {', '.join(str(level) for level in levels)}"
            for name, levels in self.unseen.items()
        )
        super().__init__(f"Grid contains category levels never seen during fitting ({details})")


class InferenceCancelledError(RasterInferenceError):
    """推理被取消，记录已完成和已放弃的行范围。"""

    def __init__(
        self,
        completed_rows: List[Tuple[int, int]],
        abandoned_rows: List[Tuple[int, int]]
    ):
        self.completed_rows = list(completed_rows)
        self.abandoned_rows = list(abandoned_rows)
        super().__init__(
            f"Inference cancelled: completed rows {self.completed_rows}, "
            f"abandoned rows {self.abandoned_rows}"
        )
