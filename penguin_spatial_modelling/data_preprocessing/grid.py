"""
栅格数据模型与读写

定义预测变量波段（Band）、多波段栅格（Grid）和预测结果栅格（PredictionGrid），
并提供基于rasterio的GeoTIFF读取与写出。
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.transform import Affine

logger = logging.getLogger(__name__)

# 写出GeoTIFF时使用的nodata值
OUTPUT_NODATA = -9999.0


@dataclass
class Band:
    """
    单个预测变量波段。

    categories为分类变量的编码表（栅格编码 -> 类别标签），数值变量为None。
    """
    name: str
    data: np.ndarray
    transform: Affine = field(default_factory=Affine.identity)
    crs: Optional[Union[CRS, str]] = None
    nodata: Optional[float] = None
    categories: Optional[Dict[int, str]] = None

    def __post_init__(self):
        self.data = np.asarray(self.data, dtype=np.float64)
        if self.data.ndim != 2:
            raise ValueError(f"Band '{self.name}' must be 2-D, got shape {self.data.shape}")

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    @property
    def is_categorical(self) -> bool:
        return self.categories is not None

    def nodata_mask(self, rows: Optional[slice] = None) -> np.ndarray:
        """返回无效像元掩码（NaN或等于nodata值）。"""
        data = self.data if rows is None else self.data[rows]
        mask = np.isnan(data)
        if self.nodata is not None and not np.isnan(self.nodata):
            mask |= data == self.nodata
        return mask


def same_crs(a, b) -> bool:
    """比较两个坐标系是否一致，允许字符串与CRS对象混用。"""
    if a is None or b is None:
        return a is None and b is None
    return CRS.from_user_input(a) == CRS.from_user_input(b)


def same_transform(a: Affine, b: Affine, tolerance: float = 1e-9) -> bool:
    """比较两个仿射变换（原点与像元大小）是否一致。"""
    return np.allclose(tuple(a)[:6], tuple(b)[:6], rtol=0.0, atol=tolerance)


class Grid:
    """
    多波段预测变量栅格。

    构造时不强制波段几何一致，几何校验由推理引擎在处理前统一完成。
    """

    def __init__(self, bands: Iterable[Band]):
        self._bands: Dict[str, Band] = {}
        for band in bands:
            if band.name in self._bands:
                raise ValueError(f"Duplicate band name: {band.name}")
            self._bands[band.name] = band

    @classmethod
    def from_arrays(
        cls,
        arrays: Mapping[str, np.ndarray],
        transform: Optional[Affine] = None,
        crs: Optional[Union[CRS, str]] = None,
        nodata: Optional[float] = None,
        categories: Optional[Mapping[str, Dict[int, str]]] = None
    ) -> 'Grid':
        """
        由数组字典构建栅格，所有波段共享同一仿射变换和坐标系。

        参数:
            arrays: 波段名 -> 二维数组
            transform: 仿射变换（默认单位变换）
            crs: 坐标系
            nodata: nodata值（NaN始终视为无效）
            categories: 分类波段的编码表
        """
        categories = categories or {}
        transform = transform if transform is not None else Affine.identity()
        return cls(
            Band(
                name=name,
                data=data,
                transform=transform,
                crs=crs,
                nodata=nodata,
                categories=categories.get(name)
            )
            for name, data in arrays.items()
        )

    @property
    def band_names(self) -> List[str]:
        return list(self._bands)

    @property
    def bands(self) -> List[Band]:
        return list(self._bands.values())

    def __getitem__(self, name: str) -> Band:
        return self._bands[name]

    def __contains__(self, name: str) -> bool:
        return name in self._bands

    def __len__(self) -> int:
        return len(self._bands)

    def _first(self) -> Optional[Band]:
        return next(iter(self._bands.values()), None)

    @property
    def height(self) -> int:
        first = self._first()
        return first.shape[0] if first is not None else 0

    @property
    def width(self) -> int:
        first = self._first()
        return first.shape[1] if first is not None else 0

    @property
    def transform(self) -> Optional[Affine]:
        first = self._first()
        return first.transform if first is not None else None

    @property
    def crs(self):
        first = self._first()
        return first.crs if first is not None else None


@dataclass
class PredictionGrid:
    """
    预测结果栅格，与输入栅格逐像元对齐。

    回归：values中NaN表示无效像元。
    分类：labels中None表示无效像元；probabilities形状为 (n_classes, height, width)。
    """
    task: str
    height: int
    width: int
    transform: Optional[Affine]
    crs: Optional[Union[CRS, str]]
    values: Optional[np.ndarray] = None
    labels: Optional[np.ndarray] = None
    probabilities: Optional[np.ndarray] = None
    classes: Tuple = ()

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    def nodata_mask(self) -> np.ndarray:
        if self.task == 'regression':
            return np.isnan(self.values)
        return np.vectorize(lambda label: label is None, otypes=[bool])(self.labels)

    def valid_mask(self) -> np.ndarray:
        return ~self.nodata_mask()


def read_grid(
    raster_path: Path,
    band_names: Optional[Sequence[str]] = None,
    categories: Optional[Mapping[str, Dict[int, str]]] = None
) -> Grid:
    """
    读取多波段GeoTIFF为Grid。

    参数:
        raster_path: 栅格路径
        band_names: 波段名称列表，None时使用波段描述，描述为空则命名为 band_<i>
        categories: 分类波段的编码表

    返回:
        Grid对象
    """
    raster_path = Path(raster_path)
    if not raster_path.exists():
        raise FileNotFoundError(f"Raster not found: {raster_path}")

    categories = categories or {}

    with rasterio.open(raster_path) as src:
        if band_names is not None and len(band_names) != src.count:
            raise ValueError(
                f"{len(band_names)} band names given for a raster with {src.count} bands"
            )

        logger.info(f"Reading grid {raster_path}: {src.height} x {src.width}, {src.count} bands, CRS {src.crs}")

        bands = []
        for index in range(1, src.count + 1):
            if band_names is not None:
                name = band_names[index - 1]
            else:
                name = src.descriptions[index - 1] or f"band_{index}"
            bands.append(Band(
                name=name,
                data=src.read(index).astype(np.float64),
                transform=src.transform,
                crs=src.crs,
                nodata=src.nodatavals[index - 1],
                categories=categories.get(name)
            ))

    return Grid(bands)


def read_grid_from_files(
    raster_paths: Mapping[str, Path],
    categories: Optional[Mapping[str, Dict[int, str]]] = None
) -> Grid:
    """
    每个预测变量一个单波段文件，按名称组合成Grid。

    各文件的几何可能不一致，由推理引擎报告。
    """
    categories = categories or {}
    bands = []
    for name, path in raster_paths.items():
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Raster not found for band '{name}': {path}")
        with rasterio.open(path) as src:
            bands.append(Band(
                name=name,
                data=src.read(1).astype(np.float64),
                transform=src.transform,
                crs=src.crs,
                nodata=src.nodata,
                categories=categories.get(name)
            ))
    return Grid(bands)


def write_prediction_grid(prediction: PredictionGrid, output_path: Path) -> Path:
    """
    将预测结果写出为GeoTIFF。

    回归输出单波段 'prediction'；分类输出每个类别一个概率波段（如有）
    以及一个标签编码波段 'label'（编码从1开始，编码表写入tags）。
    无效像元写为 OUTPUT_NODATA。

    参数:
        prediction: 预测结果
        output_path: 输出路径

    返回:
        输出路径
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    layers: List[Tuple[str, np.ndarray]] = []
    tags: Dict[str, str] = {'task': prediction.task}

    if prediction.task == 'regression':
        layers.append(('prediction', prediction.values))
    else:
        if prediction.probabilities is not None:
            for index, label in enumerate(prediction.classes):
                layers.append((f"prob_{label}", prediction.probabilities[index]))

        codes = {label: code for code, label in enumerate(prediction.classes, start=1)}
        label_codes = np.full(prediction.shape, np.nan, dtype=np.float64)
        valid = prediction.valid_mask()
        label_codes[valid] = [codes[label] for label in prediction.labels[valid]]
        layers.append(('label', label_codes))
        for label, code in codes.items():
            tags[f"class_{code}"] = str(label)

    with rasterio.open(
        output_path,
        'w',
        driver='GTiff',
        height=prediction.height,
        width=prediction.width,
        count=len(layers),
        dtype='float32',
        crs=prediction.crs,
        transform=prediction.transform,
        nodata=OUTPUT_NODATA,
        compress='lzw',
    ) as dst:
        for index, (description, data) in enumerate(layers, start=1):
            # NaN替换为nodata值
            clean = np.where(np.isfinite(data), data, OUTPUT_NODATA).astype(np.float32)
            dst.write(clean, index)
            dst.set_band_description(index, description)
        dst.update_tags(**tags)

    logger.info(f"Prediction raster saved to {output_path} ({len(layers)} band(s))")
    return output_path
