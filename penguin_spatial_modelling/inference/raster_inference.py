"""
栅格推理模块

将已拟合的表格模型逐像元应用到预测变量栅格上，生成与输入栅格
尺寸、仿射变换和坐标系一致的预测栅格。

处理流程：
1. 处理任何像元前校验波段几何、栅格是否为空以及预测变量是否齐全
2. 按行分块（可多线程）组装特征向量，只对有效像元调用模型
3. 任一预测变量为nodata的像元输出nodata
"""

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from threading import Event
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd
from tqdm import tqdm

from ..data_preprocessing.grid import Grid, PredictionGrid, read_grid, read_grid_from_files, same_crs, same_transform, write_prediction_grid
from ..errors import (
    EmptyInputError,
    GeometryMismatchError,
    InferenceCancelledError,
    SchemaMismatchError,
    UnseenCategoryError,
)
from ..models.base import FittedModel
from ..models.persistence import load_model

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

UNSEEN_CATEGORY_POLICIES = ('nodata', 'error')
PROBABILITY_TOLERANCE = 1e-6


def validate_inputs(model: FittedModel, grid: Grid) -> None:
    """
    推理前的结构校验，任何一项不满足都立即抛出异常。

    参数:
        model: 已拟合模型
        grid: 预测变量栅格
    """
    if len(grid) == 0:
        raise EmptyInputError("Grid has no bands")

    reference = grid.bands[0]
    for band in grid.bands[1:]:
        if band.shape != reference.shape:
            raise GeometryMismatchError(band.name, 'dimensions', reference.shape, band.shape)
        if not same_transform(band.transform, reference.transform):
            raise GeometryMismatchError(band.name, 'transform', reference.transform, band.transform)
        if not same_crs(band.crs, reference.crs):
            raise GeometryMismatchError(band.name, 'crs', reference.crs, band.crs)

    if grid.height == 0 or grid.width == 0:
        raise EmptyInputError(f"Grid has no cells ({grid.height} x {grid.width})")

    missing = [name for name in model.required_variables if name not in grid]
    if missing:
        raise SchemaMismatchError(missing, available=grid.band_names)

    for name in model.categorical_levels:
        if name in grid and not grid[name].is_categorical:
            raise ValueError(
                f"Band '{name}' holds a categorical predictor but has no category table"
            )


def _assemble_features(
    model: FittedModel,
    grid: Grid,
    rows: slice
) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    组装一个行块内所有像元的特征向量。

    返回:
        (features, nodata_mask)，features每行对应一个像元（行优先顺序），
        nodata_mask标记任一预测变量无效的像元
    """
    columns = {}
    nodata_mask = None
    for name in model.required_variables:
        band = grid[name]
        mask = band.nodata_mask(rows).ravel()
        values = band.data[rows].ravel()
        if band.is_categorical:
            # 栅格编码转换为类别标签，编码表中没有的编码视为无效
            lookup = {float(code): label for code, label in band.categories.items()}
            labels = pd.Series(values).map(lookup)
            mask = mask | labels.isna().to_numpy()
            columns[name] = labels.astype(object).to_numpy()
        else:
            columns[name] = values
        nodata_mask = mask if nodata_mask is None else nodata_mask | mask
    return pd.DataFrame(columns), nodata_mask


def find_unseen_categories(model: FittedModel, grid: Grid) -> Dict[str, List]:
    """在整个栅格的有效像元中查找拟合时未见过的类别。"""
    if not model.categorical_levels:
        return {}
    features, nodata_mask = _assemble_features(model, grid, slice(None))
    return model.unseen_levels(features[~nodata_mask])


def _merge_ranges(ranges: Sequence[Tuple[int, int]]) -> List[Tuple[int, int]]:
    merged: List[Tuple[int, int]] = []
    for start, stop in sorted(ranges):
        if merged and merged[-1][1] == start:
            merged[-1] = (merged[-1][0], stop)
        else:
            merged.append((start, stop))
    return merged


def infer(
    model: FittedModel,
    grid: Grid,
    probabilities: bool = False,
    tile_rows: int = 256,
    n_workers: int = 1,
    unseen_category: str = 'nodata',
    cancel_event: Optional[Event] = None,
    show_progress: bool = False
) -> PredictionGrid:
    """
    将模型应用到栅格的每个像元。

    参数:
        model: 已拟合模型
        grid: 预测变量栅格（每个预测变量一个波段）
        probabilities: 分类模型是否输出各类别概率
        tile_rows: 每个分块的行数
        n_workers: 并行线程数，1为单线程
        unseen_category: 未见类别的处理方式，'nodata'输出无效值，'error'直接报错
        cancel_event: 取消标志，在分块之间检查
        show_progress: 是否显示进度条

    返回:
        PredictionGrid，与输入栅格逐像元对齐

    异常:
        EmptyInputError, GeometryMismatchError, SchemaMismatchError,
        UnseenCategoryError, InferenceCancelledError
    """
    if unseen_category not in UNSEEN_CATEGORY_POLICIES:
        raise ValueError(
            f"Unknown unseen_category policy: {unseen_category}. Use 'nodata' or 'error'."
        )
    if tile_rows < 1:
        raise ValueError(f"tile_rows must be positive, got {tile_rows}")
    if probabilities and model.task != 'classification':
        raise ValueError("Class probabilities were requested from a regression model")
    if probabilities and not model.supports_probabilities:
        raise ValueError(f"{type(model).__name__} does not provide class probabilities")

    validate_inputs(model, grid)

    if unseen_category == 'error':
        unseen = find_unseen_categories(model, grid)
        if unseen:
            raise UnseenCategoryError(unseen)

    height, width = grid.height, grid.width
    prediction = PredictionGrid(
        task=model.task,
        height=height,
        width=width,
        transform=grid.transform,
        crs=grid.crs,
        classes=model.classes
    )
    if model.task == 'regression':
        prediction.values = np.full((height, width), np.nan, dtype=np.float64)
    else:
        prediction.labels = np.full((height, width), None, dtype=object)
        if probabilities:
            prediction.probabilities = np.full(
                (len(model.classes), height, width), np.nan, dtype=np.float64
            )

    tiles = [(start, min(start + tile_rows, height)) for start in range(0, height, tile_rows)]

    def run_tile(tile: Tuple[int, int]) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return False
        _predict_tile(model, grid, prediction, tile, unseen_category)
        return True

    logger.info(
        f"Predicting {height} x {width} grid with {type(model).__name__} "
        f"({len(tiles)} tile(s), {n_workers} worker(s))"
    )

    if n_workers > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            done = list(tqdm(
                executor.map(run_tile, tiles),
                total=len(tiles),
                desc="Predicting",
                disable=not show_progress
            ))
    else:
        done = [run_tile(tile) for tile in tqdm(tiles, desc="Predicting", disable=not show_progress)]

    if not all(done):
        completed = _merge_ranges([tile for tile, ok in zip(tiles, done) if ok])
        abandoned = _merge_ranges([tile for tile, ok in zip(tiles, done) if not ok])
        logger.warning(f"Inference cancelled after rows {completed}")
        raise InferenceCancelledError(completed, abandoned)

    valid_count = int(prediction.valid_mask().sum())
    logger.info(f"Valid cells: {valid_count} / {height * width}")
    if model.task == 'regression' and valid_count > 0:
        logger.info(
            f"Prediction range: [{np.nanmin(prediction.values):.4f}, "
            f"{np.nanmax(prediction.values):.4f}], mean {np.nanmean(prediction.values):.4f}"
        )

    return prediction


def _predict_tile(
    model: FittedModel,
    grid: Grid,
    prediction: PredictionGrid,
    tile: Tuple[int, int],
    unseen_category: str
) -> None:
    """预测一个行块并写入输出栅格对应的行（各分块写入的行互不重叠）。"""
    start, stop = tile
    rows = slice(start, stop)
    shape = (stop - start, grid.width)

    features, nodata_mask = _assemble_features(model, grid, rows)
    valid = ~nodata_mask

    if model.categorical_levels:
        unseen = model.unseen_level_mask(features) & valid
        if unseen.any():
            if unseen_category == 'error':
                raise UnseenCategoryError(model.unseen_levels(features[unseen]))
            valid &= ~unseen

    if not valid.any():
        return

    valid_features = model.feature_frame(features[valid].reset_index(drop=True))
    outputs = model.predict_frame(valid_features)
    if len(outputs) != len(valid_features):
        raise ValueError(
            f"{type(model).__name__} returned {len(outputs)} predictions for {len(valid_features)} cells"
        )

    if model.task == 'regression':
        tile_values = np.full(valid.size, np.nan, dtype=np.float64)
        tile_values[valid] = np.asarray(outputs, dtype=np.float64)
        prediction.values[rows] = tile_values.reshape(shape)
        return

    stray = sorted({label for label in outputs if label not in prediction.classes}, key=str)
    if stray:
        raise ValueError(
            f"{type(model).__name__} returned label(s) {stray} outside its classes {list(prediction.classes)}"
        )

    tile_labels = np.full(valid.size, None, dtype=object)
    tile_labels[valid] = list(outputs)
    prediction.labels[rows] = tile_labels.reshape(shape)

    if prediction.probabilities is not None:
        proba = np.asarray(model.predict_proba_frame(valid_features), dtype=np.float64)
        if np.any(proba < -PROBABILITY_TOLERANCE) or np.any(proba > 1.0 + PROBABILITY_TOLERANCE):
            raise ValueError(
                f"{type(model).__name__} returned class probabilities outside [0, 1] "
                f"(range: {proba.min():.8f} - {proba.max():.8f})"
            )
        totals = proba.sum(axis=1)
        if np.any(np.abs(totals - 1.0) > PROBABILITY_TOLERANCE):
            raise ValueError(
                f"{type(model).__name__} returned class probabilities that do not sum to 1 "
                f"(range of sums: {totals.min():.8f} - {totals.max():.8f})"
            )
        tile_proba = np.full((len(prediction.classes), valid.size), np.nan, dtype=np.float64)
        tile_proba[:, valid] = proba.T
        prediction.probabilities[:, rows, :] = tile_proba.reshape((len(prediction.classes),) + shape)


def predict_raster(
    model: Union[FittedModel, Path, str],
    raster_path: Union[Path, str, Mapping[str, Path]],
    output_path: Path,
    band_names: Optional[Sequence[str]] = None,
    categories: Optional[Mapping[str, Dict[int, str]]] = None,
    **infer_kwargs
) -> PredictionGrid:
    """
    读取栅格、推理并写出预测GeoTIFF。

    参数:
        model: 已拟合模型或模型文件路径
        raster_path: 多波段栅格路径，或 {变量名: 单波段栅格路径}
        output_path: 输出栅格路径
        band_names: 多波段栅格的波段名称
        categories: 分类波段的编码表
        infer_kwargs: 传给 infer 的其他参数

    返回:
        PredictionGrid
    """
    logger.info("=" * 60)
    logger.info("Raster prediction")
    logger.info("=" * 60)

    if not isinstance(model, FittedModel):
        model = load_model(model)

    if isinstance(raster_path, Mapping):
        logger.info(f"Input rasters: {dict(raster_path)}")
        grid = read_grid_from_files(raster_path, categories=categories)
    else:
        logger.info(f"Input raster: {raster_path}")
        grid = read_grid(Path(raster_path), band_names=band_names, categories=categories)

    infer_kwargs.setdefault('show_progress', True)
    prediction = infer(model, grid, **infer_kwargs)

    write_prediction_grid(prediction, Path(output_path))
    logger.info("Prediction completed!")
    return prediction
