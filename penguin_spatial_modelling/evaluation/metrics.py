"""
评估指标模块

实现回归评价指标（R²、RMSE、MAE等）、分类评价指标（正确率、混淆矩阵），
以及预测栅格的汇总统计。
"""

from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    confusion_matrix,
    mean_absolute_error,
    mean_squared_error,
    r2_score
)

from ..data_preprocessing.grid import PredictionGrid


def calculate_r2(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """
    计算决定系数（R²）。

    参数:
        y_true: 真实值
        y_pred: 预测值

    返回:
        R²值
    """
    return float(r2_score(y_true, y_pred))


def calculate_rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """计算均方根误差（RMSE）。"""
    return float(np.sqrt(mean_squared_error(y_true, y_pred)))


def calculate_mae(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """计算平均绝对误差（MAE）。"""
    return float(mean_absolute_error(y_true, y_pred))


def calculate_mse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """计算均方误差（MSE）。"""
    return float(mean_squared_error(y_true, y_pred))


def calculate_median_ae(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """计算绝对误差的中位数（Median AE）。"""
    return float(np.median(np.abs(np.asarray(y_true) - np.asarray(y_pred))))


def calculate_correlation(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """计算皮尔逊相关系数。"""
    return float(np.corrcoef(y_true, y_pred)[0, 1])


def calculate_all_metrics(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    metrics_list: Optional[Sequence[str]] = None
) -> Dict[str, float]:
    """
    计算回归评估指标。

    参数:
        y_true: 真实值
        y_pred: 预测值
        metrics_list: 要计算的指标列表，如果为None则计算所有指标

    返回:
        包含所有指标值的字典
    """
    calculators = {
        'R2': calculate_r2,
        'RMSE': calculate_rmse,
        'MAE': calculate_mae,
        'MSE': calculate_mse,
        'Median_AE': calculate_median_ae,
        'Correlation': calculate_correlation,
    }
    if metrics_list is None:
        metrics_list = list(calculators)

    unknown = [name for name in metrics_list if name not in calculators]
    if unknown:
        raise ValueError(f"Unknown metric(s): {unknown}. Choose from {list(calculators)}.")

    y_true = np.asarray(y_true, dtype=np.float64)
    y_pred = np.asarray(y_pred, dtype=np.float64)
    return {name: calculators[name](y_true, y_pred) for name in metrics_list}


def calculate_classification_metrics(
    y_true: Sequence[Any],
    y_pred: Sequence[Any],
    labels: Optional[Sequence[Any]] = None
) -> Dict[str, Any]:
    """
    计算分类评估指标。

    参数:
        y_true: 真实标签
        y_pred: 预测标签
        labels: 类别顺序，None时使用出现过的所有类别（排序）

    返回:
        字典：
            - 'Accuracy': 正确率
            - 'Error_rate': 错误率
            - 'confusion_matrix': 行为真实类别、列为预测类别的DataFrame
    """
    y_true = list(y_true)
    y_pred = list(y_pred)
    if labels is None:
        labels = sorted(set(y_true) | set(y_pred), key=str)
    labels = list(labels)

    accuracy = float(accuracy_score(y_true, y_pred))
    matrix = confusion_matrix(y_true, y_pred, labels=labels)
    return {
        'Accuracy': accuracy,
        'Error_rate': 1.0 - accuracy,
        'confusion_matrix': pd.DataFrame(
            matrix,
            index=pd.Index(labels, name='observed'),
            columns=pd.Index(labels, name='predicted')
        ),
    }


def summarize_prediction_grid(prediction: PredictionGrid) -> Dict[str, Any]:
    """
    预测栅格的汇总统计。

    返回:
        回归：有效像元数、总像元数、最小值、最大值、均值、标准差；
        分类：有效像元数、总像元数、各类别像元数
    """
    valid = prediction.valid_mask()
    summary: Dict[str, Any] = {
        'valid_cells': int(valid.sum()),
        'total_cells': int(valid.size),
    }
    if prediction.task == 'regression':
        values = prediction.values[valid]
        if values.size:
            summary.update({
                'min': float(values.min()),
                'max': float(values.max()),
                'mean': float(values.mean()),
                'std': float(values.std()),
            })
    else:
        counts = pd.Series(prediction.labels[valid]).value_counts()
        summary['class_counts'] = {label: int(counts.get(label, 0)) for label in prediction.classes}
    return summary
