"""
可视化模块

- 散点图（观测值vs预测值）
- 随机森林变量重要性
- 预测结果空间分布图
"""

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from matplotlib.colors import ListedColormap
import pandas as pd
from pathlib import Path
from typing import Dict, Optional, Tuple
import logging

from ..data_preprocessing.grid import PredictionGrid

logger = logging.getLogger(__name__)


def _save(save_path: Optional[Path], what: str):
    if save_path is not None:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        plt.savefig(save_path, dpi=300, bbox_inches='tight')
        logger.info(f"{what} saved to {save_path}")
    plt.close()


def plot_scatter(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    metrics: Optional[Dict[str, float]] = None,
    save_path: Optional[Path] = None,
    title: str = "Predicted vs Observed",
    figsize: Tuple[int, int] = (8, 8),
    color: str = 'steelblue',
    alpha: float = 0.6
):
    """
    绘制散点图（观测值vs预测值），附1:1线。

    参数:
        y_true: 观测值
        y_pred: 预测值
        metrics: 评估指标字典（可选，用于在图上显示）
        save_path: 保存路径
        title: 图表标题
        figsize: 图表大小
        color: 散点颜色
        alpha: 透明度
    """
    plt.figure(figsize=figsize)
    plt.scatter(y_true, y_pred, alpha=alpha, color=color, s=40, edgecolors='black', linewidth=0.5)

    lower = min(np.min(y_true), np.min(y_pred))
    upper = max(np.max(y_true), np.max(y_pred))
    plt.plot([lower, upper], [lower, upper], 'r--', linewidth=1.5, label='1:1 line')

    if metrics:
        text = '\n'.join(f"{name} = {value:.4f}" for name, value in metrics.items())
        plt.text(0.05, 0.95, text, transform=plt.gca().transAxes, fontsize=11,
                 verticalalignment='top', bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))

    plt.xlabel('Observed', fontsize=12)
    plt.ylabel('Predicted', fontsize=12)
    plt.title(title, fontsize=14, fontweight='bold')
    plt.legend(fontsize=11, loc='lower right')
    plt.grid(True, alpha=0.3)
    plt.tight_layout()

    _save(save_path, "Scatter plot")


def plot_feature_importance(
    importances: pd.Series,
    save_path: Optional[Path] = None,
    title: str = "Variable importance",
    top_n: Optional[int] = None,
    figsize: Tuple[int, int] = (8, 6)
):
    """绘制变量重要性横向柱状图。"""
    importances = importances.sort_values(ascending=True)
    if top_n is not None:
        importances = importances.iloc[-top_n:]

    plt.figure(figsize=figsize)
    plt.barh(importances.index.astype(str), importances.values, color='seagreen', edgecolor='black')
    plt.xlabel('Mean decrease in impurity', fontsize=12)
    plt.title(title, fontsize=14, fontweight='bold')
    plt.grid(True, axis='x', alpha=0.3)
    plt.tight_layout()

    _save(save_path, "Importance plot")


def plot_prediction_map(
    prediction: PredictionGrid,
    save_path: Optional[Path] = None,
    title: str = "Spatial prediction",
    cmap: str = 'viridis',
    figsize: Tuple[int, int] = (10, 8)
):
    """
    绘制预测栅格空间分布图，无效像元留白。

    回归显示连续色带，分类按类别显示离散颜色。
    """
    transform = prediction.transform
    extent = None
    if transform is not None:
        left, top = transform * (0, 0)
        right, bottom = transform * (prediction.width, prediction.height)
        extent = (left, right, bottom, top)

    fig, ax = plt.subplots(figsize=figsize)

    if prediction.task == 'regression':
        image = ax.imshow(np.ma.masked_invalid(prediction.values), cmap=cmap, extent=extent)
        fig.colorbar(image, ax=ax, label='Prediction')
    else:
        codes = np.full(prediction.shape, np.nan)
        valid = prediction.valid_mask()
        index = {label: i for i, label in enumerate(prediction.classes)}
        codes[valid] = [index[label] for label in prediction.labels[valid]]
        colors = plt.get_cmap('tab10')(np.arange(len(prediction.classes)) % 10)
        image = ax.imshow(
            np.ma.masked_invalid(codes),
            cmap=ListedColormap(colors),
            vmin=-0.5,
            vmax=len(prediction.classes) - 0.5,
            extent=extent,
            interpolation='nearest'
        )
        colorbar = fig.colorbar(image, ax=ax, ticks=range(len(prediction.classes)))
        colorbar.ax.set_yticklabels([str(label) for label in prediction.classes])

    ax.set_title(title, fontsize=14, fontweight='bold')
    ax.set_xlabel('X', fontsize=12)
    ax.set_ylabel('Y', fontsize=12)
    plt.tight_layout()

    _save(save_path, "Prediction map")
