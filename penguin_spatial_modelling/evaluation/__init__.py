"""
评估与可视化模块

- 回归评价指标（R², RMSE, MAE等）与分类评价指标（正确率、混淆矩阵）
- 预测栅格汇总统计
- 可视化（散点图、变量重要性、预测空间分布图）
"""

from .metrics import (
    calculate_r2,
    calculate_rmse,
    calculate_mae,
    calculate_all_metrics,
    calculate_classification_metrics,
    summarize_prediction_grid
)
from .visualization import (
    plot_scatter,
    plot_feature_importance,
    plot_prediction_map
)

__all__ = [
    'calculate_r2',
    'calculate_rmse',
    'calculate_mae',
    'calculate_all_metrics',
    'calculate_classification_metrics',
    'summarize_prediction_grid',
    'plot_scatter',
    'plot_feature_importance',
    'plot_prediction_map',
]
