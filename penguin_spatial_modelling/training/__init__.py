"""
训练模块

从企鹅测量数据拟合工作坊中的四类模型：
- 线性模型
- 线性混合效应模型
- 随机森林回归
- 随机森林分类
"""

from .fit_models import (
    MODEL_KINDS,
    detect_categorical_levels,
    fit_linear_model,
    fit_mixed_model,
    fit_model,
    fit_random_forest
)

__all__ = [
    'MODEL_KINDS',
    'detect_categorical_levels',
    'fit_linear_model',
    'fit_mixed_model',
    'fit_model',
    'fit_random_forest',
]
