"""
模型定义模块

所有模型实现统一的 FittedModel 接口：
- LinearModel: 普通最小二乘线性模型
- MixedEffectsModel: 随机截距线性混合模型
- RandomForestRegressionModel / RandomForestClassificationModel: 随机森林
- FunctionModel: 将普通函数包装为模型
"""

from .base import ClassPrediction, FittedModel, FunctionModel
from .linear_model import LinearModel, MixedEffectsModel
from .random_forest import RandomForestClassificationModel, RandomForestRegressionModel
from .persistence import load_model, save_model

__all__ = [
    'ClassPrediction',
    'FittedModel',
    'FunctionModel',
    'LinearModel',
    'MixedEffectsModel',
    'RandomForestRegressionModel',
    'RandomForestClassificationModel',
    'load_model',
    'save_model',
]
