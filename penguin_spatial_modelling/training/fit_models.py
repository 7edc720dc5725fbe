"""
模型拟合模块

从表格数据拟合线性模型、线性混合模型和随机森林，返回实现
FittedModel接口的对象，供栅格推理使用。
"""

from typing import Any, Dict, List, Optional, Sequence
import logging

import pandas as pd

from ..models.base import FittedModel, as_category
from ..models.linear_model import LinearModel, MixedEffectsModel
from ..models.random_forest import RandomForestClassificationModel, RandomForestRegressionModel

logger = logging.getLogger(__name__)

MODEL_KINDS = ('linear', 'mixed', 'rf_regression', 'rf_classification')


def _prepare_data(
    df: pd.DataFrame,
    target: str,
    predictors: Sequence[str],
    group: Optional[str] = None
) -> pd.DataFrame:
    """检查列是否存在并删除含缺失值的行。"""
    columns = [target] + list(predictors) + ([group] if group and group not in predictors else [])
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise KeyError(f"Training data is missing column(s): {missing}")

    data = df[columns].dropna().reset_index(drop=True)
    if len(data) < len(df):
        logger.info(f"Dropped {len(df) - len(data)} rows with missing values in {columns}")
    if data.empty:
        raise ValueError("No complete rows left to fit the model")
    return data


def detect_categorical_levels(df: pd.DataFrame, columns: Sequence[str]) -> Dict[str, List[str]]:
    """
    识别分类变量（非数值列）并记录其类别（按字母排序）。

    参数:
        df: 数据
        columns: 需要检查的列

    返回:
        {列名: 类别列表}
    """
    levels = {}
    for col in columns:
        if not pd.api.types.is_numeric_dtype(df[col]):
            levels[col] = sorted(df[col].astype(str).unique().tolist())
    return levels


def _as_strings(data: pd.DataFrame, levels: Dict[str, List[str]]) -> pd.DataFrame:
    for col in levels:
        data[col] = as_category(data[col])
    return data


def fit_linear_model(df: pd.DataFrame, target: str, predictors: Sequence[str]) -> LinearModel:
    """拟合普通最小二乘线性模型。"""
    logger.info(f"Fitting linear model: {target} ~ {' + '.join(predictors)}")
    data = _prepare_data(df, target, predictors)
    levels = detect_categorical_levels(data, predictors)
    return LinearModel.fit(_as_strings(data, levels), target, predictors, levels)


def fit_mixed_model(
    df: pd.DataFrame,
    target: str,
    predictors: Sequence[str],
    group: str,
    reml: bool = True
) -> MixedEffectsModel:
    """拟合以 group 为分组的随机截距混合模型。"""
    logger.info(f"Fitting mixed model: {target} ~ {' + '.join(predictors)} + (1 | {group})")
    data = _prepare_data(df, target, predictors, group)
    levels = detect_categorical_levels(data, list(predictors) + [group])
    # 分组变量即使以数值编码也按类别处理
    if group not in levels:
        levels[group] = sorted(data[group].astype(str).unique().tolist())
    return MixedEffectsModel.fit(_as_strings(data, levels), target, predictors, group, levels, reml=reml)


def fit_random_forest(
    df: pd.DataFrame,
    target: str,
    predictors: Sequence[str],
    task: str = 'regression',
    n_estimators: int = 500,
    random_state: Optional[int] = 42,
    **forest_kwargs
) -> FittedModel:
    """
    拟合随机森林。

    参数:
        df: 训练数据
        target: 响应变量
        predictors: 预测变量
        task: 'regression' 或 'classification'
        n_estimators: 树的数量
        random_state: 随机种子
        forest_kwargs: 传给scikit-learn随机森林的其他参数

    返回:
        RandomForestRegressionModel 或 RandomForestClassificationModel
    """
    if task not in ('regression', 'classification'):
        raise ValueError(f"Unknown task: {task}. Use 'regression' or 'classification'.")

    logger.info(f"Fitting random forest {task}: {target} ~ {' + '.join(predictors)}")
    data = _prepare_data(df, target, predictors)
    levels = detect_categorical_levels(data, predictors)
    data = _as_strings(data, levels)

    model_cls = RandomForestRegressionModel if task == 'regression' else RandomForestClassificationModel
    return model_cls.fit(
        data, target, predictors, levels,
        n_estimators=n_estimators,
        random_state=random_state,
        **forest_kwargs
    )


def fit_model(kind: str, df: pd.DataFrame, model_config: Dict[str, Any]) -> FittedModel:
    """
    按模型类型和配置拟合模型。

    参数:
        kind: 'linear', 'mixed', 'rf_regression', 'rf_classification'
        df: 训练数据
        model_config: 该模型的配置（target, predictors, 以及模型特有参数）

    返回:
        FittedModel
    """
    if kind not in MODEL_KINDS:
        raise ValueError(f"Unknown model kind: {kind}. Choose from {MODEL_KINDS}.")

    target = model_config['target']
    predictors = list(model_config['predictors'])

    if kind == 'linear':
        return fit_linear_model(df, target, predictors)

    if kind == 'mixed':
        return fit_mixed_model(
            df, target, predictors,
            group=model_config['group'],
            reml=model_config.get('reml', True)
        )

    forest_params = dict(model_config.get('forest', {}))
    return fit_random_forest(
        df, target, predictors,
        task='regression' if kind == 'rf_regression' else 'classification',
        n_estimators=forest_params.pop('n_estimators', 500),
        random_state=forest_params.pop('random_state', 42),
        **forest_params
    )
