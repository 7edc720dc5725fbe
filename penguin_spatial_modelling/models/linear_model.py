"""
线性模型与线性混合效应模型

基于statsmodels：
- LinearModel: 普通最小二乘
- MixedEffectsModel: 分组随机截距的线性混合模型（REML估计）
"""

from typing import Any, Dict, Mapping, Optional, Sequence
import logging

import numpy as np
import pandas as pd
import statsmodels.api as sm

from .base import FittedModel, build_design_matrix

logger = logging.getLogger(__name__)


class LinearModel(FittedModel):
    """
    普通最小二乘线性模型。

    分类预测变量按处理编码进入设计矩阵，参照类别为拟合时的第一个类别。
    """

    kind = 'linear'
    task = 'regression'

    def __init__(
        self,
        results,
        target: str,
        predictors: Sequence[str],
        categorical_levels: Optional[Mapping[str, Sequence[Any]]] = None
    ):
        super().__init__(predictors, categorical_levels, target)
        self.results = results

    @classmethod
    def fit(
        cls,
        df: pd.DataFrame,
        target: str,
        predictors: Sequence[str],
        categorical_levels: Mapping[str, Sequence[Any]]
    ) -> 'LinearModel':
        """
        拟合OLS模型。

        参数:
            df: 训练数据（不含缺失值）
            target: 响应变量列名
            predictors: 预测变量列名
            categorical_levels: 分类预测变量的类别

        返回:
            LinearModel
        """
        numeric = [name for name in predictors if name not in categorical_levels]
        exog = build_design_matrix(df[list(predictors)], numeric, categorical_levels)
        endog = df[target].astype(np.float64)
        results = sm.OLS(endog, exog).fit()
        logger.info(f"OLS fitted on {int(results.nobs)} samples, R2={results.rsquared:.4f}")
        return cls(results, target, predictors, categorical_levels)

    def _design(self, features: pd.DataFrame) -> pd.DataFrame:
        numeric = [name for name in self.required_variables if name not in self.categorical_levels]
        return build_design_matrix(features, numeric, self.categorical_levels)

    def predict_frame(self, features: pd.DataFrame) -> np.ndarray:
        exog = self._design(features)
        return exog.to_numpy() @ self.coefficients.to_numpy()

    @property
    def coefficients(self) -> pd.Series:
        return self.results.params

    @property
    def r_squared(self) -> float:
        return float(self.results.rsquared)

    def summary(self) -> str:
        return str(self.results.summary())


class MixedEffectsModel(FittedModel):
    """
    随机截距线性混合模型。

    预测值 = 固定效应 + 所属分组的随机截距估计值。
    分组变量也是必需的分类预测变量，其类别为拟合时出现的分组。
    """

    kind = 'mixed'
    task = 'regression'

    def __init__(
        self,
        results,
        target: str,
        predictors: Sequence[str],
        group: str,
        categorical_levels: Optional[Mapping[str, Sequence[Any]]] = None
    ):
        required = list(predictors) + ([group] if group not in predictors else [])
        super().__init__(required, categorical_levels, target)
        self.results = results
        self.predictors = tuple(predictors)
        self.group = group
        self._intercepts = {
            level: float(effects.iloc[0]) for level, effects in results.random_effects.items()
        }

    @classmethod
    def fit(
        cls,
        df: pd.DataFrame,
        target: str,
        predictors: Sequence[str],
        group: str,
        categorical_levels: Mapping[str, Sequence[Any]],
        reml: bool = True
    ) -> 'MixedEffectsModel':
        """
        拟合随机截距混合模型。

        参数:
            df: 训练数据（不含缺失值）
            target: 响应变量列名
            predictors: 固定效应预测变量列名
            group: 分组变量列名
            categorical_levels: 分类变量的类别（须包含分组变量）
            reml: 是否使用限制性最大似然

        返回:
            MixedEffectsModel
        """
        numeric = [name for name in predictors if name not in categorical_levels]
        exog = build_design_matrix(df[list(predictors)], numeric, categorical_levels)
        endog = df[target].astype(np.float64)
        groups = df[group].astype(str).to_numpy()
        results = sm.MixedLM(endog, exog, groups=groups).fit(reml=reml)
        logger.info(
            f"Mixed model fitted on {int(results.nobs)} samples in "
            f"{len(results.random_effects)} groups of '{group}' (REML={reml})"
        )
        return cls(results, target, predictors, group, categorical_levels)

    def predict_frame(self, features: pd.DataFrame) -> np.ndarray:
        numeric = [name for name in self.predictors if name not in self.categorical_levels]
        exog = build_design_matrix(features[list(self.predictors)], numeric, self.categorical_levels)
        fixed = exog.to_numpy() @ self.fixed_effects.to_numpy()
        random = np.array(
            [self._intercepts[str(level)] for level in features[self.group]],
            dtype=np.float64
        )
        return fixed + random

    @property
    def fixed_effects(self) -> pd.Series:
        return self.results.fe_params

    @property
    def random_effects(self) -> Dict[str, float]:
        return dict(self._intercepts)

    def summary(self) -> str:
        return str(self.results.summary())
