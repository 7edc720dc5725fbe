"""
随机森林模型

基于scikit-learn的随机森林回归与分类，分类预测变量先做独热编码
（类别在拟合时固定），并使用袋外样本（OOB）估计精度。
"""

from typing import Any, Mapping, Optional, Sequence, Tuple
import logging

import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder

from .base import FittedModel

logger = logging.getLogger(__name__)


def build_forest_pipeline(
    predictors: Sequence[str],
    categorical_levels: Mapping[str, Sequence[Any]],
    forest
) -> Pipeline:
    """构建 独热编码 + 随机森林 的Pipeline。"""
    categorical = [name for name in predictors if name in categorical_levels]
    encoder = ColumnTransformer(
        [(
            'categorical',
            OneHotEncoder(
                categories=[list(categorical_levels[name]) for name in categorical],
                handle_unknown='ignore',
                sparse_output=False
            ),
            categorical
        )],
        remainder='passthrough',
        verbose_feature_names_out=False
    )
    return Pipeline([('encode', encoder), ('forest', forest)])


class _RandomForestModel(FittedModel):
    """随机森林模型的公共部分。"""

    def __init__(
        self,
        pipeline: Pipeline,
        target: str,
        predictors: Sequence[str],
        categorical_levels: Optional[Mapping[str, Sequence[Any]]] = None
    ):
        super().__init__(predictors, categorical_levels, target)
        self.pipeline = pipeline

    @property
    def forest(self):
        return self.pipeline.named_steps['forest']

    @property
    def oob_score(self) -> Optional[float]:
        score = getattr(self.forest, 'oob_score_', None)
        return float(score) if score is not None else None

    def feature_importances(self) -> pd.Series:
        """基于不纯度的变量重要性（独热编码后的列），降序排列。"""
        names = self.pipeline.named_steps['encode'].get_feature_names_out()
        return pd.Series(self.forest.feature_importances_, index=names).sort_values(ascending=False)


class RandomForestRegressionModel(_RandomForestModel):
    """随机森林回归，OOB分数为R²。"""

    kind = 'rf_regression'
    task = 'regression'

    @classmethod
    def fit(
        cls,
        df: pd.DataFrame,
        target: str,
        predictors: Sequence[str],
        categorical_levels: Mapping[str, Sequence[Any]],
        n_estimators: int = 500,
        random_state: Optional[int] = 42,
        **forest_kwargs
    ) -> 'RandomForestRegressionModel':
        forest = RandomForestRegressor(
            n_estimators=n_estimators,
            oob_score=True,
            random_state=random_state,
            **forest_kwargs
        )
        pipeline = build_forest_pipeline(predictors, categorical_levels, forest)
        pipeline.fit(df[list(predictors)], df[target].astype(np.float64))
        model = cls(pipeline, target, predictors, categorical_levels)
        logger.info(
            f"Random forest regression fitted: {n_estimators} trees, "
            f"{len(df)} samples, OOB R2={model.oob_score:.4f}"
        )
        return model

    def predict_frame(self, features: pd.DataFrame) -> np.ndarray:
        return np.asarray(self.pipeline.predict(features), dtype=np.float64)


class RandomForestClassificationModel(_RandomForestModel):
    """随机森林分类，OOB分数为正确率。"""

    kind = 'rf_classification'
    task = 'classification'

    @classmethod
    def fit(
        cls,
        df: pd.DataFrame,
        target: str,
        predictors: Sequence[str],
        categorical_levels: Mapping[str, Sequence[Any]],
        n_estimators: int = 500,
        random_state: Optional[int] = 42,
        **forest_kwargs
    ) -> 'RandomForestClassificationModel':
        forest = RandomForestClassifier(
            n_estimators=n_estimators,
            oob_score=True,
            random_state=random_state,
            **forest_kwargs
        )
        pipeline = build_forest_pipeline(predictors, categorical_levels, forest)
        pipeline.fit(df[list(predictors)], df[target].astype(str))
        model = cls(pipeline, target, predictors, categorical_levels)
        logger.info(
            f"Random forest classification fitted: {n_estimators} trees, "
            f"{len(df)} samples, {len(model.classes)} classes, OOB accuracy={model.oob_score:.4f}"
        )
        return model

    @property
    def classes(self) -> Tuple[Any, ...]:
        return tuple(self.pipeline.classes_.tolist())

    @property
    def supports_probabilities(self) -> bool:
        return True

    @property
    def oob_error(self) -> Optional[float]:
        score = self.oob_score
        return 1.0 - score if score is not None else None

    def predict_frame(self, features: pd.DataFrame) -> np.ndarray:
        return np.array(self.pipeline.predict(features).tolist(), dtype=object)

    def predict_proba_frame(self, features: pd.DataFrame) -> np.ndarray:
        return np.asarray(self.pipeline.predict_proba(features), dtype=np.float64)

