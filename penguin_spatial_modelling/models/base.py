"""
已拟合模型的统一接口

所有模型（线性模型、线性混合模型、随机森林回归/分类）都实现 FittedModel：
按变量名接收特征向量，输出预测值。栅格推理引擎只依赖这个接口。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..errors import SchemaMismatchError, UnseenCategoryError

FeatureVector = Mapping[str, Any]


def as_category(values: pd.Series) -> pd.Series:
    """分类变量统一为字符串（object类型），缺失值保持为缺失。"""
    return values.where(values.isna(), values.astype(str)).astype(object)


@dataclass(frozen=True)
class ClassPrediction:
    """分类预测：标签以及可选的类别概率分布。"""
    label: Any
    probabilities: Optional[Dict[Any, float]] = None


class FittedModel(ABC):
    """
    已拟合模型基类。

    required_variables 在拟合时确定，推理前即可获得；
    categorical_levels 记录每个分类预测变量在拟合时出现过的类别。
    """

    kind = 'base'
    task = 'regression'

    def __init__(
        self,
        required_variables: Sequence[str],
        categorical_levels: Optional[Mapping[str, Sequence[Any]]] = None,
        target: Optional[str] = None
    ):
        self._required_variables = tuple(required_variables)
        self._categorical_levels = {
            name: tuple(str(level) for level in levels) for name, levels in (categorical_levels or {}).items()
        }
        self.target = target

    @property
    def required_variables(self) -> Tuple[str, ...]:
        return self._required_variables

    @property
    def categorical_levels(self) -> Dict[str, Tuple[Any, ...]]:
        return dict(self._categorical_levels)

    @property
    def classes(self) -> Tuple[Any, ...]:
        return ()

    @property
    def supports_probabilities(self) -> bool:
        return False

    def feature_frame(
        self,
        feature_vectors: Union[FeatureVector, Sequence[FeatureVector], pd.DataFrame]
    ) -> pd.DataFrame:
        """
        将特征向量整理成按 required_variables 排列的DataFrame。

        多余的变量被忽略，缺少变量时抛出 SchemaMismatchError。
        """
        if isinstance(feature_vectors, pd.DataFrame):
            frame = feature_vectors
        elif isinstance(feature_vectors, Mapping):
            frame = pd.DataFrame([dict(feature_vectors)])
        else:
            frame = pd.DataFrame([dict(vector) for vector in feature_vectors])

        missing = [name for name in self._required_variables if name not in frame.columns]
        if missing:
            raise SchemaMismatchError(missing, available=list(frame.columns))

        frame = frame.loc[:, list(self._required_variables)].copy()
        for name in self._required_variables:
            if name in self._categorical_levels:
                frame[name] = as_category(frame[name])
            else:
                frame[name] = frame[name].astype(np.float64)
        return frame

    def unseen_level_mask(self, features: pd.DataFrame) -> np.ndarray:
        """返回含有拟合时未见类别的行掩码。"""
        mask = np.zeros(len(features), dtype=bool)
        for name, levels in self._categorical_levels.items():
            if name in features.columns:
                mask |= ~as_category(features[name]).isin(levels).to_numpy()
        return mask

    def unseen_levels(self, features: pd.DataFrame) -> Dict[str, list]:
        """返回每个分类预测变量中拟合时未见过的类别。"""
        unseen = {}
        for name, levels in self._categorical_levels.items():
            if name not in features.columns:
                continue
            values = as_category(features[name])
            extra = values[~values.isin(levels)].unique().tolist()
            if extra:
                unseen[name] = sorted(extra, key=str)
        return unseen

    @abstractmethod
    def predict_frame(self, features: pd.DataFrame) -> np.ndarray:
        """对多个特征向量（每行一个）进行预测，与逐个调用 predict 等价。"""

    def predict_proba_frame(self, features: pd.DataFrame) -> np.ndarray:
        """返回类别概率，列顺序与 classes 一致。"""
        raise NotImplementedError(f"{type(self).__name__} does not provide class probabilities")

    def predict(self, feature_vector: FeatureVector):
        """
        单个特征向量的预测。

        返回:
            回归为float，分类为ClassPrediction
        """
        frame = self.feature_frame(feature_vector)
        unseen = self.unseen_levels(frame)
        if unseen:
            raise UnseenCategoryError(unseen)
        if self.task == 'classification':
            label = self.predict_frame(frame)[0]
            probabilities = None
            if self.supports_probabilities:
                proba = self.predict_proba_frame(frame)[0]
                probabilities = {cls: float(p) for cls, p in zip(self.classes, proba)}
            return ClassPrediction(label=label, probabilities=probabilities)
        return float(self.predict_frame(frame)[0])

    def __repr__(self):
        return (
            f"{type(self).__name__}(target={self.target!r}, "
            f"required_variables={list(self._required_variables)})"
        )


class FunctionModel(FittedModel):
    """
    把普通函数包装成 FittedModel。

    func 接收特征向量字典并返回预测值；分类时可额外提供 proba_func，
    返回与 classes 顺序一致的概率序列。
    """

    kind = 'function'

    def __init__(
        self,
        func: Callable[[Dict[str, Any]], Any],
        required_variables: Sequence[str],
        task: str = 'regression',
        classes: Optional[Sequence[Any]] = None,
        proba_func: Optional[Callable[[Dict[str, Any]], Sequence[float]]] = None,
        categorical_levels: Optional[Mapping[str, Sequence[Any]]] = None,
        target: Optional[str] = None
    ):
        if task not in ('regression', 'classification'):
            raise ValueError(f"Unknown task: {task}. Use 'regression' or 'classification'.")
        if task == 'classification' and not classes:
            raise ValueError("A classification FunctionModel needs its label set (classes)")
        super().__init__(required_variables, categorical_levels, target)
        self.task = task
        self.func = func
        self.proba_func = proba_func
        self._classes = tuple(classes or ())

    @property
    def classes(self) -> Tuple[Any, ...]:
        return self._classes

    @property
    def supports_probabilities(self) -> bool:
        return self.proba_func is not None

    def predict_frame(self, features: pd.DataFrame) -> np.ndarray:
        records = features.to_dict(orient='records')
        if self.task == 'classification':
            return np.array([self.func(record) for record in records], dtype=object)
        return np.array([self.func(record) for record in records], dtype=np.float64)

    def predict_proba_frame(self, features: pd.DataFrame) -> np.ndarray:
        if self.proba_func is None:
            return super().predict_proba_frame(features)
        records = features.to_dict(orient='records')
        return np.array([self.proba_func(record) for record in records], dtype=np.float64).reshape(
            len(records), len(self._classes)
        )


def build_design_matrix(
    features: pd.DataFrame,
    numeric: Sequence[str],
    categorical_levels: Mapping[str, Sequence[Any]],
    add_constant: bool = True
) -> pd.DataFrame:
    """
    构建带截距的设计矩阵，分类变量按处理编码（以第一个类别为参照）。

    列名沿用公式写法，如 'sex[T.male]'。
    """
    columns = {}
    if add_constant:
        columns['Intercept'] = np.ones(len(features))
    for name in features.columns:
        if name in categorical_levels:
            values = features[name].to_numpy()
            for level in list(categorical_levels[name])[1:]:
                columns[f"{name}[T.{level}]"] = (values == level).astype(np.float64)
        elif name in numeric:
            columns[name] = features[name].to_numpy(dtype=np.float64)
    return pd.DataFrame(columns, index=features.index)
