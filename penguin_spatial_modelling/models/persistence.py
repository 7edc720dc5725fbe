"""
模型保存与加载

模型以joblib文件保存，内容为字典：
{'model', 'kind', 'required_variables', 'created'}。
"""

from datetime import datetime
from pathlib import Path
from typing import Union
import logging

import joblib

from .base import FittedModel

logger = logging.getLogger(__name__)


def save_model(model: FittedModel, filepath: Union[str, Path]) -> Path:
    """
    保存已拟合模型。

    参数:
        model: 已拟合模型
        filepath: 保存路径（.joblib）

    返回:
        保存路径
    """
    if not isinstance(model, FittedModel):
        raise TypeError(f"Expected a FittedModel, got {type(model).__name__}")

    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    joblib.dump({
        'model': model,
        'kind': model.kind,
        'required_variables': list(model.required_variables),
        'created': datetime.now().isoformat(timespec='seconds'),
    }, filepath)

    logger.info(f"{type(model).__name__} saved to {filepath}")
    return filepath


def load_model(filepath: Union[str, Path]) -> FittedModel:
    """
    加载已拟合模型，并检查文件内容符合模型接口。

    参数:
        filepath: 模型文件路径

    返回:
        FittedModel
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Model artifact not found: {filepath}")

    artifact = joblib.load(filepath)
    if not isinstance(artifact, dict) or 'model' not in artifact:
        raise ValueError(f"{filepath} is not a model artifact (expected a dict with a 'model' entry)")

    model = artifact['model']
    if not isinstance(model, FittedModel):
        raise ValueError(f"{filepath} holds {type(model).__name__}, not a FittedModel")

    logger.info(
        f"Loaded {artifact.get('kind', model.kind)} model from {filepath} "
        f"(variables: {', '.join(model.required_variables)})"
    )
    return model
