"""
推理模块

将已拟合模型应用到预测变量栅格，生成预测栅格。
"""

from .raster_inference import infer, predict_raster, validate_inputs

__all__ = ['infer', 'predict_raster', 'validate_inputs']
