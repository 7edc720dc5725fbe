"""
数据预处理模块

- 栅格数据模型：预测变量波段、多波段栅格、预测结果栅格
- 栅格读写：基于rasterio读取预测变量、写出预测结果
- 表格数据：读取企鹅测量数据并划分训练/测试集
"""

from .grid import (
    OUTPUT_NODATA,
    Band,
    Grid,
    PredictionGrid,
    read_grid,
    read_grid_from_files,
    write_prediction_grid
)
from .tabular import CATEGORICAL_COLUMNS, PENGUIN_COLUMNS, load_penguins, split_train_test

__all__ = [
    'OUTPUT_NODATA',
    'Band',
    'Grid',
    'PredictionGrid',
    'read_grid',
    'read_grid_from_files',
    'write_prediction_grid',
    'CATEGORICAL_COLUMNS',
    'PENGUIN_COLUMNS',
    'load_penguins',
    'split_train_test',
]
