"""
企鹅数据统计建模与栅格空间预测

在企鹅形态测量数据上拟合线性模型、线性混合模型和随机森林，
并将已拟合模型逐像元应用到预测变量栅格，生成空间预测图。
"""

__version__ = '0.1.0'
